import math

import pytest

from floodsim import TimeStepController, TimingError, ValidationError


def _complete_step(controller: TimeStepController, max_saturation_change: float) -> float:
    controller.begin_step()
    return controller.adjust(max_saturation_change)


def test_large_saturation_change_halves_step_size():
    controller = TimeStepController(initial_step_size=1.0)
    assert _complete_step(controller, 0.06) == 0.5
    assert _complete_step(controller, 0.5) == 0.25


def test_small_saturation_change_grows_step_size():
    controller = TimeStepController(initial_step_size=1.0)
    assert _complete_step(controller, 0.0) == pytest.approx(1.2)


def test_moderate_saturation_change_keeps_step_size():
    controller = TimeStepController(initial_step_size=1.0)
    assert _complete_step(controller, 0.01) == 1.0
    assert _complete_step(controller, 0.03) == 1.0
    assert _complete_step(controller, 0.05) == 1.0


def test_step_size_never_leaves_bounds():
    controller = TimeStepController(initial_step_size=0.002)
    for _ in range(20):
        step_size = _complete_step(controller, 1.0)
        assert 0.001 <= step_size <= 10.0
    assert controller.step_size == 0.001

    controller = TimeStepController(initial_step_size=1.0)
    for _ in range(50):
        assert controller.begin_step() <= 5.0
        step_size = controller.adjust(0.0)
        assert 0.001 <= step_size <= 10.0
    assert controller.step_size == pytest.approx(6.0)


def test_step_start_cap():
    controller = TimeStepController(initial_step_size=8.0)
    assert controller.begin_step() == 5.0
    controller.adjust(0.03)
    assert controller.elapsed_time == 5.0


def test_elapsed_time_accumulates_used_step_sizes():
    controller = TimeStepController(initial_step_size=0.1)
    _complete_step(controller, 0.0)
    _complete_step(controller, 0.0)
    assert controller.step == 2
    assert controller.elapsed_time == pytest.approx(0.1 + 0.12)
    assert [metrics.step_size for metrics in controller.recent_metrics] == pytest.approx([0.1, 0.12])


def test_hot_step_size_is_clamped():
    controller = TimeStepController(initial_step_size=0.1)
    assert controller.set_step_size(100.0) == 10.0
    assert controller.set_step_size(0.0) == 0.001
    assert controller.set_step_size(-3.0) == 0.001
    assert controller.set_step_size(2.5) == 2.5
    with pytest.raises(ValidationError):
        controller.set_step_size(math.nan)


def test_adjust_requires_a_step_in_progress():
    controller = TimeStepController(initial_step_size=0.1)
    with pytest.raises(TimingError):
        controller.adjust(0.0)


def test_reset():
    controller = TimeStepController(initial_step_size=0.1)
    _complete_step(controller, 0.0)
    controller.reset(0.5)
    assert controller.elapsed_time == 0.0
    assert controller.step == 0
    assert controller.step_size == 0.5
    assert len(controller.recent_metrics) == 0


def test_step_start_cap_leaves_proposed_step_size_until_completion():
    controller = TimeStepController(initial_step_size=8.0)
    assert controller.begin_step() == 5.0
    assert controller.step_size == 8.0
    assert controller.adjust(0.03) == 5.0


def test_aborted_step_leaves_timer_unchanged():
    controller = TimeStepController(initial_step_size=8.0)
    controller.begin_step()
    controller.abort_step()
    assert controller.step_size == 8.0
    assert controller.elapsed_time == 0.0
    assert controller.step == 0
    with pytest.raises(TimingError):
        controller.adjust(0.0)

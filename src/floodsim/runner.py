"""Fixed-cadence play/pause driver for interactive use of a `ReservoirEngine`."""

import logging
import threading
import typing

from typing_extensions import Self

from floodsim.config import Config
from floodsim.engine import ReservoirEngine
from floodsim.errors import SimulationError, ValidationError
from floodsim.states import DEFAULT_HISTORY_SIZE, History, Snapshot

logger = logging.getLogger(__name__)

__all__ = ["SimulationRunner", "StepListener"]

StepListener = typing.Callable[[Snapshot], None]
"""Callable receiving the snapshot of every completed step."""

R = typing.TypeVar("R")


class SimulationRunner:
    """
    Drives a `ReservoirEngine` one step at a time, or continuously from a background
    thread while playing.

    All access to the engine goes through a single lock, so steps never run concurrently
    and configuration updates or resets never overlap a step. Pausing stops further steps
    immediately; a step already in progress is allowed to finish.

    Example:
    ```python
    with SimulationRunner(config=Config(seed=7)) as runner:
        runner.add_listener(lambda snapshot: print(snapshot.time, snapshot.recovery_factor))
        runner.play()
        time.sleep(2.0)
        runner.pause()
        print(runner.history.recovery_factors)
    ```
    """

    def __init__(
        self,
        engine: typing.Optional[ReservoirEngine] = None,
        config: typing.Optional[Config] = None,
        interval: float = 0.1,
        history_size: int = DEFAULT_HISTORY_SIZE,
        thread_name: str = "floodsim-runner",
    ) -> None:
        """
        :param engine: Engine to drive. A new engine is built from `config` if not given.
        :param config: Configuration for a new engine. Ignored when `engine` is given.
        :param interval: Wall-clock delay between steps while playing (seconds).
        :param history_size: Maximum number of snapshots kept in `history`.
        :param thread_name: Name for the stepping thread, useful for debugging.
        """
        if interval < 0.0:
            raise ValidationError(f"Interval must be non-negative, got {interval}")
        self.engine = engine if engine is not None else ReservoirEngine(config)
        if not self.engine.is_initialized:
            self.engine.initialize()
        self.interval = interval
        self.thread_name = thread_name
        self.history = History(max_size=history_size)

        self._lock = threading.RLock()
        self._listeners: typing.List[StepListener] = []
        self._thread: typing.Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._error: typing.Optional[BaseException] = None

    @property
    def is_playing(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def add_listener(self, listener: StepListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StepListener) -> None:
        self._listeners.remove(listener)

    def _check_error(self) -> None:
        """Raise any error from the stepping thread, once."""
        error, self._error = self._error, None
        if error is not None:
            raise SimulationError(f"Background stepping failed: {error}") from error

    def _step(self) -> Snapshot:
        with self._lock:
            snapshot = self.engine.step()
            self.history.append(snapshot)
        for listener in list(self._listeners):
            listener(snapshot)
        return snapshot

    def step_once(self) -> Snapshot:
        """
        Advance the engine by a single step.

        :return: The snapshot of the completed step.
        """
        self._check_error()
        return self._step()

    def _worker(self) -> None:
        logger.debug(f"Stepping thread started (tid={threading.get_ident()})")
        try:
            while not self._stop_event.is_set():
                self._step()
                self._stop_event.wait(self.interval)
        except Exception as exc:
            logger.error(f"Stepping thread crashed: {exc}")
            self._error = exc
        finally:
            self._stop_event.set()
            logger.debug("Stepping thread exiting")

    def play(self) -> None:
        """Start stepping at the configured interval. No-op if already playing."""
        self._check_error()
        if self.is_playing:
            return
        self._join()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._worker, name=self.thread_name, daemon=True
        )
        self._thread.start()
        logger.info(f"Playing with a {self.interval}s step interval")

    def _join(self) -> None:
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None

    def pause(self) -> None:
        """Stop stepping. Waits for an in-progress step to finish."""
        was_playing = self.is_playing
        self._stop_event.set()
        self._join()
        if was_playing:
            logger.info("Paused")
        self._check_error()

    def toggle(self) -> bool:
        """
        Switch between playing and paused.

        :return: True if now playing.
        """
        if self.is_playing:
            self.pause()
            return False
        self.play()
        return True

    def update(self, func: typing.Callable[[ReservoirEngine], R]) -> R:
        """
        Run `func(engine)` between steps, e.g. to change PVT properties or wells.

        :return: Whatever `func` returns.
        """
        with self._lock:
            return func(self.engine)

    def apply_config(self, config: Config) -> bool:
        """
        Apply a configuration to the engine between steps. History is cleared if the
        change required a full reset.

        :return: True if the engine was fully reset.
        """
        with self._lock:
            was_reset = self.engine.apply_config(config)
            if was_reset:
                self.history.clear()
        return was_reset

    def reset(self, config: typing.Optional[Config] = None) -> Snapshot:
        """
        Fully reinitialise the engine and clear the history.

        Playback continues, if active, from the new initial state.

        :return: Snapshot of the new initial state.
        """
        with self._lock:
            self.engine.reset(config)
            self.history.clear()
            return self.engine.snapshot()

    def close(self) -> None:
        """Stop playback and surface any pending stepping error."""
        self.pause()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            self.close()
        except SimulationError as exc:
            logger.error(f"Error during runner shutdown: {exc}")
            if exc_type is None:
                raise

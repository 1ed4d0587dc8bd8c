import logging

import floodsim
from floodsim import Config, ReservoirEngine, injection_well, production_well

logging.basicConfig(level=logging.INFO)


def main():
    floodsim.use_64bit_precision()
    config = Config(
        nx=20,
        ny=20,
        geology_model="channel",
        permeability=150.0,
        porosity=0.22,
        seed=42,
        wells=[
            injection_well(2, 2, rate=800.0, name="INJ-1"),
            production_well(17, 17, rate=600.0, name="PROD-1"),
            production_well(17, 2, rate=300.0, name="PROD-2"),
        ],
    )
    engine = ReservoirEngine(config).initialize()
    history = floodsim.History()

    for _ in range(200):
        history.append(engine.step())

    snapshot = history.latest
    print(f"Time: {snapshot.time:.2f} days")
    print(f"Average pressure: {snapshot.average_pressure:.2f} psi")
    print(f"Average water saturation: {snapshot.average_water_saturation:.4f}")
    print(f"Water cut: {snapshot.water_cut:.4f}")
    print(f"Recovery factor: {snapshot.recovery_factor:.4f}%")

    # Convert PROD-2 to an injector and carry on
    engine.place_well(17, 2, type="injector", rate=300.0)
    engine.pvt.oil_viscosity = 3.0
    for _ in range(100):
        history.append(engine.step())
    print(f"Recovery factor after conversion: {history.latest.recovery_factor:.4f}%")


if __name__ == "__main__":
    main()

import logging

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.kepler import orbit_from_elements
from patchedconics.dynamics.kerbol import KERBIN_TIME, kerbol_system
from patchedconics.mission.porkchop import PorkchopInputs, PorkchopPlotter
from patchedconics.trajectory.flyby import leg_duration_bounds


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    print("Generating Porkchop Plot for Kerbin-Duna...")

    system = kerbol_system()
    kerbin = system.body_from_id(4)
    duna = system.body_from_id(7)
    lko = orbit_from_elements(kerbin, kerbin.radius + 100000.0, 0.0)
    ldo = orbit_from_elements(duna, duna.radius + 100000.0, 0.0)

    # One synodic period of departure dates, default flight time bounds
    min_flight, max_flight = leg_duration_bounds(kerbin.orbit, duna.orbit, system.sun)
    synodic = 1.0 / abs(1.0 / kerbin.orbit.sidereal_period - 1.0 / duna.orbit.sidereal_period)

    inputs = PorkchopInputs(system, lko, ldo,
                            start_date_min=0.0, start_date_max=synodic,
                            flight_time_min=min_flight, flight_time_max=max_flight,
                            n_times=40)  # Coarse grid for demo

    plotter = PorkchopPlotter(KERBIN_TIME)
    data = plotter.generate_data(inputs)

    best = data['porkchop'].best_transfer
    print(f"Best transfer: {best.delta_v:.1f} m/s, "
          f"departing day {data['transfer_start_day']:.1f}, flying {data['transfer_flight_day']:.1f} days")

    filename = "kerbin_duna_porkchop.png"
    print(f"Plotting to {filename}...")
    plotter.plot(data, title="Kerbin to Duna", filename=filename)
    print("Done.")


if __name__ == "__main__":
    main()

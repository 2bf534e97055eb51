import logging

import numpy as np

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.kepler import orbit_from_elements
from patchedconics.dynamics.kerbol import KERBIN_TIME, kerbol_system
from patchedconics.dynamics.vectors import calendar_date_to_string, time_to_calendar_date
from patchedconics.mission.settings import RefinementSettings
from patchedconics.mission.transfer import TransferCalculator, TransferInputs, refine_transfer


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    system = kerbol_system()
    kerbin = system.body_from_id(4)
    duna = system.body_from_id(7)

    # 100 km parking orbits
    lko = orbit_from_elements(kerbin, kerbin.radius + 100000.0, 0.0)
    ldo = orbit_from_elements(duna, duna.radius + 100000.0, 0.0)

    start_date = 5091552.0
    flight_time = 6566400.0
    inputs = TransferInputs(system, lko, ldo, start_date, flight_time, ejection_insertion_type="fastdirect")

    print("--- Unrefined Transfer ---")
    calc = TransferCalculator(inputs)
    print(f"Total Delta V: {calc.delta_v:.1f} m/s")
    print(f"SoI patch errors: {calc.soi_patch_position_error:.1f} m, {calc.soi_patch_time_error:.1f} s")

    print("\n--- Refined Transfer ---")
    transfer = refine_transfer(inputs, RefinementSettings(de_max_generations=50, seed=0))
    print(f"Departure: {calendar_date_to_string(time_to_calendar_date(transfer.start_date, KERBIN_TIME))}")
    print(f"Arrival:   {calendar_date_to_string(time_to_calendar_date(transfer.end_date, KERBIN_TIME))}")
    print(f"Phase angle: {np.degrees(transfer.phase_angle):.2f} deg")
    for maneuver in transfer.maneuvers:
        print(f"  {maneuver.context:<40s} {maneuver.delta_v_mag:9.1f} m/s")
    print(f"Total Delta V: {transfer.delta_v:.1f} m/s")
    print(f"SoI patch errors: {transfer.patch_position_error:.1f} m, {transfer.patch_time_error:.1f} s")


if __name__ == "__main__":
    main()

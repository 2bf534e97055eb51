import logging

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))
from patchedconics.dynamics.kepler import orbit_from_elements
from patchedconics.dynamics.kerbol import KERBIN_TIME, kerbol_system
from patchedconics.dynamics.vectors import calendar_date_to_duration_string, time_to_calendar_date
from patchedconics.mission.multiflyby import MultiFlybyCalculator, MultiFlybySearchInputs, refine_multi_flyby
from patchedconics.mission.search import MultiFlybySearch, flight_time_bounds
from patchedconics.mission.settings import RefinementSettings, SearchSettings


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    system = kerbol_system()
    kerbin = system.body_from_id(4)
    jool = system.body_from_id(10)
    lko = orbit_from_elements(kerbin, kerbin.radius + 100000.0, 0.0)
    # Insert into a high Jool orbit
    high_jool = orbit_from_elements(jool, jool.radius + 5.0e6, 0.0)

    # Kerbin - Eve - Kerbin - Jool
    flyby_ids = [2, 4]
    mins, maxs = flight_time_bounds(system, lko, high_jool, flyby_ids)
    search_inputs = MultiFlybySearchInputs(
        system, lko, high_jool, flyby_ids,
        start_date_min=0.0, start_date_max=2 * kerbin.orbit.sidereal_period,
        flight_times_min=mins, flight_times_max=maxs,
    )

    print("--- Global Search ---")
    result = MultiFlybySearch(search_inputs, SearchSettings(max_generations=200, seed=1)).run()
    print(f"Generations: {result.history.generations - 1}, best fitness {result.history.best[-1]:.1f}")

    print("\n--- SoI Patch Refinement ---")
    calc = MultiFlybyCalculator.from_multi_flyby(result.multi_flyby)
    multi_flyby = refine_multi_flyby(calc.inputs, RefinementSettings(de_max_generations=50, seed=1))

    for maneuver in multi_flyby.maneuvers:
        print(f"  {maneuver.context:<40s} {maneuver.delta_v_mag:9.1f} m/s")
    mission_time = time_to_calendar_date(multi_flyby.end_date - multi_flyby.start_date, KERBIN_TIME, 0, 0)
    print(f"Mission time: {calendar_date_to_duration_string(mission_time)}")
    print(f"Total Delta V: {multi_flyby.delta_v:.1f} m/s")


if __name__ == "__main__":
    main()

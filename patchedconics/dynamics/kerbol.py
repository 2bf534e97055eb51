"""
Stock Kerbol system.

Orbital angles are stored in degrees here and converted when the system is
built; mean anomalies at epoch are already in radians.
"""
from patchedconics.dynamics.bodies import CelestialBody, SolarSystem, orbiting_body_from_inputs
from patchedconics.dynamics.vectors import TimeSettings, deg_to_rad

KERBIN_TIME = TimeSettings(hours_per_day=6, days_per_year=426)

KERBOL = CelestialBody(id=0, name="Kerbol", radius=261600000.0, std_grav_param=1.1723328e18)

# name, id, parent id, radius, mu, soi, atmosphere, terrain, (a, e, i, lan, arg, M0)
_BODIES = [
    ("Moho",   1,  0,  250000.0,  1.6860938e11, 9646663.0,    0.0,      4300.0,  (5263138304.0,  0.2,   7.0,   70.0,  15.0, 3.14)),
    ("Eve",    2,  0,  700000.0,  8.1717302e12, 85109365.0,   90000.0,  7526.0,  (9832684544.0,  0.01,  2.1,   15.0,  0.0,  3.14)),
    ("Gilly",  3,  2,  13000.0,   8289449.8,    126123.27,    0.0,      6401.0,  (31500000.0,    0.55,  12.0,  80.0,  10.0, 0.9)),
    ("Kerbin", 4,  0,  600000.0,  3.5316e12,    84159286.0,   70000.0,  6764.0,  (13599840256.0, 0.0,   0.0,   0.0,   0.0,  3.14)),
    ("Mun",    5,  4,  200000.0,  6.5138398e10, 2429559.1,    0.0,      7061.0,  (12000000.0,    0.0,   0.0,   0.0,   0.0,  1.7)),
    ("Minmus", 6,  4,  60000.0,   1.7658e9,     2247428.4,    0.0,      5725.0,  (47000000.0,    0.0,   6.0,   78.0,  38.0, 0.9)),
    ("Duna",   7,  0,  320000.0,  3.0136321e11, 47921949.0,   50000.0,  8264.0,  (20726155264.0, 0.051, 0.06,  135.5, 0.0,  3.14)),
    ("Ike",    8,  7,  130000.0,  1.8568369e10, 1049598.9,    0.0,      12725.0, (3200000.0,     0.03,  0.2,   0.0,   0.0,  1.7)),
    ("Dres",   9,  0,  138000.0,  2.1484489e10, 32832840.0,   0.0,      5700.0,  (40839348203.0, 0.145, 5.0,   280.0, 90.0, 3.14)),
    ("Jool",   10, 0,  6000000.0, 2.82528e14,   2455985200.0, 200000.0, 0.0,     (68773560320.0, 0.05,  1.304, 52.0,  0.0,  0.1)),
    ("Laythe", 11, 10, 500000.0,  1.962e12,     3723645.8,    50000.0,  6044.0,  (27184000.0,    0.0,   0.0,   0.0,   0.0,  3.14)),
    ("Vall",   12, 10, 300000.0,  2.074815e11,  2406401.4,    0.0,      7976.0,  (43152000.0,    0.0,   0.0,   0.0,   0.0,  0.9)),
    ("Tylo",   13, 10, 600000.0,  2.82528e12,   10856518.0,   0.0,      11290.0, (68500000.0,    0.0,   0.025, 0.0,   0.0,  3.14)),
    ("Bop",    14, 10, 65000.0,   2.4868349e9,  1221060.9,    0.0,      21757.0, (128500000.0,   0.235, 15.0,  10.0,  25.0, 0.9)),
    ("Pol",    15, 10, 44000.0,   7.2170208e8,  1042138.9,    0.0,      4891.0,  (179890000.0,   0.171, 4.25,  2.0,   15.0, 0.9)),
    ("Eeloo",  16, 0,  210000.0,  7.4410815e10, 119082940.0,  0.0,      3874.0,  (90118820000.0, 0.26,  6.15,  50.0,  260.0, 3.14)),
]


def kerbol_system() -> SolarSystem:
    """Builds the stock Kerbol system with epoch 0 for every orbit."""
    by_id = {KERBOL.id: KERBOL}
    orbiters = []
    for name, id, parent, radius, mu, soi, atmo, terrain, (a, e, i, lan, arg, mo) in _BODIES:
        body = orbiting_body_from_inputs(
            id=id,
            name=name,
            radius=radius,
            attractor=by_id[parent],
            orbit_elements={
                'semi_major_axis': a,
                'eccentricity': e,
                'inclination': deg_to_rad(i),
                'asc_node_longitude': deg_to_rad(lan),
                'arg_of_periapsis': deg_to_rad(arg),
                'mean_anomaly_epoch': mo,
                'epoch': 0.0,
            },
            std_grav_param=mu,
            soi=soi,
            atmosphere_height=atmo,
            max_terrain_height=terrain,
        )
        by_id[id] = body
        orbiters.append(body)
    return SolarSystem(KERBOL, orbiters)

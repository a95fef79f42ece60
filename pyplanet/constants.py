"""
constants.py

Declared ranges for every clamped cell field and a few planet-wide defaults.

Ranges are (lo, hi); hi=None means unbounded above. Fields listed in
FINITE_ONLY are not range-clamped but must stay finite (NaN/Inf -> 0).
"""

from __future__ import annotations

import numpy as np

# --- primary cell fields ---
ELEVATION_RANGE = (-1.0, 1.0)
UNIT_RANGE = (0.0, 1.0)
GAS_RANGE = (0.0, 100.0)
GREENHOUSE_RANGE = (0.0, 5.0)

FIELD_RANGES: dict[str, tuple[float, float | None]] = {
    "elevation": ELEVATION_RANGE,
    "rainfall": UNIT_RANGE,
    "humidity": UNIT_RANGE,
    "oxygen": GAS_RANGE,
    "co2": GAS_RANGE,
    "methane": GAS_RANGE,
    "nitrous_oxide": GAS_RANGE,
    "greenhouse": GREENHOUSE_RANGE,
    "biomass": UNIT_RANGE,
    "evolution": (0.0, None),
}

# --- geology side table ---
FLOW_RANGE = (0.0, 10.0)
SALINITY_RANGE = (0.0, 50.0)        # ppt
DENSITY_RANGE = (0.0, 1100.0)       # kg m^-3, 0 on land
FLOOD_RANGE = (0.0, 10.0)

GEOLOGY_RANGES: dict[str, tuple[float, float | None]] = {
    "volcanism": UNIT_RANGE,
    "erosion": (0.0, None),
    "sediment": (0.0, None),
    "soil_moisture": UNIT_RANGE,
    "flow_volume": FLOW_RANGE,
    "flow_accumulation": (0.0, None),
    "salinity": SALINITY_RANGE,
    "water_density": DENSITY_RANGE,
    "flood_level": FLOOD_RANGE,
}

# --- meteorology side table ---
METEOROLOGY_RANGES: dict[str, tuple[float, float | None]] = {
    "cloud_cover": UNIT_RANGE,
    "precipitation": UNIT_RANGE,
}

FINITE_ONLY = ("temperature",)
METEOROLOGY_FINITE_ONLY = ("wind_x", "wind_y", "pressure")

# --- planet defaults ---
DEFAULT_OXYGEN = 21.0
DEFAULT_CO2 = 2.5                   # early-Earth-like outgassed CO2
DEFAULT_PRESSURE_HPA = 1013.25
OCEAN_REF_SALINITY = 35.0           # ppt
OCEAN_REF_DENSITY = 1027.0          # kg m^-3
OCEAN_REF_TEMP = 10.0               # °C
ALPHA_T = 2.0e-4                    # 1/K thermal expansion
BETA_S = 7.6e-4                     # 1/ppt haline contraction

RIVER_MAX_PATH = 200

# Moore-neighbourhood offsets (dx, dy). Order is the tie-break order for
# steepest descent: orthogonal first (E, W, S, N), then diagonals.
MOORE_OFFSETS: tuple[tuple[int, int], ...] = (
    (1, 0), (-1, 0), (0, 1), (0, -1),
    (1, 1), (-1, 1), (1, -1), (-1, -1),
)
MOORE_DISTANCES = np.array([1.0 if dx == 0 or dy == 0 else np.sqrt(2.0)
                            for dx, dy in MOORE_OFFSETS])

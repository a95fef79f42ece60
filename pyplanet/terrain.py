# pyplanet/terrain.py
"""
Initial planet generation for the default world.

- generate_elevation(width, height, seed, land_fraction) -> elevation in [-1, 1]
  Band-limited fractal noise (sum of gaussian-filtered white-noise octaves,
  periodic in x, reflecting at the poles), then sea level chosen by quantile
  so that the requested fraction of cells is land.
- initial_climate(grid) fills temperature, rainfall, humidity, salinity and
  water density with simple latitude/elevation profiles.

Only used to build a playable starting state; the engines make no assumption
about how the grid was filled.
"""

from __future__ import annotations

import numpy as np
from scipy.ndimage import gaussian_filter

from . import constants
from .ocean import water_density


def _fbm(shape: tuple[int, int], rng: np.random.Generator, octaves: int = 4,
         base_sigma: float | None = None, persistence: float = 0.5) -> np.ndarray:
    h, w = shape
    sigma = base_sigma if base_sigma is not None else max(h, w) / 12.0
    out = np.zeros(shape)
    amp = 1.0
    for _ in range(max(1, int(octaves))):
        noise = rng.standard_normal(shape)
        layer = gaussian_filter(noise, sigma=max(sigma, 0.5), mode=("nearest", "wrap"))
        std = float(np.std(layer))
        if std > 0.0:
            out += amp * layer / std
        amp *= persistence
        sigma *= 0.5
    return out


def sea_level_for(values: np.ndarray, land_fraction: float) -> float:
    """Threshold t such that about `land_fraction` of the cells satisfy v >= t."""
    q = float(np.clip(1.0 - land_fraction, 0.0, 1.0))
    return float(np.quantile(values, q))


def generate_elevation(width: int, height: int, *, seed: int = 42,
                       land_fraction: float = 0.3, octaves: int = 4) -> np.ndarray:
    rng = np.random.default_rng(seed)
    raw = _fbm((height, width), rng, octaves=octaves)
    raw = raw - sea_level_for(raw, land_fraction)
    hi = float(np.max(raw))
    lo = float(np.min(raw))
    elev = np.where(raw >= 0.0, raw / hi if hi > 0.0 else 0.0, -raw / lo if lo < 0.0 else 0.0)
    return np.clip(elev, *constants.ELEVATION_RANGE)


def latitude(height: int) -> np.ndarray:
    """Cell-centre latitude per row in [-1, 1] (row 0 is the north pole)."""
    return 1.0 - (np.arange(height) + 0.5) / height * 2.0


def initial_climate(grid, *, equator_temp: float = 30.0, pole_temp: float = -20.0,
                    lapse: float = 25.0) -> None:
    """Latitude temperature profile with an elevation lapse; wetter tropics; ocean at reference salinity."""
    lat = np.abs(latitude(grid.height))[:, None]
    land = grid.land
    temp = equator_temp + (pole_temp - equator_temp) * lat ** 2
    temp = temp - lapse * np.maximum(grid.elevation, 0.0)
    grid.temperature[...] = np.broadcast_to(temp, grid.shape)
    rain = 0.2 + 0.6 * np.cos(lat * np.pi / 2.0) ** 2
    grid.rainfall[...] = np.broadcast_to(rain, grid.shape)
    grid.humidity[...] = np.where(land, 0.4, 0.7) * grid.rainfall
    grid.ice[...] = grid.temperature < -10.0
    grid.geology.salinity[...] = np.where(land, 0.0, constants.OCEAN_REF_SALINITY)
    grid.geology.water_density[...] = water_density(grid.temperature, grid.geology.salinity, ~land)
    grid.geology.soil_moisture[...] = np.where(land, 0.3, 0.0)
    grid.clamp_fields()

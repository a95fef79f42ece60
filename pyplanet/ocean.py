# pyplanet/ocean.py
"""
Ocean passes over the shared grid: salinity, water density, latitude-band
surface currents, thermohaline exchange and tides.

Every pass that moves heat or salt between cells is written as a row-chunk
kernel that returns *deltas* into its own full-size arrays. Chunks run in
parallel and the per-chunk delta arrays are summed afterwards in one
sequential reduction, so no two workers ever write the same cell and the
result does not depend on chunking (addition commutes; see
tests/test_ocean.py).

Units: salinity ppt, density kg m^-3 (0 on land), temperature °C,
elevation in the grid's [-1, 1] scale for tide heights.
"""

from __future__ import annotations

import math
import os
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Callable

import numpy as np

from . import constants
from .numerics.guards import finite_clip, finite_or_zero


@dataclass
class OceanParams:
    salinity_relax: float = 0.01          # toward OCEAN_REF_SALINITY, per unit time
    evap_concentration: float = 0.02      # x max(T,0)/30
    rain_dilution: float = 0.5            # x rainfall
    river_dilution: float = 1.0           # on river-mouth cells
    brine_rejection: float = 0.5          # on frozen water
    salinity_diffusion: float = 0.05      # lateral, between water neighbours
    current_strength: float = 0.01        # heat carried along the band current
    thermohaline_rate: float = 0.002      # x |drho|
    thermohaline_max: float = 0.25        # cap on the exchanged fraction
    tide_amplitude: float = 0.02
    tide_period: float = 12.0
    tide_flood_rate: float = 0.5
    n_chunks: int = 4


def get_ocean_params_from_env() -> OceanParams:
    def _f(env: str, default: float) -> float:
        try:
            return float(os.getenv(env, str(default)))
        except Exception:
            return default

    def _i(env: str, default: int) -> int:
        try:
            return int(os.getenv(env, str(default)))
        except Exception:
            return default

    return OceanParams(
        salinity_relax=_f("PP_OCEAN_SAL_RELAX", 0.01),
        salinity_diffusion=_f("PP_OCEAN_SAL_DIFF", 0.05),
        current_strength=_f("PP_OCEAN_CURRENT", 0.01),
        thermohaline_rate=_f("PP_OCEAN_THC_RATE", 0.002),
        tide_amplitude=_f("PP_TIDE_AMPLITUDE", 0.02),
        tide_period=_f("PP_TIDE_PERIOD", 12.0),
        n_chunks=max(1, _i("PP_OCEAN_CHUNKS", 4)),
    )


# ----------------- chunked delta machinery -----------------

Kernel = Callable[[int, int], dict[str, np.ndarray]]


def row_chunks(height: int, n_chunks: int) -> list[tuple[int, int]]:
    n = max(1, min(int(n_chunks), height))
    edges = np.linspace(0, height, n + 1).astype(int)
    return [(int(a), int(b)) for a, b in zip(edges[:-1], edges[1:]) if b > a]


def reduce_deltas(kernel: Kernel, shape: tuple[int, int], n_chunks: int,
                  executor: Executor | None = None) -> dict[str, np.ndarray]:
    """
    Run `kernel(y0, y1)` over row chunks (in parallel when an executor is given)
    and sum the returned per-chunk delta arrays sequentially, in chunk order.
    """
    chunks = row_chunks(shape[0], n_chunks)
    if executor is None or len(chunks) == 1:
        parts = [kernel(y0, y1) for y0, y1 in chunks]
    else:
        futures = [executor.submit(kernel, y0, y1) for y0, y1 in chunks]
        parts = [f.result() for f in futures]
    total: dict[str, np.ndarray] = {}
    for part in parts:
        for name, delta in part.items():
            if name in total:
                total[name] += delta
            else:
                total[name] = np.array(delta, dtype=float, copy=True)
    return total


def _pair_exchange(delta: np.ndarray, value: np.ndarray, frac: np.ndarray,
                   a: tuple[np.ndarray, np.ndarray], b: tuple[np.ndarray, np.ndarray]) -> None:
    """Conservative exchange: a gains frac*(b-a), b loses the same amount."""
    flux = (value[b] - value[a]) * frac
    np.add.at(delta, a, flux)
    np.add.at(delta, b, -flux)


# ----------------- salinity -----------------

def salinity_kernel(grid, salinity: np.ndarray, temperature: np.ndarray, rainfall: np.ndarray,
                    ice: np.ndarray, mouths: np.ndarray, params: OceanParams, dt: float) -> Kernel:
    water = grid.water
    S = finite_clip(salinity, *constants.SALINITY_RANGE)
    T = finite_or_zero(temperature)
    R = finite_clip(rainfall, *constants.UNIT_RANGE)
    p = params
    k_diff = min(p.salinity_diffusion * dt, 0.25)

    def kernel(y0: int, y1: int) -> dict[str, np.ndarray]:
        d = np.zeros(grid.shape)
        rows = slice(y0, y1)
        w = water[rows]
        local = (
            (constants.OCEAN_REF_SALINITY - S[rows]) * p.salinity_relax
            + p.evap_concentration * np.maximum(T[rows], 0.0) / 30.0
            - p.rain_dilution * R[rows]
            - np.where(mouths[rows], p.river_dilution, 0.0)
            + np.where(ice[rows], p.brine_rejection, 0.0)
        ) * dt
        d[rows] += np.where(w, local, 0.0)
        # lateral exchange with the east and south water neighbours (each pair once)
        ys, xs = np.nonzero(w)
        ys = ys + y0
        if ys.size and k_diff > 0.0:
            ex = (xs + 1) % grid.width
            m = water[ys, ex]
            _pair_exchange(d, S, k_diff, (ys[m], xs[m]), (ys[m], ex[m]))
            sy = ys + 1
            m = sy < grid.height
            m[m] = water[sy[m], xs[m]]
            _pair_exchange(d, S, k_diff, (ys[m], xs[m]), (sy[m], xs[m]))
        return {"salinity": d}

    return kernel


def water_density(temperature: np.ndarray, salinity: np.ndarray, water: np.ndarray) -> np.ndarray:
    """Linear equation of state, 0 on land, clamp [0,1100]."""
    T = finite_or_zero(temperature)
    S = finite_clip(salinity, *constants.SALINITY_RANGE)
    rho = constants.OCEAN_REF_DENSITY * (
        1.0
        - constants.ALPHA_T * (T - constants.OCEAN_REF_TEMP)
        + constants.BETA_S * (S - constants.OCEAN_REF_SALINITY)
    )
    return np.where(water, finite_clip(rho, *constants.DENSITY_RANGE), 0.0)


# ----------------- currents -----------------

def current_direction(height: int) -> np.ndarray:
    """Zonal current sign per row: east in the tropics, west in mid-latitudes, east poleward."""
    lat = (np.arange(height) + 0.5) / height * 2.0 - 1.0
    a = np.abs(lat)
    return np.where(a < 0.3, 1, np.where(a < 0.6, -1, 1)).astype(np.int64)


def current_kernel(grid, temperature: np.ndarray, params: OceanParams, dt: float) -> Kernel:
    water = grid.water
    T = finite_or_zero(temperature)
    direction = current_direction(grid.height)
    k = min(params.current_strength * dt, 0.25)

    def kernel(y0: int, y1: int) -> dict[str, np.ndarray]:
        d = np.zeros(grid.shape)
        ys, xs = np.nonzero(water[y0:y1])
        ys = ys + y0
        if ys.size == 0 or k <= 0.0:
            return {"temperature": d}
        tx = (xs + direction[ys]) % grid.width
        m = water[ys, tx]
        src = (ys[m], xs[m])
        dst = (ys[m], tx[m])
        flux = (T[src] - T[dst]) * k
        np.add.at(d, src, -flux)
        np.add.at(d, dst, flux)
        return {"temperature": d}

    return kernel


# ----------------- thermohaline -----------------

def thermohaline_kernel(grid, temperature: np.ndarray, salinity: np.ndarray,
                        density: np.ndarray, params: OceanParams, dt: float) -> Kernel:
    """Vertical (meridional-neighbour) exchange driven by the density contrast."""
    water = grid.water
    T = finite_or_zero(temperature)
    S = finite_clip(salinity, *constants.SALINITY_RANGE)
    rho = finite_or_zero(density)

    def kernel(y0: int, y1: int) -> dict[str, np.ndarray]:
        dT = np.zeros(grid.shape)
        dS = np.zeros(grid.shape)
        y1 = min(y1, grid.height - 1)  # pair (y, y+1) needs a row below
        if y1 <= y0:
            return {"temperature": dT, "salinity": dS}
        ys, xs = np.nonzero(water[y0:y1] & water[y0 + 1:y1 + 1])
        ys = ys + y0
        if ys.size:
            frac = np.clip(params.thermohaline_rate * np.abs(rho[ys, xs] - rho[ys + 1, xs]) * dt,
                           0.0, params.thermohaline_max)
            a = (ys, xs)
            b = (ys + 1, xs)
            _pair_exchange(dT, T, frac, a, b)
            _pair_exchange(dS, S, frac, a, b)
        return {"temperature": dT, "salinity": dS}

    return kernel


# ----------------- tides -----------------

def tide_height(t: float, amplitude: float, period: float) -> float:
    if period <= 0.0:
        return 0.0
    return float(amplitude) * math.sin(2.0 * math.pi * float(t) / float(period))


def coastal_land(grid) -> np.ndarray:
    water = grid.water
    near_water = grid.moore_sum(water.astype(float)) > 0.0
    return (~water) & near_water


def tidal_inundation(grid, elevation: np.ndarray, tide: float, params: OceanParams,
                     dt: float) -> np.ndarray:
    """Flood added to coastal land lying below the current tide height."""
    if tide <= 0.0:
        return np.zeros(grid.shape)
    elev = finite_or_zero(elevation)
    low = coastal_land(grid) & (elev < tide)
    return np.where(low, (tide - elev) * params.tide_flood_rate * dt, 0.0)

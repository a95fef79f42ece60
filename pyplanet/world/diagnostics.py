from __future__ import annotations

"""
Planet diagnostics.

Purpose
- Global aggregates for host status lines and tests, computed in one pass over
  the grid (no per-field re-scans by callers).
- Invariant checks: which ranged fields hold values outside their declared
  range (or non-finite values) right now.

Notes
- All functions are pure (no grid mutation). Callers decide where to print.
- Accepts DoubleBufferingArray-backed fields as well as plain arrays (.read is used).
"""

from typing import Any

import numpy as np

from .. import constants
from ..ecology.types import LifeForm


def _as_array(x: Any) -> np.ndarray:
    if hasattr(x, "read"):
        return x.read
    return np.asarray(x)


def populated_fraction(grid) -> float:
    life = _as_array(grid.life)
    return float(np.count_nonzero(life != LifeForm.NONE)) / float(life.size)


def life_census(grid) -> dict[str, int]:
    """Cell count per life-form (empty forms omitted)."""
    counts = np.bincount(_as_array(grid.life).astype(np.int64).ravel().clip(0),
                         minlength=len(LifeForm))
    return {LifeForm(k).name.lower(): int(c) for k, c in enumerate(counts[:len(LifeForm)])
            if c and k != LifeForm.NONE}


def global_means(grid) -> dict[str, float]:
    """Planet means of the gas, climate and life fields plus land/ocean split temperatures."""
    land = grid.land
    n = float(grid.n_cells)
    out: dict[str, float] = {}
    for name in ("temperature", "rainfall", "humidity", "oxygen", "co2", "methane",
                 "nitrous_oxide", "greenhouse", "biomass"):
        out[name] = float(np.mean(_as_array(getattr(grid, name))))
    T = _as_array(grid.temperature)
    n_land = int(np.count_nonzero(land))
    out["land_fraction"] = n_land / n
    out["land_temperature"] = float(np.mean(T[land])) if n_land else float("nan")
    out["ocean_temperature"] = float(np.mean(T[~land])) if n_land < n else float("nan")
    out["populated_fraction"] = populated_fraction(grid)
    out["ice_fraction"] = float(np.count_nonzero(_as_array(grid.ice))) / n
    return out


def range_violations(grid) -> dict[str, int]:
    """
    Count cells outside the declared range (or non-finite) per qualified field name.
    An empty dict means every invariant holds.
    """
    bad: dict[str, int] = {}

    def check(name: str, arr: np.ndarray, lo: float | None, hi: float | None) -> None:
        a = _as_array(arr)
        mask = ~np.isfinite(a)
        if lo is not None:
            mask |= a < lo
        if hi is not None:
            mask |= a > hi
        k = int(np.count_nonzero(mask))
        if k:
            bad[name] = k

    for name, (lo, hi) in constants.FIELD_RANGES.items():
        check(name, getattr(grid, name), lo, hi)
    for name in constants.FINITE_ONLY:
        check(name, getattr(grid, name), None, None)
    for name, (lo, hi) in constants.GEOLOGY_RANGES.items():
        check(f"geology.{name}", getattr(grid.geology, name), lo, hi)
    for name, (lo, hi) in constants.METEOROLOGY_RANGES.items():
        check(f"meteo.{name}", getattr(grid.meteo, name), lo, hi)
    for name in constants.METEOROLOGY_FINITE_ONLY:
        check(f"meteo.{name}", getattr(grid.meteo, name), None, None)
    life = _as_array(grid.life)
    k = int(np.count_nonzero((life < 0) | (life > max(LifeForm))))
    if k:
        bad["life"] = k
    return bad


__all__ = ["global_means", "range_violations", "populated_fraction", "life_census"]

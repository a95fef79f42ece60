"""
guards.py

Validate-and-default helpers shared by the field engines.

Every derived quantity that can go pathological on generated terrain (gradients,
ratios, rates) passes through one of these before use: NaN/Inf collapse to zero,
then the value is clamped into its declared range. Engines never raise for
data-quality problems; they heal the value and carry on.
"""

from __future__ import annotations

import math

import numpy as np


def finite_or_zero(a) -> np.ndarray:
    """Return a float copy of `a` with NaN/+Inf/-Inf replaced by 0."""
    return np.nan_to_num(np.asarray(a, dtype=float), nan=0.0, posinf=0.0, neginf=0.0)


def finite_clip(a, lo: float, hi: float | None) -> np.ndarray:
    """finite_or_zero followed by a clamp to [lo, hi] (hi=None: unbounded above)."""
    out = finite_or_zero(a)
    if hi is None:
        return np.maximum(out, lo)
    return np.clip(out, lo, hi)


def finite_clip_inplace(a: np.ndarray, lo: float, hi: float | None) -> None:
    """In-place variant used by PlanetGrid.clamp_fields (no allocation)."""
    np.nan_to_num(a, copy=False, nan=0.0, posinf=0.0, neginf=0.0)
    if hi is None:
        np.maximum(a, lo, out=a)
    else:
        np.clip(a, lo, hi, out=a)


def scalar_clip(x: float, lo: float, hi: float) -> float:
    try:
        v = float(x)
    except (TypeError, ValueError):
        v = 0.0
    if not math.isfinite(v):
        v = 0.0
    return min(max(v, lo), hi)

from __future__ import annotations

"""
LifeSupportProfile: smoothed planet-wide statistics that define the comfort
window used by growth, death and survivability checks.

Tracked statistics
- oxygen          : all cells
- land_temperature: land cells
- water_temperature: water cells
- land_rainfall   : land cells

Each statistic blends toward the newly observed mean/std with an EMA factor
(default 0.05) and relaxes its tracked min/max toward the observed extremes
at a slower rate (default 0.015). The first observation initialises directly.
A statistic with no contributing cells this tick keeps its previous value.

Only the smoothed constants are persisted (to_dict/from_dict); the profile is
otherwise rebuilt from the grid every tick.
"""

from dataclasses import asdict, dataclass, field

import numpy as np

from ..numerics.guards import finite_or_zero


@dataclass
class ProfileStat:
    mean: float = 0.0
    std: float = 0.0
    min: float = 0.0
    max: float = 0.0
    initialized: bool = False

    def observe(self, values: np.ndarray, blend: float, relax: float) -> None:
        v = finite_or_zero(values).ravel()
        if v.size == 0:
            return
        m = float(np.mean(v))
        s = float(np.std(v))
        lo = float(np.min(v))
        hi = float(np.max(v))
        if not self.initialized:
            self.mean, self.std, self.min, self.max = m, s, lo, hi
            self.initialized = True
            return
        self.mean += (m - self.mean) * blend
        self.std += (s - self.std) * blend
        self.min += (lo - self.min) * relax
        self.max += (hi - self.max) * relax

    def window(self, min_tolerance: float, sigmas: float = 2.5) -> tuple[float, float, float]:
        """(lo, hi, tol): mean +/- tol widened to the tracked extremes."""
        tol = max(sigmas * self.std, float(min_tolerance))
        lo = min(self.mean - tol, self.min)
        hi = max(self.mean + tol, self.max)
        return lo, hi, tol


@dataclass
class LifeSupportProfile:
    blend: float = 0.05
    relax: float = 0.015
    oxygen: ProfileStat = field(default_factory=ProfileStat)
    land_temperature: ProfileStat = field(default_factory=ProfileStat)
    water_temperature: ProfileStat = field(default_factory=ProfileStat)
    land_rainfall: ProfileStat = field(default_factory=ProfileStat)

    STATS = ("oxygen", "land_temperature", "water_temperature", "land_rainfall")

    def update(self, grid) -> None:
        land = grid.land
        water = ~land
        self.oxygen.observe(grid.oxygen, self.blend, self.relax)
        self.land_temperature.observe(grid.temperature[land], self.blend, self.relax)
        self.water_temperature.observe(grid.temperature[water], self.blend, self.relax)
        self.land_rainfall.observe(grid.rainfall[land], self.blend, self.relax)
        # a planet with no ocean (or no land) borrows the other temperature statistic
        if not self.water_temperature.initialized and self.land_temperature.initialized:
            self.water_temperature = ProfileStat(**asdict(self.land_temperature))
        if not self.land_temperature.initialized and self.water_temperature.initialized:
            self.land_temperature = ProfileStat(**asdict(self.water_temperature))

    @property
    def initialized(self) -> bool:
        return self.oxygen.initialized

    def to_dict(self) -> dict[str, float]:
        out: dict[str, float] = {}
        for name in self.STATS:
            stat: ProfileStat = getattr(self, name)
            for key in ("mean", "std", "min", "max"):
                out[f"{name}.{key}"] = float(getattr(stat, key))
            out[f"{name}.initialized"] = 1.0 if stat.initialized else 0.0
        return out

    @classmethod
    def from_dict(cls, data: dict[str, float], *, blend: float = 0.05,
                  relax: float = 0.015) -> LifeSupportProfile:
        prof = cls(blend=blend, relax=relax)
        for name in cls.STATS:
            stat: ProfileStat = getattr(prof, name)
            for key in ("mean", "std", "min", "max"):
                k = f"{name}.{key}"
                if k in data:
                    setattr(stat, key, float(data[k]))
            stat.initialized = bool(data.get(f"{name}.initialized", 0.0))
        return prof

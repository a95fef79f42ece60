# pyplanet/grid.py

"""
Defines the shared planet grid: one structure-of-arrays cell store plus the
always-allocated geology and meteorology side tables.

Layout: every field is a 2D array of shape (height, width), row = y, column = x.
Topology approximates a sphere: x wraps (longitude), y clamps (poles), so a
cell on the top or bottom row simply has fewer Moore neighbours.
"""

from __future__ import annotations

from dataclasses import dataclass, fields

import numpy as np
from scipy.ndimage import convolve

from . import constants
from .numerics.guards import finite_clip_inplace

_MOORE_KERNEL = np.ones((3, 3), dtype=float)
_MOORE_KERNEL[1, 1] = 0.0


@dataclass
class GeologyTable:
    """Geology / hydrology extension data, indexed identically to the grid."""

    plate_id: np.ndarray
    volcanism: np.ndarray
    erosion: np.ndarray
    sediment: np.ndarray
    soil_moisture: np.ndarray
    flow_dx: np.ndarray
    flow_dy: np.ndarray
    flow_volume: np.ndarray
    flow_accumulation: np.ndarray
    salinity: np.ndarray
    water_density: np.ndarray
    flood_level: np.ndarray
    river_id: np.ndarray  # 0 = no river

    @classmethod
    def allocate(cls, shape: tuple[int, int]) -> GeologyTable:
        f8 = lambda v=0.0: np.full(shape, v, dtype=np.float64)  # noqa: E731
        return cls(
            plate_id=np.zeros(shape, dtype=np.int32),
            volcanism=f8(),
            erosion=f8(),
            sediment=f8(),
            soil_moisture=f8(),
            flow_dx=np.zeros(shape, dtype=np.int8),
            flow_dy=np.zeros(shape, dtype=np.int8),
            flow_volume=f8(),
            flow_accumulation=f8(),
            salinity=f8(),
            water_density=f8(),
            flood_level=f8(),
            river_id=np.zeros(shape, dtype=np.int32),
        )


@dataclass
class MeteorologyTable:
    """Meteorology extension data (written by the weather collaborator)."""

    wind_x: np.ndarray
    wind_y: np.ndarray
    pressure: np.ndarray
    cloud_cover: np.ndarray
    precipitation: np.ndarray

    @classmethod
    def allocate(cls, shape: tuple[int, int]) -> MeteorologyTable:
        return cls(
            wind_x=np.zeros(shape, dtype=np.float64),
            wind_y=np.zeros(shape, dtype=np.float64),
            pressure=np.full(shape, constants.DEFAULT_PRESSURE_HPA, dtype=np.float64),
            cloud_cover=np.zeros(shape, dtype=np.float64),
            precipitation=np.zeros(shape, dtype=np.float64),
        )


class PlanetGrid:
    """
    Shared cell array and neighbour topology.

    Primary fields are plain ndarray attributes (grid.oxygen, grid.biomass, ...);
    extension data lives in grid.geology and grid.meteo.
    """

    SCALAR_FIELDS = (
        "elevation", "temperature", "rainfall", "humidity",
        "oxygen", "co2", "methane", "nitrous_oxide", "greenhouse",
        "biomass", "evolution",
    )

    def __init__(self, width: int, height: int, *,
                 temperature: float = 15.0,
                 oxygen: float = constants.DEFAULT_OXYGEN,
                 co2: float = constants.DEFAULT_CO2) -> None:
        width = int(width)
        height = int(height)
        if width < 1 or height < 1:
            raise ValueError(f"grid must be at least 1x1, got {width}x{height}")
        self.width = width
        self.height = height
        self.shape = (height, width)

        def f8(v: float = 0.0) -> np.ndarray:
            return np.full(self.shape, v, dtype=np.float64)

        self.elevation = f8()
        self.temperature = f8(temperature)
        self.rainfall = f8()
        self.humidity = f8()
        self.oxygen = f8(oxygen)
        self.co2 = f8(co2)
        self.methane = f8()
        self.nitrous_oxide = f8()
        self.greenhouse = f8()
        self.life = np.zeros(self.shape, dtype=np.int8)
        self.biomass = f8()
        self.evolution = f8()
        self.ice = np.zeros(self.shape, dtype=bool)

        self.geology = GeologyTable.allocate(self.shape)
        self.meteo = MeteorologyTable.allocate(self.shape)

        self._moore_count = self.moore_sum(np.ones(self.shape, dtype=float))

    @classmethod
    def from_elevation(cls, elevation, **kwargs) -> PlanetGrid:
        elevation = np.asarray(elevation, dtype=float)
        if elevation.ndim != 2:
            raise ValueError(f"elevation must be 2D, got shape {elevation.shape}")
        g = cls(elevation.shape[1], elevation.shape[0], **kwargs)
        g.elevation[:] = elevation
        finite_clip_inplace(g.elevation, *constants.ELEVATION_RANGE)
        return g

    # ---- masks ----
    @property
    def n_cells(self) -> int:
        return self.width * self.height

    @property
    def water(self) -> np.ndarray:
        return self.elevation < 0.0

    @property
    def land(self) -> np.ndarray:
        return self.elevation >= 0.0

    @property
    def moore_count(self) -> np.ndarray:
        """Number of in-grid Moore neighbours per cell (3 or 5 on polar rows, else 8)."""
        return self._moore_count

    # ---- topology ----
    def wrap(self, x: int, y: int) -> tuple[int, int] | None:
        """Wrap x, reject y outside the poles."""
        if y < 0 or y >= self.height:
            return None
        return int(x) % self.width, int(y)

    def neighbors(self, x: int, y: int) -> list[tuple[int, int]]:
        out = []
        for dx, dy in constants.MOORE_OFFSETS:
            nb = self.wrap(x + dx, y + dy)
            if nb is not None:
                out.append(nb)
        return out

    def shift(self, field: np.ndarray, dx: int, dy: int, fill: float = 0.0) -> np.ndarray:
        """
        out[y, x] = field[y + dy, (x + dx) % width]; rows past a pole get `fill`.
        """
        out = np.roll(field, -dx, axis=1) if dx else np.array(field, copy=True)
        if dy > 0:
            out[:-dy] = out[dy:].copy()
            out[-dy:] = fill
        elif dy < 0:
            out[-dy:] = out[:dy].copy()
            out[:-dy] = fill
        return out

    def shift_valid(self, dy: int) -> np.ndarray:
        """Boolean mask of cells whose (.., dy) neighbour exists."""
        valid = np.ones(self.shape, dtype=bool)
        if dy > 0:
            valid[-dy:] = False
        elif dy < 0:
            valid[:-dy] = False
        return valid

    def gather(self, field: np.ndarray, dx: np.ndarray, dy: np.ndarray) -> np.ndarray:
        """Per-cell neighbour sample with x wrap and y clamp."""
        ys, xs = np.indices(self.shape)
        ny = np.clip(ys + dy, 0, self.height - 1)
        nx = (xs + dx) % self.width
        return field[ny, nx]

    def moore_sum(self, field: np.ndarray) -> np.ndarray:
        """Sum over the in-grid Moore neighbourhood (x periodic, y closed)."""
        padded = np.pad(np.asarray(field, dtype=float), ((1, 1), (0, 0)), mode="constant")
        return convolve(padded, _MOORE_KERNEL, mode="wrap")[1:-1]

    def moore_mean(self, field: np.ndarray) -> np.ndarray:
        return self.moore_sum(field) / np.maximum(self._moore_count, 1.0)

    def wrapped_distance(self, x0: float, y0: float) -> np.ndarray:
        """Euclidean distance from (x0, y0) to every cell, x measured the short way round."""
        ys, xs = np.indices(self.shape)
        ddx = np.abs(xs - x0)
        ddx = np.minimum(ddx, self.width - ddx)
        return np.hypot(ddx, ys - y0)

    # ---- invariants ----
    def clamp_fields(self) -> None:
        """Force every ranged field back into its declared range (NaN/Inf -> 0)."""
        for name, (lo, hi) in constants.FIELD_RANGES.items():
            finite_clip_inplace(getattr(self, name), lo, hi)
        for name in constants.FINITE_ONLY:
            np.nan_to_num(getattr(self, name), copy=False, nan=0.0, posinf=0.0, neginf=0.0)
        for name, (lo, hi) in constants.GEOLOGY_RANGES.items():
            finite_clip_inplace(getattr(self.geology, name), lo, hi)
        for name, (lo, hi) in constants.METEOROLOGY_RANGES.items():
            finite_clip_inplace(getattr(self.meteo, name), lo, hi)
        for name in constants.METEOROLOGY_FINITE_ONLY:
            np.nan_to_num(getattr(self.meteo, name), copy=False, nan=0.0, posinf=0.0, neginf=0.0)
        np.clip(self.geology.flow_dx, -1, 1, out=self.geology.flow_dx)
        np.clip(self.geology.flow_dy, -1, 1, out=self.geology.flow_dy)

    # ---- enumeration (persistence) ----
    def iter_fields(self):
        """Yield (qualified_name, array) for every per-cell field, primary then side tables."""
        for name in self.SCALAR_FIELDS:
            yield name, getattr(self, name)
        yield "life", self.life
        yield "ice", self.ice
        for f in fields(GeologyTable):
            yield f"geology.{f.name}", getattr(self.geology, f.name)
        for f in fields(MeteorologyTable):
            yield f"meteo.{f.name}", getattr(self.meteo, f.name)

    def field(self, qualified_name: str) -> np.ndarray:
        if qualified_name.startswith("geology."):
            return getattr(self.geology, qualified_name.split(".", 1)[1])
        if qualified_name.startswith("meteo."):
            return getattr(self.meteo, qualified_name.split(".", 1)[1])
        return getattr(self, qualified_name)

    def __repr__(self) -> str:
        return f"PlanetGrid(width={self.width}, height={self.height})"

"""
events.py

Biomass damage from geology and weather events.

Functions here take the working life/biomass arrays of the life engine and
modify them in place; they never touch the shared grid directly.

- eruptions: the vent cell is wiped, its Moore neighbours keep 30%
- earthquakes: radius 3*magnitude, linear falloff, damage (1-d/r)*mag*0.2
- storms: radius implied by category; hurricanes, tornadoes and blizzards
  scale biomass down above their intensity thresholds
Bacteria shrug off earthquakes and storms. Cells pushed below `empty_below`
revert to the empty life-form.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import numpy as np

from ..numerics.guards import scalar_clip
from .strategies import lookup
from .types import Earthquake, Eruption, LifeForm, Storm, StormCategory


@dataclass
class EventParams:
    eruption_neighbor_keep: float = 0.3
    quake_radius_per_mag: float = 3.0
    quake_damage: float = 0.2
    hurricane_threshold: float = 0.5
    hurricane_damage: float = 0.3
    tornado_threshold: float = 0.7
    tornado_keep: float = 0.2
    blizzard_threshold: float = 0.6
    blizzard_plant_keep: float = 0.7
    storm_threshold: float = 0.5
    storm_damage: float = 0.1
    empty_below: float = 0.1


def _in_grid(grid, x: int, y: int) -> bool:
    return 0 <= int(y) < grid.height


def apply_eruptions(grid, life: np.ndarray, biomass: np.ndarray,
                    eruptions: Iterable[Eruption], params: EventParams) -> int:
    n = 0
    for e in eruptions:
        if not _in_grid(grid, e.x, e.y):
            continue
        x, y = int(e.x) % grid.width, int(e.y)
        for nx, ny in grid.neighbors(x, y):
            biomass[ny, nx] *= params.eruption_neighbor_keep
        biomass[y, x] = 0.0
        life[y, x] = LifeForm.NONE
        n += 1
    return n


def apply_earthquakes(grid, life: np.ndarray, biomass: np.ndarray,
                      quakes: Iterable[Earthquake], params: EventParams) -> int:
    immune = lookup("storm_immune", life) > 0.0
    n = 0
    for q in quakes:
        if not _in_grid(grid, q.x, q.y):
            continue
        mag = scalar_clip(q.magnitude, 0.0, 10.0)
        radius = params.quake_radius_per_mag * mag
        if radius <= 0.0:
            continue
        d = grid.wrapped_distance(int(q.x) % grid.width, int(q.y))
        hit = (d < radius) & (life != LifeForm.NONE) & ~immune
        damage = (1.0 - d / radius) * mag * params.quake_damage
        biomass[hit] = np.maximum(biomass[hit] - damage[hit], 0.0)
        n += 1
    return n


def apply_storms(grid, life: np.ndarray, biomass: np.ndarray,
                 storms: Iterable[Storm], params: EventParams) -> int:
    immune = lookup("storm_immune", life) > 0.0
    n = 0
    for s in storms:
        if not _in_grid(grid, s.center_x, s.center_y):
            continue
        e = scalar_clip(s.intensity, 0.0, 1.0)
        try:
            cat = StormCategory(s.category)
        except ValueError:
            cat = StormCategory.THUNDERSTORM
        d = grid.wrapped_distance(int(s.center_x) % grid.width, int(s.center_y))
        hit = (d <= s.radius) & (life != LifeForm.NONE) & ~immune
        if cat.is_hurricane:
            if e > params.hurricane_threshold:
                biomass[hit] *= 1.0 - e * params.hurricane_damage
        elif cat is StormCategory.TORNADO:
            if e > params.tornado_threshold:
                biomass[hit] *= params.tornado_keep
        elif cat is StormCategory.BLIZZARD:
            if e > params.blizzard_threshold:
                plants = hit & (life == LifeForm.PLANT)
                biomass[plants] *= params.blizzard_plant_keep
        elif e > params.storm_threshold:
            biomass[hit] *= 1.0 - e * params.storm_damage
        n += 1
    return n


def clear_depleted(life: np.ndarray, biomass: np.ndarray, evolution: np.ndarray,
                   threshold: float, mask: np.ndarray | None = None) -> np.ndarray:
    """Empty populated cells (within `mask`) whose biomass fell below `threshold`; returns them."""
    dead = (life != LifeForm.NONE) & (biomass < threshold)
    if mask is not None:
        dead &= mask
    life[dead] = LifeForm.NONE
    biomass[dead] = 0.0
    evolution[dead] = 0.0
    return dead

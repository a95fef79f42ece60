"""
routing.py

Surface runoff routing on the planet grid (D8 steepest descent).

This module provides:
- route_flow: per-cell flow direction (single steepest-descent Moore neighbour)
  and flow magnitude (rainfall + soil moisture) x gradient, every operand
  sanitised and clamped to [0,10]
- accumulate_flow: drainage accumulation in one pass over cells sorted by
  descending elevation (upstream contributors are always visited first)
- River and trace_river: downhill river tracing from a source to open water

Conventions:
- flow_dx/flow_dy are int8 in {-1,0,1}; (0,0) means the cell has no lower
  neighbour (pit, plateau or water cell)
- x wraps, y clamps; an off-grid neighbour is never a flow target
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from . import constants
from .numerics.guards import finite_clip


@dataclass
class River:
    id: int
    source: tuple[int, int]
    mouth: tuple[int, int]
    path: list[tuple[int, int]] = field(default_factory=list)
    volume: float = 0.0

    def __len__(self) -> int:
        return len(self.path)


def route_flow(grid, elevation: np.ndarray, rainfall: np.ndarray,
               soil_moisture: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Returns (flow_dx, flow_dy, flow_volume). Water cells carry no flow.

    Ties between equally steep neighbours resolve in MOORE_OFFSETS order
    (E, W, S, N, then diagonals).
    """
    lo, hi = constants.FLOW_RANGE
    elev = finite_clip(elevation, *constants.ELEVATION_RANGE)

    drops = np.full((len(constants.MOORE_OFFSETS), *grid.shape), -np.inf)
    for k, (dx, dy) in enumerate(constants.MOORE_OFFSETS):
        nb = grid.shift(elev, dx, dy, fill=np.inf)
        d = (elev - nb) / constants.MOORE_DISTANCES[k]
        drops[k] = np.where(grid.shift_valid(dy), d, -np.inf)

    best = np.argmax(drops, axis=0)  # first max wins
    gradient = np.take_along_axis(drops, best[None], axis=0)[0]
    land = elev >= 0.0
    flows = land & np.isfinite(gradient) & (gradient > 0.0)

    offsets = np.asarray(constants.MOORE_OFFSETS, dtype=np.int8)
    flow_dx = np.where(flows, offsets[best, 0], 0).astype(np.int8)
    flow_dy = np.where(flows, offsets[best, 1], 0).astype(np.int8)

    rain = finite_clip(rainfall, lo, hi)
    soil = finite_clip(soil_moisture, lo, hi)
    grad = finite_clip(np.where(flows, gradient, 0.0), lo, hi)
    volume = finite_clip((rain + soil) * grad, lo, hi)
    volume = np.where(flows, volume, 0.0)
    return flow_dx, flow_dy, volume


def downstream_index(grid, flow_dx: np.ndarray, flow_dy: np.ndarray) -> np.ndarray:
    """Flat index of each cell's flow target, -1 where the cell does not flow."""
    ys, xs = np.indices(grid.shape)
    ty = ys + flow_dy
    tx = (xs + flow_dx) % grid.width
    has = ((flow_dx != 0) | (flow_dy != 0)) & (ty >= 0) & (ty < grid.height)
    return np.where(has, ty * grid.width + tx, -1).ravel()


def accumulate_flow(grid, elevation: np.ndarray, flow_volume: np.ndarray,
                    flow_dx: np.ndarray, flow_dy: np.ndarray) -> np.ndarray:
    """
    Drainage accumulation: each cell pushes its own flow plus everything it has
    received into its downstream target. Cells are visited once, highest first;
    steepest descent always points strictly downhill, so this single pass is exact.
    """
    order = np.argsort(-np.asarray(elevation, dtype=float).ravel(), kind="stable")
    target = downstream_index(grid, flow_dx, flow_dy)
    acc = finite_clip(flow_volume, 0.0, None).ravel().copy()
    for idx in order:
        t = target[idx]
        if t >= 0:
            acc[t] += acc[idx]
    return acc.reshape(grid.shape)


def trace_river(grid, source: tuple[int, int], *, elevation: np.ndarray,
                flow_dx: np.ndarray, flow_dy: np.ndarray, ice: np.ndarray,
                river_id: np.ndarray | None = None, carve: float = 0.001,
                max_len: int = constants.RIVER_MAX_PATH) -> tuple[list[tuple[int, int]], tuple[int, int] | None]:
    """
    Follow flow directions downhill from `source`.

    Stops at ice, `max_len` steps, a revisited cell, a cell with no outflow,
    open water, or a cell already marked in `river_id` (a confluence). Every
    traversed land cell is lowered by `carve` (in place on `elevation`).
    Returns (path, mouth); mouth is the open-water or confluence cell reached,
    or None if the trace stopped elsewhere. The path never includes the mouth.
    """
    lo, hi = constants.ELEVATION_RANGE
    path: list[tuple[int, int]] = []
    seen: set[tuple[int, int]] = set()
    x, y = source
    while len(path) < max_len:
        if (x, y) in seen or ice[y, x]:
            return path, None
        if elevation[y, x] < 0.0:
            return path, (x, y)
        if river_id is not None and river_id[y, x] != 0:
            return path, (x, y)
        seen.add((x, y))
        path.append((x, y))
        elevation[y, x] = min(max(elevation[y, x] - carve, lo), hi)
        dx, dy = int(flow_dx[y, x]), int(flow_dy[y, x])
        if dx == 0 and dy == 0:
            return path, None
        nxt = grid.wrap(x + dx, y + dy)
        if nxt is None:
            return path, None
        x, y = nxt
    return path, None

"""
hydrology.py

Surface and ocean hydrology on the shared planet grid.

This module provides:
- HydrologyParams loaded from environment variables (PP_HYDRO_*)
- update_soil_moisture: rainfall input, evaporation, transpiration; removed water
  is credited to humidity
- flood_relaxation: 3 sequential passes moving flood water to the lowest
  total-elevation neighbour, then evaporation/infiltration decay
- HydrologyEngine: per-tick driver (soil -> routing -> accumulation -> rivers ->
  ocean passes -> flooding) with read-old / compute-new / commit-new semantics

Conventions:
- Soil moisture, humidity in [0,1]; flow volume and flood level in [0,10]
- Rivers are owned here; other collaborators only see `rivers` (a tuple copy)
  and `flow_accumulation`
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import numpy as np

from . import constants
from .numerics.guards import finite_clip, finite_or_zero
from .ocean import (
    OceanParams,
    current_kernel,
    get_ocean_params_from_env,
    reduce_deltas,
    salinity_kernel,
    thermohaline_kernel,
    tidal_inundation,
    tide_height,
    water_density,
)
from .routing import River, accumulate_flow, route_flow, trace_river


@dataclass
class HydrologyParams:
    rain_infiltration: float = 0.1        # soil gain per unit rainfall per unit time
    evap_base: float = 0.05               # soil evaporation per unit time
    evap_per_degree: float = 0.01         # extra evaporation per °C above evap_ref_temp
    evap_ref_temp: float = 20.0
    transpiration: float = 0.05           # x biomass, where biomass > transpiration_min_biomass
    transpiration_min_biomass: float = 0.2
    humidity_credit: float = 0.5          # fraction of removed soil water added to humidity
    river_min_elevation: float = 0.3
    river_min_rainfall: float = 0.5
    river_min_flow: float = 0.1
    river_accum_threshold: float = 0.5
    river_source_prob: float = 0.001      # per qualifying cell per tick
    river_min_length: int = 4
    river_carve: float = 0.001
    flood_saturation: float = 0.95        # soil moisture above which rainfall ponds
    flood_rain_excess: float = 0.5        # rainfall above this ponds on saturated soil
    flood_rain_rate: float = 0.1
    flood_transfer: float = 0.3           # fraction moved per pass (x dt, capped 0.5)
    flood_evaporation: float = 0.05
    flood_infiltration: float = 0.05
    flood_passes: int = 3
    n_workers: int = 4
    seed: int = 12345
    diag: bool = True


def get_hydrology_params_from_env() -> HydrologyParams:
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

    return HydrologyParams(
        rain_infiltration=_f("PP_HYDRO_RAIN_INFILTRATION", 0.1),
        evap_base=_f("PP_HYDRO_EVAP", 0.05),
        transpiration=_f("PP_HYDRO_TRANSPIRATION", 0.05),
        humidity_credit=_f("PP_HYDRO_HUMIDITY_CREDIT", 0.5),
        river_accum_threshold=_f("PP_RIVER_ACCUM", 0.5),
        river_source_prob=_f("PP_RIVER_PROB", 0.001),
        river_min_length=_i("PP_RIVER_MIN_LEN", 4),
        flood_transfer=_f("PP_FLOOD_TRANSFER", 0.3),
        flood_evaporation=_f("PP_FLOOD_EVAP", 0.05),
        flood_infiltration=_f("PP_FLOOD_INFILTRATION", 0.05),
        flood_passes=_i("PP_FLOOD_PASSES", 3),
        n_workers=max(1, _i("PP_WORKERS", 4)),
        seed=_i("PP_SEED", 12345),
        diag=(_i("PP_HYDRO_DIAG", 1) == 1),
    )


def update_soil_moisture(soil: np.ndarray, humidity: np.ndarray, *, water: np.ndarray,
                         rainfall: np.ndarray, temperature: np.ndarray, biomass: np.ndarray,
                         params: HydrologyParams, dt: float) -> tuple[np.ndarray, np.ndarray]:
    """
    Returns (soil_next, humidity_next). Water cells are saturated; on land the
    evaporated + transpired water is credited back to humidity.
    """
    p = params
    s = finite_clip(soil, *constants.UNIT_RANGE)
    h = finite_clip(humidity, *constants.UNIT_RANGE)
    rain = finite_clip(rainfall, *constants.UNIT_RANGE)
    T = finite_or_zero(temperature)
    bio = finite_clip(biomass, *constants.UNIT_RANGE)

    wet = np.clip(s + rain * p.rain_infiltration * dt, 0.0, 1.0)
    evap = (p.evap_base + np.maximum(T - p.evap_ref_temp, 0.0) * p.evap_per_degree) * dt
    transp = np.where(bio > p.transpiration_min_biomass, bio * p.transpiration * dt, 0.0)
    removed = np.minimum(wet, np.maximum(evap + transp, 0.0))

    soil_next = np.where(water, 1.0, np.clip(wet - removed, 0.0, 1.0))
    credited = np.where(water, 0.0, removed * p.humidity_credit)
    humidity_next = np.clip(h + credited, 0.0, 1.0)
    return soil_next, humidity_next


def flood_relaxation(grid, flood: np.ndarray, elevation: np.ndarray,
                     params: HydrologyParams, dt: float) -> np.ndarray:
    """
    Iterative flood spreading. Each pass moves a fraction of every cell's flood
    to its lowest total-elevation (ground + flood) Moore neighbour, if that is
    lower, as deltas applied after the pass; then evaporation/infiltration decay.
    Water cells drain their flood into the sea.
    """
    p = params
    lo, hi = constants.FLOOD_RANGE
    water = finite_or_zero(elevation) < 0.0
    elev = finite_or_zero(elevation)
    f = np.where(water, 0.0, finite_clip(flood, lo, hi))
    frac = min(max(p.flood_transfer * dt, 0.0), 0.5)
    decay = min(max((p.flood_evaporation + p.flood_infiltration) * dt, 0.0), 1.0)
    offsets = constants.MOORE_OFFSETS
    ys, xs = np.indices(grid.shape)

    for _ in range(max(0, int(p.flood_passes))):
        if not np.any(f > 0.0):
            break
        total = elev + f
        nb_total = np.stack([
            np.where(grid.shift_valid(dy), grid.shift(total, dx, dy, fill=np.inf), np.inf)
            for dx, dy in offsets
        ])
        k = np.argmin(nb_total, axis=0)
        low = np.take_along_axis(nb_total, k[None], axis=0)[0]
        movers = (f > 0.0) & np.isfinite(low) & (low < total)
        amount = np.where(movers, np.minimum(f * frac, (total - np.where(movers, low, total)) * 0.5), 0.0)

        delta = np.zeros(grid.shape)
        off = np.asarray(offsets)
        ty = ys + off[k, 1]
        tx = (xs + off[k, 0]) % grid.width
        m = amount > 0.0
        delta[m] -= amount[m]
        np.add.at(delta, (ty[m], tx[m]), amount[m])

        f = np.clip(f + delta, lo, hi)
        f = np.where(water, 0.0, f * (1.0 - decay))
    return np.clip(finite_or_zero(f), lo, hi)


@dataclass
class HydrologyResult:
    soil_moisture: np.ndarray
    humidity: np.ndarray
    elevation: np.ndarray
    temperature: np.ndarray
    flow_dx: np.ndarray
    flow_dy: np.ndarray
    flow_volume: np.ndarray
    flow_accumulation: np.ndarray
    salinity: np.ndarray
    water_density: np.ndarray
    flood_level: np.ndarray
    river_id: np.ndarray
    humidity_delta: np.ndarray | None = None
    elevation_delta: np.ndarray | None = None
    temperature_delta: np.ndarray | None = None
    rivers: list[River] = field(default_factory=list)
    next_river_id: int = 1
    sim_time: float = 0.0
    tide_height: float = 0.0


class HydrologyEngine:
    """
    Soil moisture, flow routing, rivers, ocean transport and flooding.

    compute(dt) works on private copies of the grid fields it touches and returns
    a HydrologyResult; commit(result) writes them back and adopts the new river
    list. Ocean transport kernels run on a private row-chunk pool.
    """

    def __init__(self, grid, params: HydrologyParams | None = None,
                 ocean_params: OceanParams | None = None, *, seed: int | None = None) -> None:
        self.grid = grid
        self.params = params or get_hydrology_params_from_env()
        self.ocean_params = ocean_params or get_ocean_params_from_env()
        base_seed = self.params.seed if seed is None else int(seed)
        self.rng = np.random.default_rng(base_seed + 2000)
        self._rivers: list[River] = []
        self._next_river_id = 1
        self.sim_time = 0.0
        self.tide_height = 0.0
        self._pool: ThreadPoolExecutor | None = None
        if self.params.n_workers > 1 and self.ocean_params.n_chunks > 1:
            self._pool = ThreadPoolExecutor(max_workers=self.params.n_workers,
                                            thread_name_prefix="pp-ocean")

    # ---- read-only views for collaborators ----
    @property
    def rivers(self) -> tuple[River, ...]:
        return tuple(self._rivers)

    @property
    def flow_accumulation(self) -> np.ndarray:
        return self.grid.geology.flow_accumulation

    @property
    def next_river_id(self) -> int:
        return self._next_river_id

    def river_by_id(self, river_id: int) -> River | None:
        for r in self._rivers:
            if r.id == river_id:
                return r
        return None

    def clear_rivers(self) -> None:
        self._rivers = []
        self._next_river_id = 1
        self.grid.geology.river_id[...] = 0

    def restore_rivers(self, rivers, next_id: int | None = None,
                       river_id: np.ndarray | None = None) -> None:
        """
        Adopt an externally restored river list. A saved `river_id` field is
        taken as is; without one the path cells are re-marked.
        """
        self._rivers = list(rivers)
        rid = self.grid.geology.river_id
        if river_id is not None:
            rid[...] = np.asarray(river_id).astype(rid.dtype, copy=False)
        else:
            rid[...] = 0
            for r in self._rivers:
                for x, y in r.path:
                    if 0 <= y < self.grid.height:
                        rid[y, x % self.grid.width] = r.id
        top = max((r.id for r in self._rivers), default=0)
        self._next_river_id = max(top + 1, int(next_id or 1))

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    # ---- rivers ----
    def _update_rivers(self, rivers: list[River], river_id: np.ndarray, acc: np.ndarray,
                       ice: np.ndarray) -> list[River]:
        kept: list[River] = []
        for r in rivers:
            if not r.path:
                continue
            frozen = sum(1 for x, y in r.path if ice[y, x])
            if frozen * 2 > len(r.path):
                river_id[river_id == r.id] = 0
                continue
            lx, ly = r.path[-1]
            r.volume = float(acc[ly, lx])
            kept.append(r)
        return kept

    def _form_rivers(self, w: HydrologyResult, rainfall: np.ndarray, ice: np.ndarray) -> None:
        p = self.params
        g = self.grid
        cand = (
            (w.elevation >= 0.0) & (w.river_id == 0) & (~ice)
            & (w.elevation > p.river_min_elevation)
            & (rainfall > p.river_min_rainfall)
            & (w.flow_volume > p.river_min_flow)
            & (w.flow_accumulation > p.river_accum_threshold)
        )
        ys, xs = np.nonzero(cand)
        if ys.size == 0:
            return
        hits = self.rng.random(ys.size) < p.river_source_prob
        for y, x in zip(ys[hits], xs[hits]):
            if w.river_id[y, x] != 0:
                continue
            path, mouth = trace_river(g, (int(x), int(y)), elevation=w.elevation,
                                      flow_dx=w.flow_dx, flow_dy=w.flow_dy, ice=ice,
                                      river_id=w.river_id,
                                      carve=p.river_carve)
            if len(path) < p.river_min_length:
                continue
            rid = w.next_river_id
            w.next_river_id += 1
            lx, ly = path[-1]
            river = River(id=rid, source=path[0], mouth=mouth if mouth is not None else path[-1],
                          path=path, volume=float(w.flow_accumulation[ly, lx]))
            for px, py in path:
                w.river_id[py, px] = rid
            w.rivers.append(river)
            if p.diag:
                print(f"[Hydrology] river {rid} formed: source={river.source} "
                      f"mouth={river.mouth} len={len(path)}")

    # ---- tick ----
    def compute(self, dt: float) -> HydrologyResult:
        g = self.grid
        geo = g.geology
        p = self.params
        op = self.ocean_params
        dt = float(dt)

        water = g.water
        ice = np.asarray(g.ice, dtype=bool)
        rainfall = finite_clip(g.rainfall, *constants.UNIT_RANGE)
        temperature = finite_or_zero(g.temperature)

        soil, humidity = update_soil_moisture(
            geo.soil_moisture, g.humidity, water=water, rainfall=rainfall,
            temperature=temperature, biomass=g.biomass, params=p, dt=dt)

        elevation = finite_clip(g.elevation, *constants.ELEVATION_RANGE)
        flow_dx, flow_dy, flow_volume = route_flow(g, elevation, rainfall, soil)
        acc = accumulate_flow(g, elevation, flow_volume, flow_dx, flow_dy)

        w = HydrologyResult(
            soil_moisture=soil, humidity=humidity, elevation=elevation.copy(),
            temperature=temperature, flow_dx=flow_dx, flow_dy=flow_dy,
            flow_volume=flow_volume, flow_accumulation=acc,
            salinity=finite_clip(geo.salinity, *constants.SALINITY_RANGE),
            water_density=finite_clip(geo.water_density, *constants.DENSITY_RANGE),
            flood_level=finite_clip(geo.flood_level, *constants.FLOOD_RANGE),
            river_id=np.array(geo.river_id, copy=True),
            rivers=[River(r.id, r.source, r.mouth, list(r.path), r.volume) for r in self._rivers],
            next_river_id=self._next_river_id,
            sim_time=self.sim_time + dt,
        )

        w.rivers = self._update_rivers(w.rivers, w.river_id, acc, ice)
        self._form_rivers(w, rainfall, ice)

        # ocean: salinity, density, currents, thermohaline
        mouths = np.zeros(g.shape, dtype=bool)
        for r in w.rivers:
            mx, my = r.mouth
            mouths[my, mx] = True
        d = reduce_deltas(salinity_kernel(g, w.salinity, temperature, rainfall, ice, mouths, op, dt),
                          g.shape, op.n_chunks, self._pool)
        w.salinity = np.where(water, np.clip(w.salinity + d["salinity"], *constants.SALINITY_RANGE), 0.0)
        w.water_density = water_density(temperature, w.salinity, water)

        d = reduce_deltas(current_kernel(g, w.temperature, op, dt), g.shape, op.n_chunks, self._pool)
        w.temperature = finite_or_zero(w.temperature + d["temperature"])

        d = reduce_deltas(thermohaline_kernel(g, w.temperature, w.salinity, w.water_density, op, dt),
                          g.shape, op.n_chunks, self._pool)
        w.temperature = finite_or_zero(w.temperature + d["temperature"])
        w.salinity = np.where(water, np.clip(w.salinity + d["salinity"], *constants.SALINITY_RANGE), 0.0)
        w.water_density = water_density(w.temperature, w.salinity, water)

        # tides + flooding
        w.tide_height = tide_height(w.sim_time, op.tide_amplitude, op.tide_period)
        flood = w.flood_level + tidal_inundation(g, w.elevation, w.tide_height, op, dt)
        ponding = (~water) & (soil >= p.flood_saturation) & (rainfall > p.flood_rain_excess)
        flood = flood + np.where(ponding, (rainfall - p.flood_rain_excess) * p.flood_rain_rate * dt, 0.0)
        w.flood_level = flood_relaxation(g, flood, w.elevation, p, dt)

        # humidity, elevation and temperature go back as deltas on top of other stage commits
        w.humidity_delta = w.humidity - finite_clip(g.humidity, *constants.UNIT_RANGE)
        w.elevation_delta = w.elevation - elevation
        w.temperature_delta = w.temperature - temperature
        return w

    def commit(self, w: HydrologyResult) -> None:
        g = self.grid
        geo = g.geology
        geo.soil_moisture[...] = w.soil_moisture
        g.humidity[...] = np.clip(finite_or_zero(g.humidity + w.humidity_delta), *constants.UNIT_RANGE)
        g.elevation[...] = np.clip(finite_or_zero(g.elevation + w.elevation_delta), *constants.ELEVATION_RANGE)
        g.temperature[...] = finite_or_zero(g.temperature + w.temperature_delta)
        geo.flow_dx[...] = w.flow_dx
        geo.flow_dy[...] = w.flow_dy
        geo.flow_volume[...] = w.flow_volume
        geo.flow_accumulation[...] = w.flow_accumulation
        geo.salinity[...] = w.salinity
        geo.water_density[...] = w.water_density
        geo.flood_level[...] = w.flood_level
        geo.river_id[...] = w.river_id
        self._rivers = w.rivers
        self._next_river_id = w.next_river_id
        self.sim_time = w.sim_time
        self.tide_height = w.tide_height

    def update(self, dt: float) -> None:
        self.commit(self.compute(dt))

    def step(self, ctx):
        w = self.compute(ctx.dt)

        def _commit() -> None:
            self.commit(w)
            if self.params.diag and ctx.diag_due:
                print(f"[Hydrology] tick={ctx.tick_index} rivers={len(self._rivers)} "
                      f"flood_max={float(np.max(self.grid.geology.flood_level)):.3f} "
                      f"tide={self.tide_height:+.4f}")

        return _commit

"""
atmosphere.py

Per-cell gas kinetics and spatial mixing for O2, CO2, CH4 and N2O, followed by
the greenhouse recomputation.

This module provides:
- AtmosphereParams loaded from environment variables (PP_ATM_*)
- reaction_delta: per-gas reaction rates from life, temperature and ocean proxies
- AtmosphereEngine: read-old / compute-new / commit-new driver used by the scheduler

Order per tick: for each gas, a reaction pass (rate x dt, clamp [0,100]) is
immediately followed by that gas's own mixing pass (Moore-mean diffusion at
0.15*dt plus upwind advection along the local wind). Greenhouse is derived last
from the mixed gases and humidity, clamp [0,5].
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import numpy as np

from . import constants
from .ecology.strategies import lookup
from .numerics.double_buffer import DoubleBufferingArray as DBA
from .numerics.guards import finite_clip, finite_or_zero

GASES = ("oxygen", "co2", "methane", "nitrous_oxide")


@dataclass
class AtmosphereParams:
    diffusion_rate: float = 0.15          # per unit time, toward the Moore mean
    advection_scale: float = 0.01         # blend per (wind speed x time)
    advection_max: float = 0.2            # cap on the advective blend
    wind_threshold: float = 0.1           # |component| below this has no upwind cell
    respiration: float = 0.1              # CO2 per unit biomass, every living cell
    combustion_temp: float = 100.0        # °C; O2 burn proxy above this
    combustion_o2: float = 0.1
    volcanic_temp: float = 200.0          # °C; outgassing proxy above this
    volcanic_co2: float = 0.5
    volcanic_ch4: float = 0.05
    ocean_absorb_temp: float = 20.0       # °C; cold water takes up CO2
    ocean_absorb_co2: float = 0.1
    wetland_soil: float = 0.7             # soil moisture for wetland CH4
    wetland_temp: float = 10.0
    wetland_ch4: float = 0.02
    ch4_oxidation: float = 0.01           # x CH4 x O2/21
    n2o_photolysis: float = 0.005         # x N2O
    gh_co2: float = 0.02
    gh_ch4: float = 0.56
    gh_n2o: float = 5.3
    gh_vapour: float = 0.1
    diag: bool = True


def get_atmosphere_params_from_env() -> AtmosphereParams:
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

    return AtmosphereParams(
        diffusion_rate=_f("PP_ATM_DIFFUSION", 0.15),
        advection_scale=_f("PP_ATM_ADVECTION", 0.01),
        advection_max=_f("PP_ATM_ADVECTION_MAX", 0.2),
        wind_threshold=_f("PP_ATM_WIND_THRESH", 0.1),
        ch4_oxidation=_f("PP_ATM_CH4_OXIDATION", 0.01),
        n2o_photolysis=_f("PP_ATM_N2O_PHOTOLYSIS", 0.005),
        diag=(_i("PP_ATM_DIAG", 1) == 1),
    )


def reaction_delta(gas: str, gases: dict[str, np.ndarray], *,
                   life: np.ndarray, biomass: np.ndarray, temperature: np.ndarray,
                   water: np.ndarray, soil_moisture: np.ndarray,
                   params: AtmosphereParams) -> np.ndarray:
    """
    Reaction rate (per unit time) for one gas. Inputs must already be finite.
    `gases` holds the current working values, so CH4 oxidation sees this tick's O2.
    """
    p = params
    if gas == "oxygen":
        d = (lookup("o2_production", life) - lookup("o2_consumption", life)) * biomass
        d = d - np.where(temperature > p.combustion_temp, p.combustion_o2, 0.0)
    elif gas == "co2":
        d = (lookup("co2_emission", life) - lookup("co2_uptake", life)) * biomass
        d = d + np.where(biomass > 0.0, p.respiration * biomass, 0.0)
        d = d + np.where(temperature > p.volcanic_temp, p.volcanic_co2, 0.0)
        d = d - np.where(water & (temperature < p.ocean_absorb_temp), p.ocean_absorb_co2, 0.0)
    elif gas == "methane":
        d = lookup("methane", life) * biomass
        wetland = (~water) & (soil_moisture > p.wetland_soil) & (temperature > p.wetland_temp)
        d = d + np.where(wetland, p.wetland_ch4, 0.0)
        d = d + np.where(temperature > p.volcanic_temp, p.volcanic_ch4, 0.0)
        d = d - p.ch4_oxidation * gases["methane"] * gases["oxygen"] / constants.DEFAULT_OXYGEN
    elif gas == "nitrous_oxide":
        d = lookup("n2o", life) * biomass
        d = d - p.n2o_photolysis * gases["nitrous_oxide"]
    else:
        raise KeyError(f"unknown gas {gas!r}")
    return finite_or_zero(d)


def greenhouse_from(co2: np.ndarray, methane: np.ndarray, n2o: np.ndarray,
                    humidity: np.ndarray, temperature: np.ndarray,
                    params: AtmosphereParams) -> np.ndarray:
    """0.02 CO2 + 0.56 CH4 + 5.3 N2O + water-vapour feedback, clamp [0,5]."""
    vapour = np.where(humidity > 0.5, (humidity - 0.5) * params.gh_vapour, 0.0)
    amp = np.where(temperature > 15.0, 1.0 + np.minimum((temperature - 15.0) / 10.0, 2.0), 1.0)
    gh = params.gh_co2 * co2 + params.gh_ch4 * methane + params.gh_n2o * n2o + vapour * amp
    return finite_clip(gh, *constants.GREENHOUSE_RANGE)


class AtmosphereEngine:
    """
    Gas chemistry + transport over a PlanetGrid.

    compute(dt) reads the grid and returns the next gas/greenhouse fields without
    touching the grid; commit(result) writes them. step(ctx) packages the two
    for the staged scheduler.
    """

    def __init__(self, grid, params: AtmosphereParams | None = None) -> None:
        self.grid = grid
        self.params = params or get_atmosphere_params_from_env()
        self.global_oxygen = float(np.mean(grid.oxygen))
        self.global_co2 = float(np.mean(grid.co2))
        self._ticks = 0
        # one double buffer per mixed field, reused every tick
        self._buffers: dict[str, DBA] = {}

    def _buffer(self, name: str) -> DBA:
        buf = self._buffers.get(name)
        if buf is None or buf.shape != self.grid.shape:
            buf = DBA(self.grid.shape, dtype=np.float64)
            self._buffers[name] = buf
        return buf

    # ---- transport ----
    def mix(self, field: np.ndarray, dt: float, name: str = "scratch") -> np.ndarray:
        """
        One mixing pass: diffusion toward the Moore-neighbour mean plus upwind
        advection. The field is loaded into the `name` buffer; neighbours are
        sampled from its read side and the result goes to its write side.
        """
        g = self.grid
        p = self.params
        buf = self._buffer(name)
        buf[...] = finite_clip(field, *constants.GAS_RANGE)
        buf.swap()
        old = buf.read

        rate = float(np.clip(p.diffusion_rate * dt, 0.0, 1.0))
        mixed = old + (g.moore_mean(buf) - old) * rate

        wx = finite_or_zero(g.meteo.wind_x)
        wy = finite_or_zero(g.meteo.wind_y)
        adv = np.clip(np.hypot(wx, wy) * p.advection_scale * dt, 0.0, p.advection_max)
        # Upwind cell lies against the wind.
        ux = np.where(wx > p.wind_threshold, -1, np.where(wx < -p.wind_threshold, 1, 0))
        uy = np.where(wy > p.wind_threshold, -1, np.where(wy < -p.wind_threshold, 1, 0))
        has_upwind = (ux != 0) | (uy != 0)
        if np.any(has_upwind):
            upwind = g.gather(buf, ux, uy)
            mixed = np.where(has_upwind, mixed + (upwind - mixed) * adv, mixed)

        lo, hi = constants.GAS_RANGE
        np.minimum(np.maximum(mixed, lo), hi, out=buf)
        buf.swap()
        # the buffer is overwritten next tick
        return np.array(buf.read, copy=True)

    # ---- tick ----
    def compute(self, dt: float) -> dict[str, np.ndarray]:
        g = self.grid
        p = self.params
        dt = float(dt)

        life = np.asarray(g.life)
        biomass = finite_clip(g.biomass, *constants.UNIT_RANGE)
        temperature = finite_or_zero(g.temperature)
        humidity = finite_clip(g.humidity, *constants.UNIT_RANGE)
        soil = finite_clip(g.geology.soil_moisture, *constants.UNIT_RANGE)
        water = g.water

        gases = {name: finite_clip(getattr(g, name), *constants.GAS_RANGE) for name in GASES}
        for name in GASES:
            d = reaction_delta(name, gases, life=life, biomass=biomass, temperature=temperature,
                               water=water, soil_moisture=soil, params=p)
            reacted = np.clip(gases[name] + d * dt, *constants.GAS_RANGE)
            gases[name] = self.mix(reacted, dt, name)

        gases["greenhouse"] = greenhouse_from(gases["co2"], gases["methane"], gases["nitrous_oxide"],
                                              humidity, temperature, p)
        return gases

    def commit(self, result: dict[str, np.ndarray]) -> None:
        g = self.grid
        for name, arr in result.items():
            getattr(g, name)[...] = arr
        self.global_oxygen = float(np.mean(g.oxygen))
        self.global_co2 = float(np.mean(g.co2))
        self._ticks += 1

    def update(self, dt: float) -> None:
        self.commit(self.compute(dt))

    def step(self, ctx):
        result = self.compute(ctx.dt)

        def _commit() -> None:
            self.commit(result)
            if self.params.diag and ctx.diag_due:
                print(f"[Atmosphere] tick={ctx.tick_index} O2={self.global_oxygen:.2f} "
                      f"CO2={self.global_co2:.2f} GH_mean={float(np.mean(self.grid.greenhouse)):.3f}")

        return _commit

"""
world/ façade: configuration, parameter registry and the PlanetWorld driver.

PlanetWorld owns the shared PlanetGrid, the three field engines and the staged
scheduler. Collaborators (weather, civilization, stabilizer, ...) are injected
through the constructor; geology/weather event sources default to an empty
StaticEventFeed.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable

from ..atmosphere import AtmosphereEngine, AtmosphereParams, get_atmosphere_params_from_env
from ..ecology.events import EventParams
from ..ecology.population import LifeEngine, LifeParams, get_life_params_from_env
from ..grid import PlanetGrid
from ..hydrology import HydrologyEngine, HydrologyParams, get_hydrology_params_from_env
from ..ocean import OceanParams, get_ocean_params_from_env
from ..terrain import generate_elevation, initial_climate
from .ports import StaticEventFeed, WiringError, require
from .scheduler import StagedScheduler, TickContext, default_pipeline
from .state import PlanetSnapshot, apply_snapshot, export_state

# ---------------------------
# Configuration & Parameters
# ---------------------------


@dataclass(frozen=True)
class SimConfig:
    """Simulation configuration (env-driven)."""

    width: int = 240
    height: int = 120
    dt: float = 1.0
    seed: int = 12345
    n_workers: int = 4
    diag_every: int = 100
    land_fraction: float = 0.3
    seed_life: bool = True
    speed_multiplier: float = 1.0

    @classmethod
    def from_env(cls) -> SimConfig:
        def _ibool(name: str, default: str = "1") -> bool:
            try:
                return int(os.getenv(name, default)) == 1
            except Exception:
                return default == "1"

        def _int(name: str, default: str) -> int:
            try:
                return int(os.getenv(name, default))
            except Exception:
                return int(default)

        def _float(name: str, default: str) -> float:
            try:
                return float(os.getenv(name, default))
            except Exception:
                return float(default)

        return cls(
            width=_int("PP_WIDTH", "240"),
            height=_int("PP_HEIGHT", "120"),
            dt=_float("PP_DT", "1.0"),
            seed=_int("PP_SEED", "12345"),
            n_workers=max(1, _int("PP_WORKERS", "4")),
            diag_every=_int("PP_DIAG_EVERY", "100"),
            land_fraction=_float("PP_LAND_FRACTION", "0.3"),
            seed_life=_ibool("PP_SEED_LIFE", "1"),
            speed_multiplier=_float("PP_SPEED", "1.0"),
        )


@dataclass(frozen=True)
class ParamsRegistry:
    """Aggregate of the per-engine parameter dataclasses."""

    atmosphere: AtmosphereParams = field(default_factory=AtmosphereParams)
    hydrology: HydrologyParams = field(default_factory=HydrologyParams)
    ocean: OceanParams = field(default_factory=OceanParams)
    life: LifeParams = field(default_factory=LifeParams)
    events: EventParams = field(default_factory=EventParams)

    @classmethod
    def from_env(cls) -> ParamsRegistry:
        return cls(
            atmosphere=get_atmosphere_params_from_env(),
            hydrology=get_hydrology_params_from_env(),
            ocean=get_ocean_params_from_env(),
            life=get_life_params_from_env(),
            events=EventParams(),
        )


# ----------------
# Planet World
# ----------------


class PlanetWorld:
    """
    Façade over grid + engines + scheduler.

    - Supports DI via constructor keyword args (pre-built engines, event
      sources, optional collaborators for the default pipeline).
    - create_default() assembles everything from env with generated terrain.
    """

    def __init__(
        self,
        config: SimConfig,
        params: ParamsRegistry,
        grid: PlanetGrid,
        *,
        atmosphere: AtmosphereEngine | None = None,
        hydrology: HydrologyEngine | None = None,
        life: LifeEngine | None = None,
        geology_events=None,
        weather_events=None,
        collaborators: dict | None = None,
    ) -> None:
        self.config = config
        self.params = params
        self.grid = require(grid, "PlanetWorld grid")
        self.tick_index = 0
        self.events = StaticEventFeed()
        self.geology_events = geology_events if geology_events is not None else self.events
        self.weather_events = weather_events if weather_events is not None else self.events

        self.atmosphere = atmosphere or AtmosphereEngine(grid, params.atmosphere)
        self.hydrology = hydrology or HydrologyEngine(grid, params.hydrology, params.ocean,
                                                      seed=config.seed)
        self.life = life or LifeEngine(grid, params.life, geology=self.geology_events,
                                       weather=self.weather_events,
                                       event_params=params.events, seed=config.seed)
        stages = default_pipeline(self.atmosphere, self.hydrology, self.life, **(collaborators or {}))
        self.scheduler = StagedScheduler(stages, max_workers=config.n_workers,
                                         diag_every=config.diag_every)

    @classmethod
    def create_default(cls, config: SimConfig | None = None,
                       params: ParamsRegistry | None = None) -> PlanetWorld:
        cfg = config or SimConfig.from_env()
        pr = params or ParamsRegistry.from_env()
        elevation = generate_elevation(cfg.width, cfg.height, seed=cfg.seed,
                                       land_fraction=cfg.land_fraction)
        grd = PlanetGrid.from_elevation(elevation)
        initial_climate(grd)
        world = cls(cfg, pr, grd)
        if cfg.seed_life:
            world.life.seed_initial_life()
        return world

    def step(self) -> int:
        """Advance one tick of config.dt; returns the new tick index."""
        self.scheduler.advance(self.config.dt, self.tick_index, self.config.speed_multiplier)
        self.tick_index += 1
        return self.tick_index

    def run(self, n_steps: int) -> int:
        for _ in range(max(0, int(n_steps))):
            self.step()
        return self.tick_index

    def fast_forward(self, ticks: int, *, speed_multiplier: float = 32.0,
                     on_progress: Callable[[int, int], None] | None = None) -> int:
        self.tick_index = self.scheduler.fast_forward(ticks, self.tick_index, dt=self.config.dt,
                                                      speed_multiplier=speed_multiplier,
                                                      on_progress=on_progress)
        return self.tick_index

    def snapshot(self) -> PlanetSnapshot:
        return export_state(self)

    def restore(self, snap: PlanetSnapshot) -> None:
        apply_snapshot(self, snap)

    def close(self) -> None:
        self.scheduler.close()
        self.hydrology.close()

    def __enter__(self) -> PlanetWorld:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


__all__ = [
    "SimConfig",
    "ParamsRegistry",
    "PlanetWorld",
    "TickContext",
    "StagedScheduler",
    "StaticEventFeed",
    "WiringError",
]

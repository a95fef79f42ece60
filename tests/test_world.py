"""
World façade basics

Covers:
- env-driven SimConfig / ParamsRegistry
- create_default(): generated terrain, seeded life, step() clock advance
- fast_forward with progress callback
- injected collaborators run inside the default pipeline
- invariants hold across a short run
"""

import numpy as np
import pytest

from pyplanet.ecology.types import Eruption, LifeForm
from pyplanet.world import ParamsRegistry, PlanetWorld, SimConfig, WiringError
from pyplanet.world.diagnostics import range_violations


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("PP_WIDTH", "20")
    monkeypatch.setenv("PP_HEIGHT", "10")
    monkeypatch.setenv("PP_DT", "0.5")
    monkeypatch.setenv("PP_SEED_LIFE", "0")
    monkeypatch.setenv("PP_WORKERS", "0")
    monkeypatch.setenv("PP_LIFE_GRACE", "7")
    cfg = SimConfig.from_env()
    assert (cfg.width, cfg.height, cfg.dt) == (20, 10, 0.5)
    assert cfg.seed_life is False
    assert cfg.n_workers == 1
    params = ParamsRegistry.from_env()
    assert params.life.grace_period == 7.0
    assert params.life.diag is False


def test_world_create_and_step():
    world = PlanetWorld.create_default()
    try:
        assert world.grid.shape == (12, 24)
        assert np.any(world.grid.land) and np.any(~world.grid.land)
        assert np.any(world.grid.life == LifeForm.BACTERIA)
        assert world.step() == 1
        assert world.step() == 2
        assert world.scheduler.tick_count == 2
        assert world.scheduler.last_tick == 1
        assert range_violations(world.grid) == {}
    finally:
        world.close()


def test_fast_forward_and_progress():
    seen = []
    with PlanetWorld.create_default() as world:
        world.step()
        nxt = world.fast_forward(6, on_progress=lambda i, n: seen.append(i))
        assert nxt == 7 == world.tick_index
        assert seen == [1, 2, 3, 4, 5, 6]
        assert range_violations(world.grid) == {}
        assert world.grid.biomass.min() >= 0.0 and world.grid.biomass.max() <= 1.0


def test_collaborators_and_event_feed():
    class Stabilizer:
        def __init__(self):
            self.ticks = []

        def update(self, dt, tick_index):
            self.ticks.append(tick_index)

    stab = Stabilizer()
    seen_weather = []

    def weather(ctx):
        seen_weather.append(ctx.tick_index)
        return None

    cfg = SimConfig(width=16, height=8, seed=5, n_workers=2, diag_every=0)
    world = PlanetWorld(cfg, ParamsRegistry.from_env(), _grid(cfg),
                        collaborators={"stabilizer": stab, "weather": weather})
    try:
        names = [s.member_names for s in world.scheduler.stages]
        assert names == [["atmosphere", "hydrology"], ["weather"], ["life"], ["stabilizer"]]
        ys, xs = np.nonzero(world.grid.land)
        x, y = int(xs[0]), int(ys[0])
        assert world.life.plant(x, y, LifeForm.PLANT, biomass=0.6)
        world.life.grace[...] = 0.0
        world.events.recent_eruptions.append(Eruption(x, y))
        world.run(2)
        assert stab.ticks == [0, 1]
        assert seen_weather == [0, 1]
        assert world.life.last_stats["eruptions"] >= 1.0
    finally:
        world.close()


def test_unknown_collaborator_slot_is_rejected():
    cfg = SimConfig(width=8, height=4, n_workers=1)
    with pytest.raises(TypeError):
        PlanetWorld(cfg, ParamsRegistry.from_env(), _grid(cfg), collaborators={"oracle": object()})
    with pytest.raises(WiringError):
        PlanetWorld(cfg, ParamsRegistry.from_env(), None)


def _grid(cfg):
    from pyplanet.grid import PlanetGrid
    from pyplanet.terrain import generate_elevation, initial_climate

    g = PlanetGrid.from_elevation(generate_elevation(cfg.width, cfg.height, seed=cfg.seed))
    initial_climate(g)
    return g

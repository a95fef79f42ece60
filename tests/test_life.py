import numpy as np
import pytest

from pyplanet.ecology.events import EventParams, apply_earthquakes, apply_eruptions, clear_depleted
from pyplanet.ecology.population import LifeEngine, LifeParams
from pyplanet.ecology.strategies import STRATEGIES, traits_of
from pyplanet.ecology.profile import LifeSupportProfile, ProfileStat
from pyplanet.ecology.types import Earthquake, Eruption, LifeForm, Storm, StormCategory
from pyplanet.grid import PlanetGrid
from pyplanet.world.ports import GeologyEventSource, StaticEventFeed, StormSource, WiringError


def _engine(grid, feed=None, **kw) -> tuple[LifeEngine, StaticEventFeed]:
    feed = feed or StaticEventFeed()
    eng = LifeEngine(grid, LifeParams(diag=False, **kw), geology=feed, weather=feed, seed=11)
    return eng, feed


def _mixed_grid(width=8, height=6, temperature=25.0) -> PlanetGrid:
    elev = np.full((height, width), 0.2)
    elev[:, : width // 2] = -0.3
    g = PlanetGrid.from_elevation(elev, temperature=temperature)
    g.rainfall[...] = 0.6
    return g


def test_bacteria_at_25c_stay_in_range_and_early_forms():
    g = _mixed_grid()
    g.life[...] = LifeForm.BACTERIA
    g.biomass[...] = 0.5
    eng, _ = _engine(g)
    eng.update(1.0)
    assert g.biomass.min() >= 0.0 and g.biomass.max() <= 1.0
    assert set(np.unique(g.life)) <= {LifeForm.BACTERIA, LifeForm.ALGAE}
    # inside the comfort window bacteria grow
    assert np.all(g.biomass > 0.5)


def test_hot_spell_after_mild_history_kills_back_complex_life():
    g = PlanetGrid.from_elevation(np.full((6, 8), 0.2), temperature=20.0)
    g.rainfall[...] = 0.6
    g.life[...] = LifeForm.PLANT
    g.life[::2, ::3] = LifeForm.SIMPLE_ANIMAL
    g.life[1, 1] = LifeForm.MAMMAL
    g.biomass[...] = 0.6
    eng, _ = _engine(g)
    for _ in range(10):
        eng.update(1.0)
    populated = (g.life != LifeForm.NONE) & (g.life != LifeForm.BACTERIA)
    assert np.any(populated)
    before = g.biomass.copy()
    g.temperature[...] = 90.0
    eng.update(1.0)
    declined = (g.biomass < before) | (g.life == LifeForm.NONE)
    assert np.all(declined[populated])


def test_profile_stat_smoothing_and_relaxation():
    s = ProfileStat()
    s.observe(np.full(4, 10.0), blend=0.05, relax=0.015)
    assert s.initialized and s.mean == 10.0 and s.max == 10.0
    s.observe(np.full(4, 20.0), blend=0.05, relax=0.015)
    assert s.mean == pytest.approx(10.5)
    assert s.max == pytest.approx(10.15)
    lo, hi, tol = s.window(15.0)
    assert tol == 15.0
    assert lo == pytest.approx(10.5 - 15.0)
    assert hi == pytest.approx(10.5 + 15.0)
    # empty observations leave the statistic alone
    s.observe(np.array([]), blend=0.05, relax=0.015)
    assert s.mean == pytest.approx(10.5)


def test_profile_borrows_temperature_without_ocean_and_round_trips():
    g = PlanetGrid.from_elevation(np.full((3, 4), 0.5), temperature=12.0)
    prof = LifeSupportProfile()
    prof.update(g)
    assert prof.water_temperature.initialized
    assert prof.water_temperature.mean == pytest.approx(12.0)
    restored = LifeSupportProfile.from_dict(prof.to_dict())
    assert restored.to_dict() == prof.to_dict()


def test_eruption_and_earthquake_damage():
    g = PlanetGrid(7, 7)
    life = np.full(g.shape, LifeForm.PLANT, dtype=np.int8)
    life[0, 0] = LifeForm.BACTERIA
    biomass = np.full(g.shape, 0.5)
    p = EventParams()
    apply_eruptions(g, life, biomass, [Eruption(3, 3)], p)
    assert life[3, 3] == LifeForm.NONE and biomass[3, 3] == 0.0
    assert biomass[2, 2] == pytest.approx(0.15)
    assert biomass[0, 3] == pytest.approx(0.5)
    before = biomass.copy()
    apply_earthquakes(g, life, biomass, [Earthquake(0, 0, 2.0)], p)
    assert biomass[0, 0] == before[0, 0]           # bacteria shrug it off
    assert biomass[0, 1] < before[0, 1]
    assert biomass[6, 6] == before[6, 6]           # outside radius 6
    # off-grid events are ignored
    assert apply_eruptions(g, life, biomass, [Eruption(1, 50)], p) == 0


def test_clear_depleted_respects_mask():
    life = np.array([[LifeForm.PLANT, LifeForm.PLANT]], dtype=np.int8)
    biomass = np.array([[0.05, 0.05]])
    evolution = np.array([[0.4, 0.4]])
    dead = clear_depleted(life, biomass, evolution, 0.1, mask=np.array([[True, False]]))
    assert dead.tolist() == [[True, False]]
    assert life[0, 0] == LifeForm.NONE and evolution[0, 0] == 0.0
    assert life[0, 1] == LifeForm.PLANT


def test_storm_damage_through_engine_empties_weak_cells():
    g = PlanetGrid.from_elevation(np.full((9, 9), 0.2), temperature=20.0)
    g.rainfall[...] = 0.6
    g.life[4, 4] = LifeForm.PLANT
    g.biomass[4, 4] = 0.4
    g.life[0, 0] = LifeForm.BACTERIA
    g.biomass[0, 0] = 0.4
    eng, feed = _engine(g, dispersal_rate=0.0)
    feed.active_storms.append(Storm(4, 4, 0.9, StormCategory.TORNADO))
    feed.active_storms.append(Storm(0, 0, 0.9, StormCategory.TORNADO))
    eng.update(1.0)
    assert g.life[4, 4] == LifeForm.NONE
    assert g.life[0, 0] == LifeForm.BACTERIA
    assert eng.last_stats["storms"] == 2.0


def test_planted_cells_survive_grace_period():
    g = PlanetGrid.from_elevation(np.full((5, 5), 0.2), temperature=20.0)
    g.rainfall[...] = 0.6
    eng, _ = _engine(g, grace_period=2.0, dispersal_rate=0.0, reseed_interval=1e9)
    for _ in range(5):
        eng.update(1.0)
    g.temperature[...] = 90.0
    assert eng.plant(1, 1, LifeForm.PLANT, biomass=0.5)
    g.life[3, 3] = LifeForm.PLANT
    g.biomass[3, 3] = 0.5
    eng.update(1.0)
    assert g.biomass[1, 1] == pytest.approx(0.5)
    assert g.biomass[3, 3] < 0.5
    eng.update(1.0)
    assert g.biomass[1, 1] == pytest.approx(0.5)
    eng.update(1.0)
    assert g.biomass[1, 1] < 0.5 or g.life[1, 1] == LifeForm.NONE


def test_plant_rejects_wrong_habitat_and_off_grid():
    g = _mixed_grid()
    eng, _ = _engine(g)
    assert not eng.plant(6, 2, LifeForm.ALGAE)      # land cell
    assert not eng.plant(6, 2, LifeForm.FISH)
    assert not eng.plant(0, -1, LifeForm.BACTERIA)
    assert eng.plant(1, 2, LifeForm.ALGAE)
    assert g.life[2, 1] == LifeForm.ALGAE
    assert eng.grace[2, 1] > 0.0


def test_extinction_triggers_reseeding():
    g = _mixed_grid(width=10, height=10, temperature=20.0)
    eng, _ = _engine(g, reseed_interval=1.0, dispersal_rate=0.0)
    assert eng.populated_fraction == 0.0
    eng.update(1.0)
    assert eng.populated_fraction > 0.0
    forms = set(int(v) for v in np.unique(g.life))
    assert LifeForm.BACTERIA in forms
    assert LifeForm.ALGAE in forms and LifeForm.PLANT in forms
    assert np.all(g.elevation[g.life == LifeForm.ALGAE] < 0.0)
    assert np.all(g.elevation[g.life == LifeForm.PLANT] >= -0.1)
    assert np.all(eng.grace[g.life != LifeForm.NONE] > 0.0)
    assert eng.last_stats["reseeded"] > 0


def test_dispersal_colonises_neighbours():
    g = PlanetGrid.from_elevation(np.full((6, 6), 0.2), temperature=20.0)
    g.life[2, 2] = LifeForm.BACTERIA
    g.biomass[2, 2] = 0.9
    g.evolution[2, 2] = 0.4
    eng, _ = _engine(g, dispersal_rate=20.0, reseed_interval=1e9)
    eng.update(1.0)
    new = (g.life == LifeForm.BACTERIA)
    new[2, 2] = False
    assert np.any(new)
    ys, xs = np.nonzero(new)
    assert np.all((np.abs(ys - 2) <= 1) & (np.abs(xs - 2) <= 1))
    np.testing.assert_allclose(g.biomass[new], 0.1)
    assert np.all(g.evolution[new] > 0.0)


def test_evolution_promotes_into_next_habitat_only():
    g = _mixed_grid()
    g.life[2, 1] = LifeForm.BACTERIA      # water
    g.life[2, 6] = LifeForm.BACTERIA      # land: algae cannot live here
    g.biomass[2, 1] = g.biomass[2, 6] = 0.8
    g.evolution[2, 1] = g.evolution[2, 6] = 5.0
    eng, _ = _engine(g, evolve_chance=1.0, dispersal_rate=0.0)
    eng.update(1.0)
    assert g.life[2, 1] == LifeForm.ALGAE
    assert g.evolution[2, 1] == 0.0
    assert g.life[2, 6] == LifeForm.BACTERIA
    assert g.evolution[2, 6] > 5.0


def test_plants_become_animals_on_land_only():
    g = PlanetGrid.from_elevation(np.full((5, 5), 0.2), temperature=20.0, oxygen=21.0)
    g.rainfall[...] = 0.6
    g.elevation[2, 1] = -0.05             # shallow water
    for x in (1, 3):
        g.life[2, x] = LifeForm.PLANT
        g.biomass[2, x] = 0.9
        g.evolution[2, x] = 5.0
    eng, _ = _engine(g, evolve_chance=1.0, dispersal_rate=0.0, reseed_interval=1e9)
    eng.update(1.0)
    assert g.life[2, 1] == LifeForm.PLANT
    assert g.life[2, 3] == LifeForm.SIMPLE_ANIMAL
    assert g.biomass[2, 3] == pytest.approx(0.3)
    assert g.evolution[2, 3] == 0.0


def test_consumers_grow_next_to_producers_and_starve_alone():
    g = PlanetGrid.from_elevation(np.full((5, 10), 0.2), temperature=20.0)
    g.rainfall[...] = 0.6
    g.life[1:4, 0:3] = LifeForm.PLANT
    g.biomass[1:4, 0:3] = 0.9
    g.life[2, 1] = LifeForm.SIMPLE_ANIMAL     # fed: all eight neighbours are plants
    g.life[2, 6] = LifeForm.SIMPLE_ANIMAL     # isolated
    g.biomass[2, 1] = g.biomass[2, 6] = 0.5
    eng, _ = _engine(g, dispersal_rate=0.0, reseed_interval=1e9)
    eng.update(1.0)
    assert g.life[2, 1] == LifeForm.SIMPLE_ANIMAL
    assert g.biomass[2, 1] > 0.5
    assert g.biomass[2, 6] < 0.5


def test_strategy_table_covers_every_form():
    assert set(STRATEGIES) == set(LifeForm)
    assert all(STRATEGIES[f].form is f for f in LifeForm)
    assert traits_of(int(LifeForm.PLANT)).form is LifeForm.PLANT
    assert traits_of(99).form is LifeForm.NONE


def test_unknown_life_codes_are_cleared():
    g = _mixed_grid()
    g.life[1, 6] = 99
    g.biomass[1, 6] = 0.7
    eng, _ = _engine(g, dispersal_rate=0.0, reseed_interval=1e9)
    eng.update(1.0)
    assert g.life[1, 6] == LifeForm.NONE
    assert g.biomass[1, 6] == 0.0


def test_event_sources_must_match_their_ports():
    g = PlanetGrid(4, 4)
    feed = StaticEventFeed()
    assert isinstance(feed, GeologyEventSource) and isinstance(feed, StormSource)
    with pytest.raises(WiringError):
        LifeEngine(g, LifeParams(diag=False), geology=object(), weather=feed)

    class Calm:
        active_storms = ()

    with pytest.raises(WiringError):
        LifeEngine(g, LifeParams(diag=False), geology=Calm(), weather=feed)
    eng = LifeEngine(g, LifeParams(diag=False), geology=feed, weather=Calm())
    assert eng.weather is not None


def test_missing_collaborator_is_wiring_error():
    g = PlanetGrid(4, 4)
    feed = StaticEventFeed()
    with pytest.raises(WiringError):
        LifeEngine(g, LifeParams(diag=False), geology=None, weather=feed)
    with pytest.raises(ValueError):
        LifeEngine(g, LifeParams(diag=False), geology=feed, weather=None)


def test_seed_initial_life_and_long_run_ranges():
    rng = np.random.default_rng(5)
    g = PlanetGrid.from_elevation(rng.uniform(-1, 1, (10, 14)), temperature=18.0)
    g.rainfall[...] = rng.uniform(0, 1, g.shape)
    eng, feed = _engine(g)
    assert eng.seed_initial_life(trials=200) > 0
    assert set(np.unique(g.life)) <= {LifeForm.NONE, LifeForm.BACTERIA}
    feed.recent_eruptions.append(Eruption(3, 3))
    feed.earthquakes.append(Earthquake(7, 5, 1.5))
    for _ in range(20):
        g.temperature[...] += rng.normal(0, 2, g.shape)
        eng.update(1.0)
        assert g.biomass.min() >= 0.0 and g.biomass.max() <= 1.0
        assert g.evolution.min() >= 0.0
        assert np.all(g.biomass[g.life == LifeForm.NONE] == 0.0)
        assert g.life.min() >= 0 and g.life.max() <= max(LifeForm)

import numpy as np
import pytest

from pyplanet.ecology.types import LifeForm
from pyplanet.routing import River
from pyplanet.world import ParamsRegistry, PlanetWorld, SimConfig
from pyplanet.world.diagnostics import global_means, life_census, populated_fraction, range_violations
from pyplanet.world.state import PlanetSnapshot, apply_snapshot, export_state, load_restart, save_restart


@pytest.fixture
def world():
    cfg = SimConfig(width=16, height=8, seed=3, n_workers=2, diag_every=0)
    w = PlanetWorld.create_default(cfg, ParamsRegistry.from_env())
    yield w
    w.close()


def _fake_river(world) -> River:
    # any path works for persistence; mark it through restore_rivers
    path = [(2, 3), (3, 3), (4, 3), (5, 4)]
    river = River(id=4, source=(2, 3), mouth=(6, 4), path=path, volume=1.25)
    world.hydrology.restore_rivers([river], next_id=9)
    return river


def test_snapshot_round_trip_in_memory(world):
    world.run(3)
    river = _fake_river(world)
    snap = world.snapshot()
    assert snap.tick_index == 3
    assert snap.next_river_id == 9
    assert "geology.salinity" in snap.fields and "meteo.wind_x" in snap.fields
    # snapshot owns copies
    snap_temp = snap.fields["temperature"].copy()
    world.grid.temperature[...] += 5.0
    np.testing.assert_array_equal(snap.fields["temperature"], snap_temp)

    world.run(2)
    world.hydrology.clear_rivers()
    world.restore(snap)
    np.testing.assert_array_equal(world.grid.temperature, snap_temp)
    assert world.tick_index == 3
    assert [r.id for r in world.hydrology.rivers] == [river.id]
    assert world.hydrology.rivers[0].path == river.path
    assert world.grid.geology.river_id[3, 2] == river.id
    np.testing.assert_array_equal(world.grid.geology.river_id, snap.fields["geology.river_id"])
    assert world.hydrology.next_river_id == 9
    assert world.life.profile.to_dict() == snap.profile


def test_restore_keeps_saved_river_marks(world):
    _fake_river(world)
    snap = world.snapshot()
    # an orphan mark with no river in the list survives the restore
    snap.fields["geology.river_id"][0, 0] = 4
    world.hydrology.clear_rivers()
    world.restore(snap)
    np.testing.assert_array_equal(world.grid.geology.river_id, snap.fields["geology.river_id"])
    assert world.hydrology.next_river_id == 9


def test_apply_snapshot_rejects_other_dimensions(world):
    snap = PlanetSnapshot(width=4, height=4)
    with pytest.raises(ValueError):
        apply_snapshot(world, snap)


def test_restart_file_round_trip(world, tmp_path):
    pytest.importorskip("netCDF4")
    world.run(2)
    _fake_river(world)
    snap = export_state(world)
    path = str(tmp_path / "restart" / "planet.nc")
    save_restart(path, snap)
    back = load_restart(path)

    assert (back.width, back.height) == (snap.width, snap.height)
    assert back.tick_index == snap.tick_index
    assert back.next_river_id == snap.next_river_id
    assert back.sim_time == pytest.approx(snap.sim_time)
    assert set(back.fields) == set(snap.fields)
    for name, arr in snap.fields.items():
        assert back.fields[name].dtype == arr.dtype, name
        np.testing.assert_array_equal(back.fields[name], arr)
    assert len(back.rivers) == 1
    r0, b0 = snap.rivers[0], back.rivers[0]
    assert (b0.id, b0.source, b0.mouth, b0.path) == (r0.id, r0.source, r0.mouth, r0.path)
    assert b0.volume == pytest.approx(r0.volume)
    assert back.profile == pytest.approx(snap.profile)


def test_restart_without_rivers(world, tmp_path):
    pytest.importorskip("netCDF4")
    world.hydrology.clear_rivers()
    path = str(tmp_path / "empty.nc")
    save_restart(path, export_state(world))
    back = load_restart(path)
    assert back.rivers == []
    apply_snapshot(world, back)
    assert world.hydrology.rivers == ()


def test_diagnostics_on_running_world(world):
    world.run(3)
    assert range_violations(world.grid) == {}
    means = global_means(world.grid)
    for key in ("temperature", "oxygen", "co2", "biomass", "land_fraction",
                "populated_fraction", "ice_fraction"):
        assert key in means
        assert np.isfinite(means[key])
    assert 0.0 < means["land_fraction"] < 1.0
    census = life_census(world.grid)
    assert sum(census.values()) == int(np.count_nonzero(world.grid.life != LifeForm.NONE))
    assert populated_fraction(world.grid) == pytest.approx(means["populated_fraction"])


def test_range_violations_reports_bad_cells():
    from pyplanet.grid import PlanetGrid

    g = PlanetGrid(4, 3)
    g.humidity[0, 0] = 2.0
    g.temperature[1, 1] = np.nan
    g.life[2, 2] = 99
    bad = range_violations(g)
    assert bad == {"humidity": 1, "temperature": 1, "life": 1}

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from pyplanet import constants
from pyplanet.grid import PlanetGrid
from pyplanet.ocean import (
    OceanParams,
    current_direction,
    current_kernel,
    reduce_deltas,
    row_chunks,
    salinity_kernel,
    thermohaline_kernel,
    tidal_inundation,
    tide_height,
    water_density,
)


def _ocean_grid(seed: int = 1) -> PlanetGrid:
    rng = np.random.default_rng(seed)
    g = PlanetGrid.from_elevation(rng.uniform(-1.0, 0.4, (12, 16)))
    g.temperature[...] = rng.uniform(-5, 30, g.shape)
    g.rainfall[...] = rng.uniform(0, 1, g.shape)
    g.geology.salinity[...] = np.where(g.water, rng.uniform(20, 45, g.shape), 0.0)
    return g


def test_row_chunks_cover_every_row_once():
    chunks = row_chunks(10, 4)
    rows = [y for a, b in chunks for y in range(a, b)]
    assert rows == list(range(10))
    assert row_chunks(2, 8) == [(0, 1), (1, 2)]


@pytest.mark.parametrize("n_chunks", [2, 3, 5])
def test_delta_merge_independent_of_chunking(n_chunks):
    g = _ocean_grid()
    p = OceanParams()
    mouths = np.zeros(g.shape, dtype=bool)
    rho = water_density(g.temperature, g.geology.salinity, g.water)
    kernels = [
        salinity_kernel(g, g.geology.salinity, g.temperature, g.rainfall, g.ice, mouths, p, 1.0),
        current_kernel(g, g.temperature, p, 1.0),
        thermohaline_kernel(g, g.temperature, g.geology.salinity, rho, p, 1.0),
    ]
    with ThreadPoolExecutor(max_workers=3) as pool:
        for kernel in kernels:
            serial = reduce_deltas(kernel, g.shape, 1)
            chunked = reduce_deltas(kernel, g.shape, n_chunks, pool)
            assert serial.keys() == chunked.keys()
            for name in serial:
                np.testing.assert_allclose(chunked[name], serial[name], atol=1e-12)


def test_current_and_thermohaline_conserve_heat():
    g = _ocean_grid(2)
    p = OceanParams()
    d = reduce_deltas(current_kernel(g, g.temperature, p, 1.0), g.shape, 4)
    assert d["temperature"].sum() == pytest.approx(0.0, abs=1e-9)
    rho = water_density(g.temperature, g.geology.salinity, g.water)
    d = reduce_deltas(thermohaline_kernel(g, g.temperature, g.geology.salinity, rho, p, 1.0),
                      g.shape, 4)
    assert d["temperature"].sum() == pytest.approx(0.0, abs=1e-9)
    assert d["salinity"].sum() == pytest.approx(0.0, abs=1e-9)
    assert np.all(d["temperature"][g.land] == 0.0)


def test_density_cold_salty_water_is_heavier_and_land_is_zero():
    T = np.array([[0.0, 25.0, 10.0]])
    S = np.array([[35.0, 35.0, 35.0]])
    water = np.array([[True, True, False]])
    rho = water_density(T, S, water)
    assert rho[0, 0] > rho[0, 1]
    assert rho[0, 2] == 0.0
    saltier = water_density(np.array([[10.0]]), np.array([[45.0]]), np.array([[True]]))
    fresher = water_density(np.array([[10.0]]), np.array([[5.0]]), np.array([[True]]))
    assert saltier[0, 0] > fresher[0, 0]
    assert constants.DENSITY_RANGE[0] <= fresher[0, 0] <= constants.DENSITY_RANGE[1]


def test_current_bands():
    d = current_direction(10)
    assert d[5] == 1 and d[4] == 1       # tropics flow east
    assert d[2] == -1 and d[7] == -1     # mid-latitudes flow west
    assert d[0] == 1 and d[9] == 1       # polar bands flow east


def test_tides_flood_only_low_coastal_land():
    assert tide_height(0.0, 0.02, 12.0) == pytest.approx(0.0)
    assert tide_height(3.0, 0.02, 12.0) == pytest.approx(0.02)
    assert tide_height(5.0, 0.02, 0.0) == 0.0
    g = PlanetGrid.from_elevation(np.array([[-0.5, 0.005, 0.01, 0.001, 0.001]]))
    flood = tidal_inundation(g, g.elevation, 0.02, OceanParams(), 1.0)
    assert flood[0, 1] > 0.0
    assert flood[0, 0] == 0.0            # the sea itself
    assert flood[0, 3] == 0.0            # low but not on the coast
    assert flood[0, 4] > 0.0             # coast through the x wrap
    assert np.all(tidal_inundation(g, g.elevation, -0.02, OceanParams(), 1.0) == 0.0)

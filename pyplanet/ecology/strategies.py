"""
strategies.py

One LifeTraits entry per LifeForm: habitat, growth kinetics, evolutionary
successor and its prerequisites, and the gas exchange the atmosphere engine
applies per unit biomass. Adding a life-form means adding a row here.

Growth functions are vectorised: they receive a GrowthInputs bundle of
full-grid arrays and return a full-grid growth-rate array; the engine keeps
only the cells that actually carry the form.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

import numpy as np

from .types import LifeForm


class Habitat(str, Enum):
    ANY = "any"
    WATER = "water"
    LAND = "land"
    SHORE = "shore"  # land or shallow water


SHALLOW_WATER_DEPTH = -0.1


def habitat_mask(habitat: Habitat, elevation: np.ndarray) -> np.ndarray:
    if habitat is Habitat.WATER:
        return elevation < 0.0
    if habitat is Habitat.LAND:
        return elevation >= 0.0
    if habitat is Habitat.SHORE:
        return elevation >= SHALLOW_WATER_DEPTH
    return np.ones(np.shape(elevation), dtype=bool)


@dataclass
class GrowthInputs:
    """Per-cell environment handed to the growth functions (all arrays share grid shape)."""

    rainfall: np.ndarray
    oxygen: np.ndarray
    co2: np.ndarray
    suitability: np.ndarray
    food: np.ndarray            # mean biomass of neighbouring producers
    diversity: np.ndarray       # distinct neighbouring forms / 5, capped at 1
    oxygen_mean: float          # profile mean, for the consumer O2 factor
    co2_fertilization: float = 0.05
    co2_bonus_cap: float = 0.3


GrowthFn = Callable[[GrowthInputs, float], np.ndarray]


def constant_growth(env: GrowthInputs, base: float) -> np.ndarray:
    return base * env.suitability


def algae_growth(env: GrowthInputs, base: float) -> np.ndarray:
    return base * (np.clip(env.oxygen / 100.0, 0.0, 1.0) + 0.5) * env.suitability


def plant_growth(env: GrowthInputs, base: float) -> np.ndarray:
    bonus = np.clip(env.co2 * env.co2_fertilization, 0.0, env.co2_bonus_cap)
    return base * env.rainfall * (1.0 + bonus) * env.suitability


def consumer_growth(env: GrowthInputs, base: float) -> np.ndarray:
    o2_factor = np.clip(env.oxygen / max(env.oxygen_mean, 1e-6), 0.0, 1.5)
    return base * np.minimum(env.food, 1.0) * o2_factor * env.suitability


def intelligence_growth(env: GrowthInputs, base: float) -> np.ndarray:
    return base * env.diversity * env.suitability


@dataclass(frozen=True)
class LifeTraits:
    form: LifeForm
    habitat: Habitat = Habitat.ANY
    base_growth: float = 0.0
    growth: GrowthFn = constant_growth
    next_stage: LifeForm | None = None
    promote_min_oxygen: float = 0.0
    promote_min_rainfall: float = 0.0
    promote_on_land: bool = False   # source cell must be land to promote
    promote_biomass: float | None = None  # biomass reset on promotion; None keeps it
    needs_oxygen: bool = True
    needs_rain: bool = False
    temp_margin: float = 0.0       # extra degrees added on both sides of the comfort window
    storm_immune: bool = False
    producer: bool = False         # counts as food for consumers
    # gas exchange per unit biomass per unit time
    o2_production: float = 0.0
    o2_consumption: float = 0.0
    co2_uptake: float = 0.0
    co2_emission: float = 0.0
    methane: float = 0.0
    n2o: float = 0.0


_TRAITS = (
    LifeTraits(LifeForm.NONE),
    LifeTraits(LifeForm.BACTERIA, Habitat.ANY, 0.1, constant_growth,
               next_stage=LifeForm.ALGAE,
               needs_oxygen=False, temp_margin=35.0, storm_immune=True,
               o2_production=0.3, co2_uptake=0.2, methane=0.01),
    LifeTraits(LifeForm.ALGAE, Habitat.WATER, 0.3, algae_growth,
               next_stage=LifeForm.PLANT, promote_min_oxygen=10.0, promote_min_rainfall=0.3,
               producer=True, o2_production=0.5, co2_uptake=0.3),
    LifeTraits(LifeForm.PLANT, Habitat.SHORE, 0.4, plant_growth,
               next_stage=LifeForm.SIMPLE_ANIMAL, promote_min_oxygen=15.0,
               promote_on_land=True, promote_biomass=0.3,
               needs_rain=True, producer=True,
               o2_production=1.0, co2_uptake=0.6, n2o=0.002),
    LifeTraits(LifeForm.SIMPLE_ANIMAL, Habitat.ANY, 0.25, consumer_growth,
               next_stage=LifeForm.FISH, promote_min_oxygen=12.0,
               o2_consumption=0.3, co2_emission=0.2),
    LifeTraits(LifeForm.FISH, Habitat.WATER, 0.25, consumer_growth,
               next_stage=LifeForm.AMPHIBIAN, promote_min_oxygen=15.0,
               o2_consumption=0.1),
    LifeTraits(LifeForm.AMPHIBIAN, Habitat.SHORE, 0.2, consumer_growth,
               next_stage=LifeForm.REPTILE, promote_min_oxygen=16.0,
               o2_consumption=0.1),
    LifeTraits(LifeForm.REPTILE, Habitat.LAND, 0.2, consumer_growth,
               next_stage=LifeForm.DINOSAUR, promote_min_oxygen=18.0,
               o2_consumption=0.1),
    LifeTraits(LifeForm.DINOSAUR, Habitat.LAND, 0.2, consumer_growth,
               next_stage=LifeForm.MAMMAL, promote_min_oxygen=18.0,
               o2_consumption=0.15),
    LifeTraits(LifeForm.MAMMAL, Habitat.LAND, 0.2, consumer_growth,
               next_stage=LifeForm.COMPLEX_ANIMAL, promote_min_oxygen=18.0,
               o2_consumption=0.15),
    LifeTraits(LifeForm.COMPLEX_ANIMAL, Habitat.LAND, 0.15, consumer_growth,
               next_stage=LifeForm.INTELLIGENCE, promote_min_oxygen=19.0,
               o2_consumption=0.3, co2_emission=0.2),
    LifeTraits(LifeForm.INTELLIGENCE, Habitat.LAND, 0.1, intelligence_growth,
               o2_consumption=0.3),
    LifeTraits(LifeForm.CIVILIZATION, Habitat.LAND, 0.2, constant_growth,
               o2_consumption=0.3, co2_emission=2.0, methane=0.05, n2o=0.01),
)

STRATEGIES: dict[LifeForm, LifeTraits] = {t.form: t for t in _TRAITS}

PRODUCERS = tuple(f for f, t in STRATEGIES.items() if t.producer)


def traits_of(code: int) -> LifeTraits:
    """Lookup by the int8 code stored on the grid; unknown codes read as NONE."""
    try:
        return STRATEGIES[LifeForm(int(code))]
    except ValueError:
        return STRATEGIES[LifeForm.NONE]


def trait_table(attr: str) -> np.ndarray:
    """Dense float table indexed by life code, e.g. trait_table('o2_production')[grid.life]."""
    return np.array([float(getattr(STRATEGIES[f], attr)) for f in LifeForm], dtype=float)


def lookup(attr: str, life: np.ndarray) -> np.ndarray:
    """trait_table(attr)[life] with out-of-range codes mapped to NONE."""
    codes = np.asarray(life, dtype=np.int64)
    codes = np.where((codes >= 0) & (codes < len(LifeForm)), codes, 0)
    return trait_table(attr)[codes]

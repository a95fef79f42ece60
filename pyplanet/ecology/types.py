from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum


class LifeForm(IntEnum):
    """
    Closed variant over the evolutionary chain. The integer value is what the
    grid stores in `grid.life` (int8).
    """
    NONE = 0
    BACTERIA = 1
    ALGAE = 2
    PLANT = 3
    SIMPLE_ANIMAL = 4
    FISH = 5
    AMPHIBIAN = 6
    REPTILE = 7
    DINOSAUR = 8
    MAMMAL = 9
    COMPLEX_ANIMAL = 10
    INTELLIGENCE = 11
    CIVILIZATION = 12


class StormCategory(str, Enum):
    TROPICAL_DEPRESSION = "tropical_depression"
    TROPICAL_STORM = "tropical_storm"
    HURRICANE_1 = "hurricane_1"
    HURRICANE_2 = "hurricane_2"
    HURRICANE_3 = "hurricane_3"
    HURRICANE_4 = "hurricane_4"
    HURRICANE_5 = "hurricane_5"
    BLIZZARD = "blizzard"
    TORNADO = "tornado"
    THUNDERSTORM = "thunderstorm"

    @property
    def is_hurricane(self) -> bool:
        return self.value.startswith("hurricane")


# Damage radius (cells) implied by category; anything unlisted uses DEFAULT_STORM_RADIUS.
STORM_RADIUS: dict[StormCategory, int] = {
    StormCategory.TROPICAL_DEPRESSION: 10,
    StormCategory.TROPICAL_STORM: 12,
    StormCategory.HURRICANE_1: 15,
    StormCategory.HURRICANE_2: 18,
    StormCategory.HURRICANE_3: 20,
    StormCategory.HURRICANE_4: 22,
    StormCategory.HURRICANE_5: 25,
    StormCategory.BLIZZARD: 12,
}
DEFAULT_STORM_RADIUS = 8


@dataclass(frozen=True)
class Eruption:
    x: int
    y: int
    year: int = 0


@dataclass(frozen=True)
class Earthquake:
    x: int
    y: int
    magnitude: float


@dataclass(frozen=True)
class Storm:
    """Active storm as reported by the weather collaborator; intensity in [0,1]."""
    center_x: int
    center_y: int
    intensity: float
    category: StormCategory = StormCategory.THUNDERSTORM

    @property
    def radius(self) -> int:
        try:
            cat = StormCategory(self.category)
        except ValueError:
            return DEFAULT_STORM_RADIUS
        return STORM_RADIUS.get(cat, DEFAULT_STORM_RADIUS)

from __future__ import annotations

# Re-export public API for pyplanet.ecology

from .events import EventParams, apply_earthquakes, apply_eruptions, apply_storms
from .population import LifeEngine, LifeParams, get_life_params_from_env
from .profile import LifeSupportProfile, ProfileStat
from .strategies import STRATEGIES, Habitat, LifeTraits, traits_of
from .types import Earthquake, Eruption, LifeForm, Storm, StormCategory

__all__ = [
    "EventParams",
    "apply_earthquakes",
    "apply_eruptions",
    "apply_storms",
    "LifeEngine",
    "LifeParams",
    "get_life_params_from_env",
    "LifeSupportProfile",
    "ProfileStat",
    "STRATEGIES",
    "Habitat",
    "LifeTraits",
    "traits_of",
    "Earthquake",
    "Eruption",
    "LifeForm",
    "Storm",
    "StormCategory",
]

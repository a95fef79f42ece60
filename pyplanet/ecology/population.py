from __future__ import annotations

import math
import os
from dataclasses import dataclass, field

import numpy as np

from .. import constants
from ..numerics.guards import finite_clip, finite_or_zero
from .events import EventParams, apply_earthquakes, apply_eruptions, apply_storms, clear_depleted
from .profile import LifeSupportProfile
from .strategies import (
    PRODUCERS,
    STRATEGIES,
    GrowthInputs,
    LifeTraits,
    consumer_growth,
    habitat_mask,
    traits_of,
)
from .types import LifeForm


@dataclass
class LifeParams:
    """Life kinetics, evolution, dispersal and reseeding constants (all tunable)."""

    profile_blend: float = 0.05           # EMA factor toward observed statistics
    profile_relax: float = 0.015          # relaxation of tracked extremes
    tol_sigmas: float = 2.5
    min_temp_tol: float = 15.0            # °C
    min_o2_tol: float = 10.0
    min_rain_tol: float = 0.3
    base_death: float = 0.05
    temp_death: float = 0.5
    o2_death: float = 0.3
    rain_death: float = 0.3
    habitat_death: float = 0.5
    extinct_below: float = 0.01
    evolve_rate: float = 0.01             # accumulator gain while biomass > evolve_biomass
    evolve_biomass: float = 0.5
    stress_evolve_rate: float = 0.005     # gain while outside the comfort window
    stress_biomass: float = 0.3
    evolve_threshold: float = 1.0
    evolve_chance: float = 0.1
    dispersal_rate: float = 0.02          # trials per cell per unit time
    dispersal_max: int = 500
    dispersal_min_biomass: float = 0.3
    dispersal_biomass: float = 0.1
    grace_period: float = 30.0            # seconds of suppressed death after planting
    reseed_interval: float = 5.0          # seconds between extinction checks
    reseed_threshold: float = 0.01        # populated fraction below which life is reseeded
    reseed_fraction: float = 0.02         # share of cells seeded per life-form on reseed
    reseed_biomass: float = 0.3
    algae_min_o2: float = 1.0
    plant_min_o2: float = 10.0
    initial_seed_trials: int = 100
    initial_biomass: float = 0.3
    seed: int = 12345
    diag: bool = True


def get_life_params_from_env() -> LifeParams:
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

    return LifeParams(
        profile_blend=_f("PP_LIFE_PROFILE_BLEND", 0.05),
        profile_relax=_f("PP_LIFE_PROFILE_RELAX", 0.015),
        min_temp_tol=_f("PP_LIFE_TEMP_TOL", 15.0),
        evolve_chance=_f("PP_LIFE_EVOLVE_CHANCE", 0.1),
        dispersal_rate=_f("PP_LIFE_DISPERSAL_RATE", 0.02),
        dispersal_max=_i("PP_LIFE_DISPERSAL_MAX", 500),
        grace_period=_f("PP_LIFE_GRACE", 30.0),
        reseed_interval=_f("PP_LIFE_RESEED_INTERVAL", 5.0),
        reseed_threshold=_f("PP_LIFE_RESEED_THRESHOLD", 0.01),
        seed=_i("PP_SEED", 12345),
        diag=(_i("PP_LIFE_DIAG", 1) == 1),
    )


@dataclass
class ComfortWindow:
    """Per-cell temperature window (land/water statistic chosen per cell) plus O2/rain floors."""

    temp_lo: np.ndarray
    temp_hi: np.ndarray
    temp_tol: np.ndarray
    o2_lo: float
    o2_tol: float
    rain_lo: float
    rain_tol: float


@dataclass
class LifeResult:
    life: np.ndarray
    biomass: np.ndarray
    evolution: np.ndarray
    grace: np.ndarray
    reseed_clock: float
    stats: dict[str, float] = field(default_factory=dict)


class LifeEngine:
    """
    Adaptive biosphere over the planet grid.

    Per tick (compute):
      1. rebuild the LifeSupportProfile from the grid
      2. apply eruption / earthquake / storm damage
      3. growth - death kinetics per life-form (strategy table)
      4. evolutionary promotion
      5. dispersal into empty survivable neighbours
      6. periodic extinction check and reseeding
    commit(result) writes life/biomass/evolution back to the grid.

    `geology` must expose `recent_eruptions` and `earthquakes`; `weather` must
    expose `active_storms` (attributes or zero-argument methods).
    """

    def __init__(self, grid, params: LifeParams | None = None, *,
                 geology, weather, event_params: EventParams | None = None,
                 seed: int | None = None) -> None:
        from ..world.ports import GeologyEventSource, StormSource, require  # local: world imports ecology

        self.geology = require(geology, "LifeEngine geology event source", GeologyEventSource)
        self.weather = require(weather, "LifeEngine weather storm source", StormSource)
        self.grid = grid
        self.params = params or get_life_params_from_env()
        self.event_params = event_params or EventParams()
        base_seed = self.params.seed if seed is None else int(seed)
        self.rng = np.random.default_rng(base_seed + 3000)
        self.profile = LifeSupportProfile(blend=self.params.profile_blend,
                                          relax=self.params.profile_relax)
        self.grace = np.zeros(grid.shape, dtype=float)
        self.reseed_clock = 0.0
        self.last_stats: dict[str, float] = {}

    # ---- comfort window / suitability ----
    def comfort_window(self) -> ComfortWindow:
        p = self.params
        prof = self.profile
        land = self.grid.land
        l_lo, l_hi, l_tol = prof.land_temperature.window(p.min_temp_tol, p.tol_sigmas)
        w_lo, w_hi, w_tol = prof.water_temperature.window(p.min_temp_tol, p.tol_sigmas)
        o2_tol = max(p.tol_sigmas * prof.oxygen.std, p.min_o2_tol)
        rain_tol = max(p.tol_sigmas * prof.land_rainfall.std, p.min_rain_tol)
        return ComfortWindow(
            temp_lo=np.where(land, l_lo, w_lo),
            temp_hi=np.where(land, l_hi, w_hi),
            temp_tol=np.where(land, l_tol, w_tol),
            o2_lo=max(0.0, prof.oxygen.mean - o2_tol),
            o2_tol=o2_tol,
            rain_lo=max(0.0, prof.land_rainfall.mean - rain_tol),
            rain_tol=rain_tol,
        )

    def _deviations(self, traits: LifeTraits, win: ComfortWindow, temperature: np.ndarray,
                    oxygen: np.ndarray, rainfall: np.ndarray, elevation: np.ndarray):
        """Normalised (temperature, O2, rain) deviations outside the window and the habitat mask."""
        lo = win.temp_lo - traits.temp_margin
        hi = win.temp_hi + traits.temp_margin
        t_dev = np.maximum(np.maximum(lo - temperature, temperature - hi), 0.0) / win.temp_tol
        if traits.needs_oxygen:
            o_dev = np.maximum(win.o2_lo - oxygen, 0.0) / win.o2_tol
        else:
            o_dev = np.zeros_like(temperature)
        if traits.needs_rain:
            r_dev = np.where(elevation >= 0.0, np.maximum(win.rain_lo - rainfall, 0.0) / win.rain_tol, 0.0)
        else:
            r_dev = np.zeros_like(temperature)
        return t_dev, o_dev, r_dev, habitat_mask(traits.habitat, elevation)

    def suitability(self, form: LifeForm, win: ComfortWindow | None = None) -> np.ndarray:
        """1 inside the comfort window, linear falloff to 0 one tolerance outside; 0 off-habitat."""
        g = self.grid
        win = win or self.comfort_window()
        t_dev, o_dev, r_dev, hab = self._deviations(
            traits_of(form), win, finite_or_zero(g.temperature),
            finite_clip(g.oxygen, *constants.GAS_RANGE),
            finite_clip(g.rainfall, *constants.UNIT_RANGE), finite_or_zero(g.elevation))
        s = np.clip(1.0 - t_dev, 0.0, 1.0) * np.clip(1.0 - o_dev, 0.0, 1.0) * np.clip(1.0 - r_dev, 0.0, 1.0)
        return np.where(hab, s, 0.0)

    # ---- helpers ----
    def _food(self, life: np.ndarray, biomass: np.ndarray) -> np.ndarray:
        producer_bio = np.where(np.isin(life, PRODUCERS), biomass, 0.0)
        return self.grid.moore_mean(producer_bio)

    def _diversity(self, life: np.ndarray) -> np.ndarray:
        distinct = np.zeros(self.grid.shape)
        for form in LifeForm:
            if form is LifeForm.NONE:
                continue
            present = life == form
            if np.any(present):
                distinct += self.grid.moore_sum(present.astype(float)) > 0.0
        return np.minimum(distinct / 5.0, 1.0)

    @property
    def populated_fraction(self) -> float:
        return float(np.count_nonzero(self.grid.life != LifeForm.NONE)) / float(self.grid.n_cells)

    @staticmethod
    def _read_events(source, name: str) -> list:
        val = getattr(source, name, None)
        if callable(val):
            val = val()
        return list(val or ())

    # ---- tick ----
    def compute(self, dt: float) -> LifeResult:
        g = self.grid
        p = self.params
        dt = float(dt)

        self.profile.update(g)
        win = self.comfort_window()

        life = np.array(g.life, copy=True)
        life[(life < 0) | (life > max(LifeForm))] = LifeForm.NONE
        biomass = finite_clip(g.biomass, *constants.UNIT_RANGE)
        evolution = finite_clip(g.evolution, 0.0, None)
        grace = np.array(self.grace, copy=True)
        temperature = finite_or_zero(g.temperature)
        oxygen = finite_clip(g.oxygen, *constants.GAS_RANGE)
        co2 = finite_clip(g.co2, *constants.GAS_RANGE)
        rainfall = finite_clip(g.rainfall, *constants.UNIT_RANGE)
        elevation = finite_or_zero(g.elevation)

        # events
        before = biomass.copy()
        n_erupt = apply_eruptions(g, life, biomass, self._read_events(self.geology, "recent_eruptions"),
                                  self.event_params)
        n_quake = apply_earthquakes(g, life, biomass, self._read_events(self.geology, "earthquakes"),
                                    self.event_params)
        n_storm = apply_storms(g, life, biomass, self._read_events(self.weather, "active_storms"),
                               self.event_params)
        clear_depleted(life, biomass, evolution, self.event_params.empty_below, mask=biomass < before)
        evolution[life == LifeForm.NONE] = 0.0

        # kinetics
        present = [traits_of(c).form for c in np.unique(life)]
        present = [f for f in present if f is not LifeForm.NONE]
        needs_food = any(STRATEGIES[f].growth is consumer_growth for f in present)
        env = GrowthInputs(
            rainfall=rainfall, oxygen=oxygen, co2=co2,
            suitability=np.ones(g.shape),
            food=self._food(life, biomass) if needs_food else np.zeros(g.shape),
            diversity=self._diversity(life) if LifeForm.INTELLIGENCE in present else np.zeros(g.shape),
            oxygen_mean=self.profile.oxygen.mean,
        )
        growth = np.zeros(g.shape)
        death = np.zeros(g.shape)
        stressed = np.zeros(g.shape, dtype=bool)
        suit_by_form: dict[LifeForm, np.ndarray] = {}
        for form in present:
            traits = traits_of(form)
            mask = life == form
            t_dev, o_dev, r_dev, hab = self._deviations(traits, win, temperature, oxygen, rainfall, elevation)
            suit = np.where(hab, np.clip(1.0 - t_dev, 0.0, 1.0) * np.clip(1.0 - o_dev, 0.0, 1.0)
                            * np.clip(1.0 - r_dev, 0.0, 1.0), 0.0)
            suit_by_form[form] = suit
            env.suitability = suit
            g_form = traits.growth(env, traits.base_growth)
            d_form = (p.base_death
                      + p.temp_death * np.minimum(t_dev, 1.0)
                      + p.o2_death * np.minimum(o_dev, 1.0)
                      + p.rain_death * np.minimum(r_dev, 1.0)
                      + np.where(hab, 0.0, p.habitat_death))
            growth[mask] = g_form[mask]
            death[mask] = d_form[mask]
            stressed[mask] = suit[mask] < 1.0

        death = np.where(grace > 0.0, 0.0, death)
        populated = life != LifeForm.NONE
        biomass = np.where(populated, np.clip(biomass + (growth - death) * dt, 0.0, 1.0), 0.0)
        extinct = clear_depleted(life, biomass, evolution, p.extinct_below)

        # evolution
        populated = life != LifeForm.NONE
        gain = np.where(biomass > p.evolve_biomass, p.evolve_rate * dt, 0.0)
        gain = gain + np.where(stressed & (biomass > p.stress_biomass), p.stress_evolve_rate * dt, 0.0)
        evolution = np.where(populated, evolution + gain, 0.0)
        promoted = self._promote(life, biomass, evolution, oxygen, rainfall, elevation)

        # dispersal
        colonized = self._disperse(life, biomass, evolution, grace, win, temperature, oxygen,
                                   rainfall, elevation, dt)

        # reseeding
        reseed_clock = self.reseed_clock + dt
        reseeded = 0
        if reseed_clock >= p.reseed_interval:
            reseed_clock = 0.0
            frac = float(np.count_nonzero(life != LifeForm.NONE)) / float(g.n_cells)
            if frac < p.reseed_threshold:
                reseeded = self._reseed(life, biomass, evolution, grace, win, temperature,
                                        oxygen, rainfall, elevation)

        grace = np.maximum(grace - dt, 0.0)
        stats = {
            "populated": float(np.count_nonzero(life != LifeForm.NONE)) / float(g.n_cells),
            "extinct": float(np.count_nonzero(extinct)),
            "promoted": float(promoted),
            "colonized": float(colonized),
            "reseeded": float(reseeded),
            "eruptions": float(n_erupt),
            "earthquakes": float(n_quake),
            "storms": float(n_storm),
        }
        return LifeResult(life=life, biomass=biomass, evolution=evolution, grace=grace,
                          reseed_clock=reseed_clock, stats=stats)

    def _promote(self, life: np.ndarray, biomass: np.ndarray, evolution: np.ndarray,
                 oxygen: np.ndarray, rainfall: np.ndarray, elevation: np.ndarray) -> int:
        p = self.params
        ready = (life != LifeForm.NONE) & (evolution > p.evolve_threshold)
        if not np.any(ready):
            return 0
        trial = ready & (self.rng.random(life.shape) < p.evolve_chance)
        codes = life.copy()
        n = 0
        for form in LifeForm:
            traits = STRATEGIES[form]
            if traits.next_stage is None:
                continue
            target = STRATEGIES[traits.next_stage]
            ok = (trial & (codes == form)
                  & habitat_mask(target.habitat, elevation)
                  & (oxygen >= traits.promote_min_oxygen)
                  & (rainfall >= traits.promote_min_rainfall))
            if traits.promote_on_land:
                ok &= elevation >= 0.0
            life[ok] = traits.next_stage
            evolution[ok] = 0.0
            if traits.promote_biomass is not None:
                biomass[ok] = traits.promote_biomass
            n += int(np.count_nonzero(ok))
        return n

    def _survivable(self, form: LifeForm, y: int, x: int, cache: dict, win: ComfortWindow,
                    temperature, oxygen, rainfall, elevation) -> bool:
        if form not in cache:
            t_dev, o_dev, r_dev, hab = self._deviations(STRATEGIES[form], win, temperature,
                                                        oxygen, rainfall, elevation)
            cache[form] = hab & (t_dev < 1.0) & (o_dev < 1.0) & (r_dev < 1.0)
        return bool(cache[form][y, x])

    def _disperse(self, life, biomass, evolution, grace, win, temperature, oxygen,
                  rainfall, elevation, dt: float) -> int:
        p = self.params
        g = self.grid
        n_trials = min(int(p.dispersal_max), int(math.ceil(max(p.dispersal_rate * g.n_cells * dt, 0.0))))
        if n_trials <= 0 or not np.any(life != LifeForm.NONE):
            return 0
        ys = self.rng.integers(0, g.height, size=n_trials)
        xs = self.rng.integers(0, g.width, size=n_trials)
        ks = self.rng.integers(0, len(constants.MOORE_OFFSETS), size=n_trials)
        cache: dict = {}
        n = 0
        for y, x, k in zip(ys, xs, ks):
            form = int(life[y, x])
            if form == LifeForm.NONE or biomass[y, x] <= p.dispersal_min_biomass:
                continue
            dx, dy = constants.MOORE_OFFSETS[k]
            nb = g.wrap(x + dx, y + dy)
            if nb is None:
                continue
            nx, ny = nb
            if life[ny, nx] != LifeForm.NONE:
                continue
            if not self._survivable(LifeForm(form), ny, nx, cache, win, temperature, oxygen,
                                    rainfall, elevation):
                continue
            life[ny, nx] = form
            biomass[ny, nx] = p.dispersal_biomass
            evolution[ny, nx] = evolution[y, x] * 0.5
            n += 1
        return n

    def _seed_cells(self, form: LifeForm, candidates: np.ndarray, count: int, life, biomass,
                    evolution, grace, amount: float) -> int:
        ys, xs = np.nonzero(candidates)
        if ys.size == 0 or count <= 0:
            return 0
        pick = self.rng.choice(ys.size, size=min(count, ys.size), replace=False)
        life[ys[pick], xs[pick]] = form
        biomass[ys[pick], xs[pick]] = amount
        evolution[ys[pick], xs[pick]] = 0.0
        grace[ys[pick], xs[pick]] = self.params.grace_period
        return int(pick.size)

    def _reseed(self, life, biomass, evolution, grace, win, temperature, oxygen,
                rainfall, elevation) -> int:
        p = self.params
        g = self.grid
        count = max(1, int(g.n_cells * p.reseed_fraction))
        cache: dict = {}
        empty = life == LifeForm.NONE

        def viable(form: LifeForm) -> np.ndarray:
            self._survivable(form, 0, 0, cache, win, temperature, oxygen, rainfall, elevation)
            return empty & cache[form]

        n = self._seed_cells(LifeForm.BACTERIA, viable(LifeForm.BACTERIA), count,
                             life, biomass, evolution, grace, p.reseed_biomass)
        o2_mean = self.profile.oxygen.mean
        if o2_mean >= p.algae_min_o2:
            empty = life == LifeForm.NONE
            n += self._seed_cells(LifeForm.ALGAE, viable(LifeForm.ALGAE), count,
                                  life, biomass, evolution, grace, p.reseed_biomass)
        if o2_mean >= p.plant_min_o2 and np.any(elevation >= 0.0):
            empty = life == LifeForm.NONE
            n += self._seed_cells(LifeForm.PLANT, viable(LifeForm.PLANT), count,
                                  life, biomass, evolution, grace, p.reseed_biomass)
        if p.diag:
            print(f"[Life] extinction detected: reseeded {n} cells (O2 mean={o2_mean:.2f})")
        return n

    def commit(self, result: LifeResult) -> None:
        g = self.grid
        g.life[...] = result.life
        g.biomass[...] = result.biomass
        g.evolution[...] = result.evolution
        self.grace = result.grace
        self.reseed_clock = result.reseed_clock
        self.last_stats = result.stats

    def update(self, dt: float) -> None:
        self.commit(self.compute(dt))

    def step(self, ctx):
        result = self.compute(ctx.dt)

        def _commit() -> None:
            self.commit(result)
            if self.params.diag and ctx.diag_due:
                s = result.stats
                print(f"[Life] tick={ctx.tick_index} populated={s['populated']:.3f} "
                      f"promoted={int(s['promoted'])} colonized={int(s['colonized'])} "
                      f"extinct={int(s['extinct'])}")

        return _commit

    # ---- host-facing seeding ----
    def plant(self, x: int, y: int, form: LifeForm = LifeForm.BACTERIA,
              biomass: float | None = None) -> bool:
        """Manual/scripted planting with a grace period. Returns False if the cell cannot host `form`."""
        g = self.grid
        nb = g.wrap(x, y)
        if nb is None:
            return False
        x, y = nb
        try:
            form = LifeForm(int(form))
        except ValueError:
            return False
        if form is LifeForm.NONE:
            return False
        if not habitat_mask(STRATEGIES[form].habitat, g.elevation[y:y + 1, x:x + 1])[0, 0]:
            return False
        amount = self.params.initial_biomass if biomass is None else float(biomass)
        g.life[y, x] = form
        g.biomass[y, x] = min(max(amount, 0.0), 1.0)
        g.evolution[y, x] = 0.0
        self.grace[y, x] = self.params.grace_period
        return True

    def seed_initial_life(self, form: LifeForm = LifeForm.BACTERIA, trials: int | None = None) -> int:
        """Random suitability-checked seeding attempts; returns the number of cells seeded."""
        g = self.grid
        p = self.params
        if not self.profile.initialized:
            self.profile.update(g)
        suit = self.suitability(form)
        n_trials = p.initial_seed_trials if trials is None else int(trials)
        n = 0
        for _ in range(max(0, n_trials)):
            y = int(self.rng.integers(0, g.height))
            x = int(self.rng.integers(0, g.width))
            if g.life[y, x] != LifeForm.NONE or suit[y, x] <= 0.0:
                continue
            if self.plant(x, y, form):
                n += 1
        if p.diag:
            print(f"[Life] seeded {n} {LifeForm(form).name.lower()} cells")
        return n

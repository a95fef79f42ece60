from __future__ import annotations

"""
Staged tick scheduler.

One call to advance(dt, tick_index, speed_multiplier) runs a fixed list of
stages in order. Each stage is a barrier: nothing from stage k+1 starts before
every member of stage k has finished and its results have been committed.

Subsystem protocol
- step(ctx) -> commit callable or None
- Members of a parallel stage run step() concurrently on a shared
  ThreadPoolExecutor, reading the start-of-stage grid. The returned commit
  callables are applied afterwards on the scheduler thread, one at a time, in
  stage-list order.
- Members of a sequential (finalizer) stage run step() then commit back to back.

Adapters (as_subsystem)
- objects exposing step(ctx) are used as-is
- objects exposing update(dt) or update(dt, tick_index) run their update inside
  step(); such members write only the fields they own
- plain callables fn(ctx) may return a commit callable or None

Default pipeline
  1 climate, atmosphere, hydrology, geology, magnetosphere, biome   (parallel)
  2 weather, civilization, disasters                                (parallel)
  3 life, disease, fire                                             (parallel)
  4 stabilizer, seismic                                             (sequential)
"""

import inspect
import os
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable

from .ports import WiringError

Commit = Callable[[], None]


@dataclass(frozen=True)
class TickContext:
    dt: float
    tick_index: int
    speed_multiplier: float = 1.0
    diag_due: bool = False


class _StepSubsystem:
    def __init__(self, obj: Any, name: str) -> None:
        self.obj = obj
        self.name = name

    def step(self, ctx: TickContext) -> Commit | None:
        return self.obj.step(ctx)


class _UpdateSubsystem:
    def __init__(self, obj: Any, name: str) -> None:
        self.obj = obj
        self.name = name
        try:
            n_args = len(inspect.signature(obj.update).parameters)
        except (TypeError, ValueError):
            n_args = 1
        self._with_tick = n_args >= 2

    def step(self, ctx: TickContext) -> Commit | None:
        if self._with_tick:
            self.obj.update(ctx.dt, ctx.tick_index)
        else:
            self.obj.update(ctx.dt)
        return None


class _CallableSubsystem:
    def __init__(self, fn: Callable[[TickContext], Commit | None], name: str) -> None:
        self.fn = fn
        self.name = name

    def step(self, ctx: TickContext) -> Commit | None:
        return self.fn(ctx)


def as_subsystem(obj: Any, name: str | None = None):
    """Wrap a collaborator so the scheduler can call step(ctx) on it."""
    if obj is None:
        raise WiringError(f"stage member {name or '?'} is None")
    if isinstance(obj, (_StepSubsystem, _UpdateSubsystem, _CallableSubsystem)):
        return obj
    label = name or getattr(obj, "name", None) or type(obj).__name__
    if callable(getattr(obj, "step", None)):
        return _StepSubsystem(obj, label)
    if callable(getattr(obj, "update", None)):
        return _UpdateSubsystem(obj, label)
    if callable(obj):
        return _CallableSubsystem(obj, label)
    raise WiringError(f"stage member {label} has neither step(ctx) nor update(dt)")


@dataclass
class Stage:
    name: str
    members: list = field(default_factory=list)
    parallel: bool = True

    def __post_init__(self) -> None:
        self.members = [as_subsystem(m) for m in self.members]

    @property
    def member_names(self) -> list[str]:
        return [m.name for m in self.members]


class StagedScheduler:
    def __init__(self, stages: list[Stage], *, max_workers: int | None = None,
                 diag: bool | None = None, diag_every: int | None = None) -> None:
        if stages is None:
            raise WiringError("scheduler requires a stage list")
        for st in stages:
            if st is None:
                raise WiringError("scheduler stage is None")
        self.stages = list(stages)
        if max_workers is None:
            try:
                max_workers = int(os.getenv("PP_WORKERS", "4"))
            except Exception:
                max_workers = 4
        self.max_workers = max(1, int(max_workers))
        if diag is None:
            diag = os.getenv("PP_SCHED_DIAG", "1") == "1"
        if diag_every is None:
            try:
                diag_every = int(os.getenv("PP_DIAG_EVERY", "100"))
            except Exception:
                diag_every = 100
        self.diag = bool(diag)
        self.diag_every = int(diag_every)
        self._pool: ThreadPoolExecutor | None = None
        self.tick_count = 0
        self.last_tick: int | None = None

    def _executor(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pp-stage")
        return self._pool

    def _run_stage(self, stage: Stage, ctx: TickContext) -> None:
        if not stage.parallel:
            for member in stage.members:
                commit = member.step(ctx)
                if commit is not None:
                    commit()
            return
        if len(stage.members) <= 1 or self.max_workers == 1:
            commits = [m.step(ctx) for m in stage.members]
        else:
            pool = self._executor()
            futures = [pool.submit(m.step, ctx) for m in stage.members]
            wait(futures)
            commits = [f.result() for f in futures]
        for commit in commits:
            if commit is not None:
                commit()

    def advance(self, dt: float, tick_index: int, speed_multiplier: float = 1.0) -> None:
        diag_due = self.diag_every > 0 and int(tick_index) % self.diag_every == 0
        ctx = TickContext(dt=float(dt), tick_index=int(tick_index),
                          speed_multiplier=float(speed_multiplier), diag_due=diag_due)
        for stage in self.stages:
            self._run_stage(stage, ctx)
        self.tick_count += 1
        self.last_tick = int(tick_index)
        if self.diag and diag_due:
            names = ", ".join(f"{s.name}[{len(s.members)}]" for s in self.stages)
            print(f"[Scheduler] tick={tick_index} dt={dt:.3f} x{speed_multiplier:g} stages: {names}")

    def fast_forward(self, ticks: int, start_tick: int, dt: float = 1.0,
                     speed_multiplier: float = 32.0,
                     on_progress: Callable[[int, int], None] | None = None) -> int:
        """Run `ticks` advances back to back; returns the next unused tick index."""
        ticks = max(0, int(ticks))
        tick = int(start_tick)
        for i in range(ticks):
            self.advance(dt, tick, speed_multiplier)
            tick += 1
            if on_progress is not None:
                on_progress(i + 1, ticks)
        return tick

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def __enter__(self) -> StagedScheduler:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def default_pipeline(atmosphere, hydrology, life, *,
                     climate=None, geology=None, magnetosphere=None, biome=None,
                     weather=None, civilization=None, disasters=None,
                     disease=None, fire=None, stabilizer=None, seismic=None) -> list[Stage]:
    """
    Build the four-stage pipeline. The three core engines are required; the
    other collaborators are optional and skipped when not given.
    """
    for name, obj in (("atmosphere", atmosphere), ("hydrology", hydrology), ("life", life)):
        if obj is None:
            raise WiringError(f"default pipeline requires the {name} engine")

    def present(*pairs):
        return [as_subsystem(obj, name) for name, obj in pairs if obj is not None]

    return [
        Stage("physical", present(("climate", climate), ("atmosphere", atmosphere),
                                  ("hydrology", hydrology), ("geology", geology),
                                  ("magnetosphere", magnetosphere), ("biome", biome))),
        Stage("weather", present(("weather", weather), ("civilization", civilization),
                                 ("disasters", disasters))),
        Stage("life", present(("life", life), ("disease", disease), ("fire", fire))),
        Stage("finalize", present(("stabilizer", stabilizer), ("seismic", seismic)),
              parallel=False),
    ]


__all__ = ["TickContext", "Stage", "StagedScheduler", "as_subsystem", "default_pipeline", "Commit"]

import threading

import pytest

from pyplanet.world.ports import WiringError
from pyplanet.world.scheduler import Stage, StagedScheduler, TickContext, as_subsystem, default_pipeline


class Recorder:
    """step() logs its start; the commit logs when it is applied."""

    def __init__(self, name, log, barrier=None):
        self.name = name
        self.log = log
        self.barrier = barrier
        self.contexts = []

    def step(self, ctx):
        self.contexts.append(ctx)
        self.log.append(("step", self.name))
        if self.barrier is not None:
            self.barrier.wait(timeout=5)

        def _commit():
            self.log.append(("commit", self.name))

        return _commit


class Legacy:
    def __init__(self):
        self.calls = []

    def update(self, dt):
        self.calls.append(dt)


class LegacyWithTick:
    def __init__(self):
        self.calls = []

    def update(self, dt, tick_index):
        self.calls.append((dt, tick_index))


def test_stages_run_in_order_with_commits_after_each_barrier():
    log = []
    a, b = Recorder("a", log), Recorder("b", log)
    c = Recorder("c", log)
    d = Recorder("d", log)
    with StagedScheduler([Stage("one", [a, b]), Stage("two", [c]), Stage("fin", [d], parallel=False)],
                         max_workers=2, diag=False) as sched:
        sched.advance(1.0, 0)
    steps_one = {("step", "a"), ("step", "b")}
    assert set(log[:2]) == steps_one
    # commits of a parallel stage follow the barrier, in stage-list order
    assert log[2:4] == [("commit", "a"), ("commit", "b")]
    assert log[4:] == [("step", "c"), ("commit", "c"), ("step", "d"), ("commit", "d")]


def test_parallel_members_really_run_concurrently():
    # both members block on a two-party barrier; this only completes if they overlap
    log = []
    barrier = threading.Barrier(2)
    a = Recorder("a", log, barrier)
    b = Recorder("b", log, barrier)
    with StagedScheduler([Stage("one", [a, b])], max_workers=2, diag=False) as sched:
        sched.advance(1.0, 0)
    assert ("commit", "a") in log and ("commit", "b") in log


def test_context_carries_tick_information():
    log = []
    a = Recorder("a", log)
    sched = StagedScheduler([Stage("one", [a])], max_workers=1, diag=False, diag_every=10)
    sched.advance(0.5, 20, speed_multiplier=4.0)
    sched.advance(0.5, 21)
    ctx = a.contexts[0]
    assert ctx == TickContext(dt=0.5, tick_index=20, speed_multiplier=4.0, diag_due=True)
    assert a.contexts[1].diag_due is False
    assert sched.tick_count == 2 and sched.last_tick == 21
    sched.close()


def test_adapters_for_update_style_and_callables():
    legacy = Legacy()
    ticked = LegacyWithTick()
    seen = []

    def fn(ctx):
        seen.append(ctx.tick_index)
        return None

    sched = StagedScheduler([Stage("one", [legacy, ticked, fn])], max_workers=3, diag=False)
    sched.advance(2.0, 7)
    sched.close()
    assert legacy.calls == [2.0]
    assert ticked.calls == [(2.0, 7)]
    assert seen == [7]


def test_wiring_errors():
    with pytest.raises(WiringError):
        Stage("one", [None])
    with pytest.raises(WiringError):
        as_subsystem(object())
    with pytest.raises(WiringError):
        StagedScheduler([None])
    with pytest.raises(WiringError):
        default_pipeline(Recorder("a", []), None, Recorder("c", []))
    assert issubclass(WiringError, ValueError)


def test_default_pipeline_layout():
    log = []
    atm, hyd, life = Recorder("atm", log), Recorder("hyd", log), Recorder("life", log)
    weather, stab = Recorder("weather", log), Recorder("stab", log)
    stages = default_pipeline(atm, hyd, life, weather=weather, stabilizer=stab)
    assert [s.name for s in stages] == ["physical", "weather", "life", "finalize"]
    assert stages[0].member_names == ["atmosphere", "hydrology"]
    assert stages[1].member_names == ["weather"]
    assert stages[3].parallel is False
    with StagedScheduler(stages, max_workers=2, diag=False) as sched:
        sched.advance(1.0, 0)
    commits = [name for kind, name in log if kind == "commit"]
    assert commits == ["atm", "hyd", "weather", "life", "stab"]


def test_collaborator_exceptions_propagate():
    class Broken:
        def step(self, ctx):
            raise RuntimeError("boom")

    with StagedScheduler([Stage("one", [Broken(), Recorder("ok", [])])], max_workers=2,
                         diag=False) as sched:
        with pytest.raises(RuntimeError):
            sched.advance(1.0, 0)


def test_fast_forward_runs_tight_loop_with_progress():
    log = []
    a = Recorder("a", log)
    progress = []
    with StagedScheduler([Stage("one", [a])], max_workers=1, diag=False) as sched:
        nxt = sched.fast_forward(5, start_tick=10, on_progress=lambda i, n: progress.append((i, n)))
    assert nxt == 15
    assert [c.tick_index for c in a.contexts] == [10, 11, 12, 13, 14]
    assert all(c.speed_multiplier == 32.0 for c in a.contexts)
    assert progress[-1] == (5, 5)

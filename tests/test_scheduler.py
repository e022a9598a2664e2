from __future__ import annotations

import random
import threading
import time

import pytest

from conftest import FakeRunner, RecordingListener
from triggerci.context import RunContext
from triggerci.dsl import job, sh, workflow
from triggerci.errors import SchedulerStateError
from triggerci.events import EventDispatcher
from triggerci.executor import StepExecutor
from triggerci.gating import ContextEvaluator
from triggerci.model import Event, JobResult, JobRunState
from triggerci.runners import ActionRegistry, CommandResult
from triggerci.scheduler import JobGraphScheduler, _RunState


def _scheduler(runner, listener=None, **kw) -> JobGraphScheduler:
    dispatcher = EventDispatcher([listener] if listener else None)
    evaluator = ContextEvaluator()
    executor = StepExecutor(runner, ActionRegistry(), evaluator, dispatcher)
    return JobGraphScheduler(executor, evaluator, dispatcher, **kw)


def _run(wf, runner, listener=None, cancel=None, payload=None, **kw):
    ctx = RunContext(Event("push", payload or {}), {}, workflow=wf.name)
    return _scheduler(runner, listener, **kw).run(wf, ctx, cancel), ctx


def _random_workflow(seed: int):
    rng = random.Random(seed)
    n = rng.randint(2, 12)
    ids = [f"j{i}" for i in range(n)]
    needs = {job_id: sorted(rng.sample(ids[:i], rng.randint(0, min(i, 3)))) for i, job_id in enumerate(ids)}
    failing = {job_id for job_id in ids if rng.random() < 0.2}
    jobs = {job_id: job(job_id, sh("work", f"echo {job_id}"), needs=needs[job_id]) for job_id in ids}
    # shuffle declaration order so dispatch order cannot lean on it
    order = ids[:]
    rng.shuffle(order)
    return workflow(f"random-{seed}", on="push", jobs={j: jobs[j] for j in order}), needs, failing


@pytest.mark.parametrize("seed", range(12))
def test_random_dag_runs_every_job_at_most_once_after_its_needs(seed):
    wf, needs, failing = _random_workflow(seed)
    runner = FakeRunner({f"echo {j}": 1 for j in failing})

    outcome, _ = _run(wf, runner)

    commands = runner.commands
    assert len(commands) == len(set(commands))
    assert len(outcome.started) == len(set(outcome.started))
    assert set(outcome.jobs) == set(wf.jobs)

    # expected states, walking jobs in dependency order
    expected = {}
    for job_id in sorted(needs, key=lambda j: int(j[1:])):
        if any(expected[n] is JobRunState.FAILED for n in needs[job_id]):
            expected[job_id] = JobRunState.SKIPPED
        elif job_id in failing:
            expected[job_id] = JobRunState.FAILED
        else:
            expected[job_id] = JobRunState.SUCCEEDED

    for job_id, result in outcome.jobs.items():
        assert result.state is expected[job_id], job_id
        ran = f"echo {job_id}" in commands
        assert ran is (result.state is not JobRunState.SKIPPED)
        if ran:
            for need in needs[job_id]:
                if f"echo {need}" in commands:
                    assert commands.index(f"echo {need}") < commands.index(f"echo {job_id}")
        else:
            assert result.reason == "needs-failed"


def test_failed_prerequisite_skips_dependent_but_not_siblings():
    wf = workflow(
        "ci",
        on="push",
        b=job("b", sh("b", "run b")),
        c=job("c", sh("c", "run c")),
        a=job("a", sh("a", "run a"), needs=["b", "c"]),
    )
    runner = FakeRunner({"run b": 1})

    outcome, ctx = _run(wf, runner)

    assert outcome.jobs["b"].state is JobRunState.FAILED
    assert outcome.jobs["c"].state is JobRunState.SUCCEEDED
    assert outcome.jobs["a"].state is JobRunState.SKIPPED
    assert outcome.jobs["a"].reason == "needs-failed"
    assert "run a" not in runner.commands
    assert "run c" in runner.commands
    assert outcome.first_error == "[b] step 'b' failed: command failed: run b (exit=1)"
    assert ctx.get("jobs.a.result") == "skipped"
    assert ctx.get("jobs.b.result") == "failure"


def test_independent_jobs_run_concurrently():
    wf = workflow(
        "ci",
        on="push",
        one=job("one", sh("wait", "sleep 0.3")),
        two=job("two", sh("wait", "sleep 0.31")),
    )
    started = time.monotonic()
    outcome, _ = _run(wf, FakeRunner())
    elapsed = time.monotonic() - started

    assert all(r.state is JobRunState.SUCCEEDED for r in outcome.jobs.values())
    assert elapsed < 0.55


def test_max_workers_caps_concurrency():
    wf = workflow(
        "ci",
        on="push",
        one=job("one", sh("wait", "sleep 0.2")),
        two=job("two", sh("wait", "sleep 0.21")),
    )
    started = time.monotonic()
    _run(wf, FakeRunner(), max_workers=1)
    assert time.monotonic() - started >= 0.4


def test_false_gate_skips_job_and_unblocks_dependents():
    wf = workflow(
        "ci",
        on="push",
        lint=job("lint", sh("lint", "lint"), if_="false"),
        build=job("build", sh("build", "build"), needs="lint"),
    )
    runner = FakeRunner()
    listener = RecordingListener()

    outcome, _ = _run(wf, runner, listener)

    assert outcome.jobs["lint"].state is JobRunState.SKIPPED
    assert outcome.jobs["lint"].reason == "condition"
    assert outcome.jobs["lint"].steps == []
    assert outcome.jobs["build"].state is JobRunState.SUCCEEDED
    assert runner.commands == ["build"]
    assert ("job_skipped", "ci", "lint", "condition") in listener.events
    assert ("job_start", "ci", "lint") not in listener.events


def test_skipped_prerequisite_can_block_dependents():
    wf = workflow(
        "ci",
        on="push",
        lint=job("lint", sh("lint", "lint"), if_="false"),
        build=job("build", sh("build", "build"), needs="lint"),
    )
    runner = FakeRunner()

    outcome, _ = _run(wf, runner, skipped_blocks_dependents=True)

    assert outcome.jobs["build"].state is JobRunState.SKIPPED
    assert outcome.jobs["build"].reason == "needs-skipped"
    assert runner.commands == []


def test_job_gate_sees_prerequisite_results():
    wf = workflow(
        "ci",
        on="push",
        test=job("test", sh("test", "pytest")),
        report=job("report", sh("report", "report"), needs="test", if_="jobs.test.result == 'success'"),
    )
    outcome, _ = _run(wf, FakeRunner())
    assert outcome.jobs["report"].state is JobRunState.SUCCEEDED


def test_job_outputs_reach_dependents():
    wf = workflow(
        "release",
        on="push",
        build=job("build", sh("v", "echo 3.1.4", id="v"), outputs={"version": "${{ steps.v.output }}"}),
        deploy=job("deploy", sh("ship", "ship ${{ jobs.build.outputs.version }} to ${{ event.target }}"), needs="build"),
    )
    runner = FakeRunner()

    outcome, _ = _run(wf, runner, payload={"target": "prod"})

    assert outcome.jobs["build"].outputs == {"version": "3.1.4"}
    assert runner.commands == ["echo 3.1.4", "ship 3.1.4 to prod"]


def test_cancel_before_start_skips_everything():
    wf = workflow("ci", on="push", a=job("a", sh("a", "a")), b=job("b", sh("b", "b"), needs="a"))
    cancel = threading.Event()
    cancel.set()
    runner = FakeRunner()

    outcome, _ = _run(wf, runner, cancel=cancel)

    assert runner.commands == []
    assert {r.reason for r in outcome.jobs.values()} == {"cancelled"}
    assert all(r.state is JobRunState.SKIPPED for r in outcome.jobs.values())


def test_cancel_lets_running_jobs_finish():
    cancel = threading.Event()

    def cancel_mid_job(command, env, timeout):
        cancel.set()
        return CommandResult(stdout="", exit_code=0)

    wf = workflow(
        "ci",
        on="push",
        a=job("a", sh("trip", "trip"), sh("rest", "rest")),
        b=job("b", sh("b", "b"), needs="a"),
    )
    runner = FakeRunner({"trip": cancel_mid_job})

    outcome, _ = _run(wf, runner, cancel=cancel)

    assert outcome.jobs["a"].state is JobRunState.SUCCEEDED
    assert runner.commands == ["trip", "rest"]
    assert outcome.jobs["b"].state is JobRunState.SKIPPED
    assert outcome.jobs["b"].reason == "cancelled"


def test_unexpected_executor_crash_fails_only_that_job():
    class Crashing(StepExecutor):
        def run_job(self, workflow, job_id, job, context):
            if job_id == "bad":
                raise RuntimeError("executor bug")
            return super().run_job(workflow, job_id, job, context)

    evaluator = ContextEvaluator()
    runner = FakeRunner()
    scheduler = JobGraphScheduler(Crashing(runner, ActionRegistry(), evaluator), evaluator)
    wf = workflow(
        "ci",
        on="push",
        bad=job("bad", sh("x", "x")),
        good=job("good", sh("y", "y")),
        after=job("after", sh("z", "z"), needs="bad"),
    )

    outcome = scheduler.run(wf, RunContext(Event("push")))

    assert outcome.jobs["bad"].state is JobRunState.FAILED
    assert "RuntimeError: executor bug" in outcome.jobs["bad"].error
    assert outcome.jobs["good"].state is JobRunState.SUCCEEDED
    assert outcome.jobs["after"].reason == "needs-failed"


def test_job_notifications_order():
    wf = workflow("ci", on="push", build=job("build", sh("make", "make")), test=job("test", sh("t", "t"), needs="build"))
    listener = RecordingListener()

    _run(wf, FakeRunner(), listener)

    jobs_only = [e for e in listener.events if e[0].startswith("job_")]
    assert jobs_only == [
        ("job_start", "ci", "build"),
        ("job_complete", "ci", "build", "succeeded"),
        ("job_start", "ci", "test"),
        ("job_complete", "ci", "test", "succeeded"),
    ]


def test_a_job_cannot_start_twice():
    run = _RunState(states={"a": JobRunState.PENDING}, remaining={"a": 0}, dependents={"a": set()})
    run.move("a", JobRunState.READY)
    run.move("a", JobRunState.RUNNING)
    with pytest.raises(SchedulerStateError):
        run.move("a", JobRunState.RUNNING)
    run.move("a", JobRunState.SUCCEEDED)
    with pytest.raises(SchedulerStateError):
        run.move("a", JobRunState.SKIPPED)


def test_results_keep_declaration_order():
    wf = workflow("ci", on="push", z=job("z", sh("z", "z")), a=job("a", sh("a", "a"), needs="z"))
    outcome, _ = _run(wf, FakeRunner())
    assert list(outcome.jobs) == ["z", "a"]
    assert isinstance(outcome.jobs["z"], JobResult)

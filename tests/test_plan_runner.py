"""Tests for rank ordering, parallel groups and cancellation."""

from __future__ import annotations

import threading
from unittest.mock import Mock, patch

import pytest

from gitops_teardown.core.plan_runner import PlanRunner
from gitops_teardown.models import APPLICATION_TYPE, NAMESPACE_TYPE, Outcome
from gitops_teardown.models.report import DeletionOutcome
from gitops_teardown.models.resource import DeletionPlan, ManagedResource


def app(name: str, rank: int = 0) -> ManagedResource:
    return ManagedResource.application(name, "argocd", rank)


def recording_engine() -> Mock:
    engine = Mock()
    engine.cancel_event = threading.Event()
    engine.seen = []
    lock = threading.Lock()

    def execute(resource):
        with lock:
            engine.seen.append(resource)
        return DeletionOutcome(resource, Outcome.DELETED)

    engine.execute.side_effect = execute
    return engine


class TestOrdering:
    def test_ranks_processed_in_order(self, cluster, engine):
        """GIVEN resources at ranks [0, 0, 1, 2]
        WHEN the plan runs with a parallel worker pool
        THEN outcomes are recorded rank by rank
        """
        cluster.add(APPLICATION_TYPE, "canvas-oda", "argocd")
        cluster.add(APPLICATION_TYPE, "canvas-kong", "argocd")
        cluster.add(NAMESPACE_TYPE, "canvas")
        name, _ = cluster.add_crd("oda.tmforum.org", "Component", "components")
        plan = DeletionPlan.from_resources([
            app("canvas-oda", 0),
            app("canvas-kong", 0),
            ManagedResource.namespace_resource("canvas", 1),
            ManagedResource.crd(name, 2),
        ])

        report = PlanRunner(engine, max_workers=4).run(plan)

        assert [o.resource.rank for o in report.outcomes] == [0, 0, 1, 2]
        assert report.ok
        assert cluster.objects == {}

    @pytest.mark.parametrize("workers", [1, 3])
    def test_every_resource_runs_once(self, workers):
        engine = recording_engine()
        plan = DeletionPlan.from_resources(
            [app(f"app-{i}", i // 3) for i in range(9)]
        )

        report = PlanRunner(engine, max_workers=workers).run(plan)

        assert sorted(r.name for r in engine.seen) == sorted(r.name for r in plan.resources)
        ranks = [r.rank for r in engine.seen]
        assert ranks == sorted(ranks)
        assert len(report.outcomes) == 9

    def test_failure_does_not_stop_the_plan(self, cluster, engine):
        """GIVEN applications A, B, C where B cannot be deleted
        WHEN the plan runs
        THEN A and C are deleted and exactly B is reported as failed
        """
        cluster.add(APPLICATION_TYPE, "a", "argocd")
        cluster.add(APPLICATION_TYPE, "b", "argocd", finalizers=["stuck"], sticky=99)
        cluster.add(APPLICATION_TYPE, "c", "argocd")
        plan = DeletionPlan.from_resources([app("a", 0), app("b", 1), app("c", 2)])

        report = PlanRunner(engine).run(plan)

        assert report.failed_identifiers == ["Application argocd/b"]
        assert report.counts[Outcome.DELETED] == 2
        assert not report.ok

    def test_unexpected_error_becomes_failed(self):
        engine = Mock()
        engine.cancel_event = threading.Event()
        engine.execute.side_effect = RuntimeError("boom")

        report = PlanRunner(engine).run(DeletionPlan.from_resources([app("a")]))

        assert report.outcomes[0].status == Outcome.FAILED
        assert "boom" in report.outcomes[0].reason

    def test_on_outcome_callback(self):
        engine = recording_engine()
        received = []

        PlanRunner(engine, on_outcome=received.append).run(
            DeletionPlan.from_resources([app("a"), app("b", 1)])
        )

        assert [o.resource.name for o in received] == ["a", "b"]

    def test_pause_before_rank(self):
        engine = recording_engine()
        plan = DeletionPlan.from_resources([app("a", 0), app("b", 1)])

        report = PlanRunner(engine).run(plan, pause_before={1: 0.01})

        assert report.ok
        assert [r.name for r in engine.seen] == ["a", "b"]


class TestCancellation:
    def test_cancel_event_skips_remaining_resources(self):
        engine = recording_engine()
        plan = DeletionPlan.from_resources([app("a", 0), app("b", 0), app("c", 1)])
        runner = PlanRunner(engine, on_outcome=lambda o: engine.cancel_event.set())

        report = runner.run(plan)

        assert [o.resource.name for o in report.outcomes] == ["a"]
        assert [r.name for r in report.skipped] == ["b", "c"]
        assert report.cancelled
        assert not report.ok

    def test_deadline_returns_partial_report(self):
        """GIVEN a deadline that passes while the first rank is processed
        WHEN the plan runs
        THEN later ranks are never started and the report is marked cancelled
        """
        engine = recording_engine()
        clock = {"now": 1000.0}

        def advance(_outcome):
            clock["now"] += 60

        plan = DeletionPlan.from_resources([app("a", 0), app("b", 1), app("c", 2)])
        runner = PlanRunner(engine, deadline_seconds=30, on_outcome=advance)

        with patch("gitops_teardown.core.plan_runner.time.monotonic", side_effect=lambda: clock["now"]):
            report = runner.run(plan)

        assert [r.name for r in engine.seen] == ["a"]
        assert [r.name for r in report.skipped] == ["b", "c"]
        assert report.cancelled
        assert engine.cancel_event.is_set()

    def test_keyboard_interrupt_stops_the_run(self):
        engine = Mock()
        engine.cancel_event = threading.Event()
        engine.execute.side_effect = KeyboardInterrupt
        plan = DeletionPlan.from_resources([app("a", 0), app("b", 1)])

        report = PlanRunner(engine).run(plan)

        assert report.cancelled
        assert [r.name for r in report.skipped] == ["a", "b"]
        assert engine.execute.call_count == 1

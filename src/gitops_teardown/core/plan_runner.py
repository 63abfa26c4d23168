"""Run a deletion plan rank by rank with a bounded worker pool."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from gitops_teardown.core.teardown_engine import TeardownEngine
from gitops_teardown.models import Outcome
from gitops_teardown.models.report import DeletionOutcome, DeletionReport
from gitops_teardown.models.resource import DeletionPlan, ManagedResource

logger = logging.getLogger(__name__)


class PlanRunner:
    """Executes groups strictly in rank order; members of a group run concurrently.

    The run stops issuing new deletions once the engine's cancel event is set
    or ``deadline_seconds`` elapses. Resources already in flight finish their
    current wait, and the partial report is returned.
    """

    def __init__(
        self,
        engine: TeardownEngine,
        max_workers: int = 1,
        deadline_seconds: float | None = None,
        on_outcome: Callable[[DeletionOutcome], None] | None = None,
    ):
        self.engine = engine
        self.max_workers = max(1, max_workers)
        self.deadline_seconds = deadline_seconds
        self.on_outcome = on_outcome
        self._deadline: float | None = None

    @property
    def cancel_event(self):
        return self.engine.cancel_event

    def _should_stop(self) -> bool:
        if self.cancel_event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            logger.warning("Deadline of %ss reached, not starting further deletions", f"{self.deadline_seconds:g}")
            self.cancel_event.set()
            return True
        return False

    def run(self, plan: DeletionPlan, pause_before: dict[int, float] | None = None) -> DeletionReport:
        report = DeletionReport()
        self._deadline = (
            time.monotonic() + self.deadline_seconds if self.deadline_seconds is not None else None
        )
        pause_before = pause_before or {}
        groups = list(plan.groups)

        for index, group in enumerate(groups):
            rank = group[0].rank
            if self._should_stop():
                report.mark_skipped([r for g in groups[index:] for r in g])
                break
            pause = pause_before.get(rank, 0)
            try:
                if pause > 0 and index > 0:
                    logger.info("Waiting %ss for controllers to clean up before rank %d", f"{pause:g}", rank)
                    if self.cancel_event.wait(pause):
                        report.mark_skipped([r for g in groups[index:] for r in g])
                        break
                logger.info("Processing rank %d (%d resource(s))", rank, len(group))
                self._run_group(group, report)
            except KeyboardInterrupt:
                logger.warning("Interrupted, finishing in-flight deletions and stopping")
                self.cancel_event.set()
                handled = {o.resource for o in report.outcomes} | set(report.skipped)
                report.mark_skipped([r for g in groups[index:] for r in g if r not in handled])
                break

        if report.cancelled:
            logger.warning("Run cancelled: %d resource(s) not processed", len(report.skipped))
        return report

    def _run_group(self, group: tuple[ManagedResource, ...], report: DeletionReport) -> None:
        if self.max_workers == 1 or len(group) == 1:
            for resource in group:
                self._run_one(resource, report)
            return
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(group))) as executor:
            futures = [executor.submit(self._run_one, resource, report) for resource in group]
            try:
                for future in futures:
                    future.result()
            except KeyboardInterrupt:
                # Queued workers see the event and skip themselves
                self.cancel_event.set()
                raise

    def _run_one(self, resource: ManagedResource, report: DeletionReport) -> None:
        if self._should_stop():
            report.mark_skipped([resource])
            return
        try:
            outcome = self.engine.execute(resource)
        except Exception as e:
            logger.exception("Unexpected error while deleting %s", resource)
            outcome = DeletionOutcome(resource=resource, status=Outcome.FAILED, reason=f"unexpected error: {e}")
        report.record(outcome)
        if self.on_outcome is not None:
            self.on_outcome(outcome)

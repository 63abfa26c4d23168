"""Deletion outcome and report models."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from gitops_teardown.core.errors import PartialFailureError
from gitops_teardown.models import Outcome
from gitops_teardown.models.resource import ManagedResource


@dataclass
class DeletionOutcome:
    resource: ManagedResource
    status: Outcome
    reason: str = ""
    escalated: bool = False
    last_state: dict[str, Any] | None = None
    swept_kinds: int = 0
    instances_deleted: int = 0
    elapsed: float = 0.0

    @property
    def is_success(self) -> bool:
        return self.status.is_success


@dataclass
class DeletionReport:
    """Outcomes of one run. ``record`` is safe to call from worker threads."""

    outcomes: list[DeletionOutcome] = field(default_factory=list)
    skipped: list[ManagedResource] = field(default_factory=list)
    cancelled: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, outcome: DeletionOutcome) -> None:
        with self._lock:
            self.outcomes.append(outcome)

    def mark_skipped(self, resources: list[ManagedResource]) -> None:
        with self._lock:
            self.cancelled = True
            self.skipped.extend(resources)

    @property
    def counts(self) -> dict[Outcome, int]:
        tally = Counter(o.status for o in self.outcomes)
        return {status: tally.get(status, 0) for status in Outcome}

    @property
    def failures(self) -> list[DeletionOutcome]:
        return [o for o in self.outcomes if not o.is_success]

    @property
    def failed_identifiers(self) -> list[str]:
        return [o.resource.identifier for o in self.failures]

    @property
    def escalations(self) -> int:
        return sum(1 for o in self.outcomes if o.escalated)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    @property
    def ok(self) -> bool:
        return not self.has_failures and not self.cancelled

    @property
    def summary(self) -> str:
        counts = self.counts
        parts = [f"{counts[s]} {s.value}" for s in Outcome if counts[s]]
        if self.skipped:
            parts.append(f"{len(self.skipped)} skipped")
        return ", ".join(parts) if parts else "nothing to do"

    def raise_for_failures(self) -> None:
        if self.has_failures:
            raise PartialFailureError(self.failed_identifiers)


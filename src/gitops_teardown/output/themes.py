"""Outcome and resource-kind color maps."""

from gitops_teardown.models import Outcome, ResourceKind

OUTCOME_COLORS: dict[Outcome, str] = {
    Outcome.DELETED: "green",
    Outcome.NOT_FOUND: "dim",
    Outcome.TIMED_OUT: "yellow",
    Outcome.FAILED: "red bold",
}

KIND_COLORS: dict[ResourceKind, str] = {
    ResourceKind.APPLICATION: "magenta",
    ResourceKind.NAMESPACE: "blue",
    ResourceKind.CLUSTER_OBJECT: "cyan",
    ResourceKind.CRD: "yellow",
}


def styled_outcome(outcome: Outcome) -> str:
    color = OUTCOME_COLORS.get(outcome, "white")
    return f"[{color}]{outcome.value}[/{color}]"


def styled_kind(kind: ResourceKind) -> str:
    color = KIND_COLORS.get(kind, "white")
    return f"[{color}]{kind.value}[/{color}]"

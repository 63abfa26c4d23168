"""Managed resource and deletion plan models."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from gitops_teardown.core.errors import InvalidConfigError
from gitops_teardown.models import (
    APPLICATION_TYPE,
    CRD_TYPE,
    NAMESPACE_TYPE,
    ResourceKind,
    ResourceType,
)


@dataclass(frozen=True)
class ManagedResource:
    kind: ResourceKind
    name: str
    namespace: str = ""
    rank: int = 0
    # Concrete API type; only needed for cluster-scoped objects
    api_type: ResourceType | None = None

    @property
    def resource_type(self) -> ResourceType:
        if self.api_type is not None:
            return self.api_type
        if self.kind == ResourceKind.APPLICATION:
            return APPLICATION_TYPE
        if self.kind == ResourceKind.NAMESPACE:
            return NAMESPACE_TYPE
        if self.kind == ResourceKind.CRD:
            return CRD_TYPE
        raise InvalidConfigError(f"Cluster-scoped object '{self.name}' has no API type")

    @property
    def identity(self) -> tuple[str, str, str, str]:
        return (self.kind.value, self.resource_type.kind, self.namespace, self.name)

    @property
    def identifier(self) -> str:
        """Human-readable identifier, e.g. ``Application argocd/canvas-oda``."""
        label = self.resource_type.kind
        if self.namespace:
            return f"{label} {self.namespace}/{self.name}"
        return f"{label} {self.name}"

    def __str__(self) -> str:
        return self.identifier

    @classmethod
    def application(cls, name: str, namespace: str, rank: int = 0) -> ManagedResource:
        return cls(ResourceKind.APPLICATION, name, namespace, rank)

    @classmethod
    def namespace_resource(cls, name: str, rank: int = 0) -> ManagedResource:
        return cls(ResourceKind.NAMESPACE, name, "", rank)

    @classmethod
    def crd(cls, name: str, rank: int = 0) -> ManagedResource:
        return cls(ResourceKind.CRD, name, "", rank)

    @classmethod
    def cluster_object(cls, api_type: ResourceType, name: str, rank: int = 0) -> ManagedResource:
        return cls(ResourceKind.CLUSTER_OBJECT, name, "", rank, api_type)


@dataclass(frozen=True)
class DeletionPlan:
    """Resources grouped by rank. Groups run in order; members of a group are independent."""

    groups: tuple[tuple[ManagedResource, ...], ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        seen: set[tuple[str, str, str, str]] = set()
        last_rank: int | None = None
        for group in self.groups:
            if not group:
                raise InvalidConfigError("Deletion plan contains an empty group")
            ranks = {r.rank for r in group}
            if len(ranks) != 1:
                raise InvalidConfigError(f"Deletion plan group mixes ranks {sorted(ranks)}")
            rank = ranks.pop()
            if last_rank is not None and rank < last_rank:
                raise InvalidConfigError(
                    f"Deletion plan ranks must not decrease (rank {rank} after {last_rank})"
                )
            last_rank = rank
            for res in group:
                if not res.name:
                    raise InvalidConfigError(f"{res.kind.value} resource has an empty name")
                if res.identity in seen:
                    raise InvalidConfigError(f"{res.identifier} appears twice in the deletion plan")
                seen.add(res.identity)

    @classmethod
    def from_resources(cls, resources: Iterable[ManagedResource]) -> DeletionPlan:
        """Group resources by rank, preserving input order inside each rank."""
        by_rank: dict[int, list[ManagedResource]] = defaultdict(list)
        for res in resources:
            by_rank[res.rank].append(res)
        return cls(tuple(tuple(by_rank[rank]) for rank in sorted(by_rank)))

    @property
    def resources(self) -> list[ManagedResource]:
        return [res for group in self.groups for res in group]

    @property
    def ranks(self) -> list[int]:
        return [group[0].rank for group in self.groups]

    def __len__(self) -> int:
        return sum(len(group) for group in self.groups)

    def __bool__(self) -> bool:
        return bool(self.groups)

"""Turn settings and live discovery into deletion plans."""

from __future__ import annotations

import logging
from typing import Iterable

from gitops_teardown.config.settings import Settings
from gitops_teardown.core.errors import ClusterAPIError
from gitops_teardown.core.k8s_client import K8sClient
from gitops_teardown.core.teardown_engine import TeardownEngine
from gitops_teardown.models import (
    API_SERVICE_TYPE,
    CLUSTER_ROLE_BINDING_TYPE,
    CLUSTER_ROLE_TYPE,
    MUTATING_WEBHOOK_TYPE,
    VALIDATING_WEBHOOK_TYPE,
    ResourceType,
)
from gitops_teardown.models.resource import DeletionPlan, ManagedResource

logger = logging.getLogger(__name__)


class PlanBuilder:
    """Builds plans in dependency order: applications, namespaces, cluster objects, CRDs.

    Discovery failures do not abort planning; they are collected in
    ``discovery_errors`` so the caller can treat the run as incomplete.
    """

    def __init__(self, k8s: K8sClient, settings: Settings, engine: TeardownEngine):
        self.k8s = k8s
        self.settings = settings
        self.engine = engine
        self.discovery_errors: list[str] = []

    def application_plan(self, names: Iterable[str] | None = None, base_rank: int = 0) -> DeletionPlan:
        """One rank per configured application group, or a single rank for explicit ``names``."""
        ns = self.settings.argocd_namespace
        if names is not None:
            return DeletionPlan.from_resources(
                ManagedResource.application(name, ns, base_rank) for name in names
            )
        return DeletionPlan.from_resources(
            ManagedResource.application(name, ns, base_rank + offset)
            for offset, group in enumerate(self.settings.applications)
            for name in group
        )

    def namespace_plan(self, names: Iterable[str] | None = None, rank: int = 0) -> DeletionPlan:
        names = self.settings.managed_namespaces if names is None else names
        return DeletionPlan.from_resources(ManagedResource.namespace_resource(n, rank) for n in names)

    def cluster_object_plan(self, rank: int = 0) -> DeletionPlan:
        """Webhooks, cluster roles/bindings and API services that exist, by name or label."""
        s = self.settings
        wanted: list[tuple[ResourceType, tuple[str, ...], tuple[str, ...]]] = [
            (MUTATING_WEBHOOK_TYPE, s.webhook_names, ()),
            (VALIDATING_WEBHOOK_TYPE, s.webhook_names, ()),
            (CLUSTER_ROLE_BINDING_TYPE, s.cluster_role_binding_names, s.cluster_object_labels),
            (CLUSTER_ROLE_TYPE, s.cluster_role_names, s.cluster_object_labels),
            (API_SERVICE_TYPE, (), s.apiservice_labels),
        ]
        resources: list[ManagedResource] = []
        for rtype, names, selectors in wanted:
            matched = self._match_cluster_objects(rtype, names, selectors)
            resources.extend(ManagedResource.cluster_object(rtype, name, rank) for name in matched)
        return DeletionPlan.from_resources(resources)

    def _match_cluster_objects(
        self, rtype: ResourceType, names: tuple[str, ...], selectors: tuple[str, ...],
    ) -> list[str]:
        matched: dict[str, None] = {}
        try:
            if names:
                existing = {
                    (item.get("metadata", {}) or {}).get("name", "")
                    for item in self.k8s.list(rtype)
                }
                for name in names:
                    if name in existing:
                        matched[name] = None
            for selector in selectors:
                for item in self.k8s.list(rtype, label_selector=selector):
                    name = (item.get("metadata", {}) or {}).get("name", "")
                    if name:
                        matched[name] = None
        except ClusterAPIError as e:
            self._discovery_failed(f"{rtype.kind} discovery failed: {e}")
        return sorted(matched)

    def crd_plan(self, extra_patterns: Iterable[str] = (), rank: int = 0) -> DeletionPlan:
        patterns = (*self.settings.crd_patterns, *extra_patterns)
        try:
            names = self.engine.discover_crds(patterns=patterns)
        except ClusterAPIError as e:
            self._discovery_failed(f"CRD discovery failed: {e}")
            names = set()
        return DeletionPlan.from_resources(ManagedResource.crd(name, rank) for name in sorted(names))

    def full_plan(self, include_crds: bool = True) -> DeletionPlan:
        apps = self.application_plan()
        next_rank = len(self.settings.applications)
        resources = [
            *apps.resources,
            *self.namespace_plan(rank=next_rank).resources,
            *self.cluster_object_plan(rank=next_rank + 1).resources,
        ]
        if include_crds:
            resources.extend(self.crd_plan(rank=next_rank + 2).resources)
        return DeletionPlan.from_resources(resources)

    @property
    def namespace_rank(self) -> int:
        return len(self.settings.applications)

    def _discovery_failed(self, message: str) -> None:
        logger.error(message)
        self.discovery_errors.append(message)

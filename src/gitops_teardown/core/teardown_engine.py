"""Dependency-aware deletion of applications, namespaces, cluster objects and CRDs."""

from __future__ import annotations

import logging
import re
import threading
import time
from typing import Any, Iterable

from gitops_teardown.config.settings import Settings
from gitops_teardown.core.errors import ClusterAPIError
from gitops_teardown.core.k8s_client import K8sClient
from gitops_teardown.models import CRD_TYPE, Outcome, ResourceKind, ResourceType
from gitops_teardown.models.crd import CrdInfo
from gitops_teardown.models.report import DeletionOutcome
from gitops_teardown.models.resource import ManagedResource

logger = logging.getLogger(__name__)

# Swept first, in this order, before anything discovered from the API server
NAMESPACE_SWEEP_TYPES: tuple[ResourceType, ...] = (
    ResourceType("apps", "Deployment"),
    ResourceType("apps", "StatefulSet"),
    ResourceType("apps", "DaemonSet"),
    ResourceType("", "Service"),
    ResourceType("networking.k8s.io", "Ingress"),
    ResourceType("", "ConfigMap"),
    ResourceType("", "Secret"),
    ResourceType("", "ServiceAccount"),
    ResourceType("rbac.authorization.k8s.io", "RoleBinding"),
    ResourceType("rbac.authorization.k8s.io", "Role"),
    ResourceType("", "PersistentVolumeClaim"),
    ResourceType("batch", "Job"),
    ResourceType("batch", "CronJob"),
    ResourceType("", "Pod"),
    ResourceType("apps", "ReplicaSet"),
    ResourceType("autoscaling", "HorizontalPodAutoscaler"),
    ResourceType("policy", "PodDisruptionBudget"),
    ResourceType("networking.k8s.io", "NetworkPolicy"),
    # Istio traffic routing and policy
    ResourceType("networking.istio.io", "VirtualService"),
    ResourceType("networking.istio.io", "DestinationRule"),
    ResourceType("networking.istio.io", "Gateway"),
    ResourceType("networking.istio.io", "ServiceEntry"),
    ResourceType("networking.istio.io", "Sidecar"),
    ResourceType("networking.istio.io", "WorkloadEntry"),
    ResourceType("networking.istio.io", "WorkloadGroup"),
    ResourceType("networking.istio.io", "EnvoyFilter"),
    ResourceType("security.istio.io", "AuthorizationPolicy"),
    ResourceType("security.istio.io", "PeerAuthentication"),
    ResourceType("security.istio.io", "RequestAuthentication"),
    ResourceType("telemetry.istio.io", "Telemetry"),
)


class TeardownEngine:
    """Deletes single resources with the patient -> force -> short-wait escalation.

    The engine is stateless across runs: every decision is taken from the live
    cluster. ``cancel_event`` is shared with the plan runner; once set, no new
    deletion (including a force escalation) is issued.
    """

    def __init__(
        self,
        k8s: K8sClient,
        settings: Settings,
        cancel_event: threading.Event | None = None,
    ):
        self.k8s = k8s
        self.settings = settings
        self.cancel_event = cancel_event or threading.Event()
        self._sweep_types: list[ResourceType] | None = None
        self._sweep_lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def timeout_for(self, resource: ManagedResource) -> float:
        if resource.kind == ResourceKind.NAMESPACE:
            return self.settings.namespace_timeout
        if resource.kind == ResourceKind.CRD:
            return self.settings.crd_timeout
        if resource.kind == ResourceKind.CLUSTER_OBJECT:
            return self.settings.cluster_object_timeout
        return self.settings.application_timeout

    def execute(self, resource: ManagedResource) -> DeletionOutcome:
        """Tear down one plan entry using the procedure for its kind."""
        if resource.kind == ResourceKind.NAMESPACE:
            return self.teardown_namespace(resource)
        if resource.kind == ResourceKind.CRD:
            return self.teardown_crd(resource)
        return self.delete_resource(resource)

    # Building blocks

    def exists(self, resource: ManagedResource) -> bool | None:
        """True/False, or None when the API could not tell."""
        try:
            return self.k8s.get(resource.resource_type, resource.name, resource.namespace) is not None
        except ClusterAPIError as e:
            logger.warning("Could not check whether %s exists: %s", resource, e)
            return None

    def clear_finalizers(self, resource: ManagedResource) -> bool:
        """Strip all finalizers. Returns True if the object was patched."""
        try:
            patched = self.k8s.remove_finalizers(resource.resource_type, resource.name, resource.namespace)
        except ClusterAPIError as e:
            logger.warning("Could not remove finalizers from %s: %s", resource, e)
            return False
        if patched:
            logger.debug("Removed finalizers from %s", resource)
        return patched

    def describe(self, resource: ManagedResource) -> dict[str, Any] | None:
        """Summarize the live object for diagnostics. None if it is gone."""
        try:
            obj = self.k8s.get(resource.resource_type, resource.name, resource.namespace)
        except ClusterAPIError as e:
            return {"error": str(e)}
        if obj is None:
            return None
        metadata = obj.get("metadata", {}) or {}
        status = obj.get("status", {}) or {}
        state: dict[str, Any] = {
            "deletionTimestamp": metadata.get("deletionTimestamp"),
            "finalizers": list(metadata.get("finalizers") or []),
        }
        spec_finalizers = (obj.get("spec", {}) or {}).get("finalizers")
        if spec_finalizers:
            state["specFinalizers"] = list(spec_finalizers)
        if isinstance(status, dict):
            if status.get("phase"):
                state["phase"] = status["phase"]
            conditions = status.get("conditions") or []
            failing = [
                f"{c.get('type')}: {c.get('message') or c.get('reason') or c.get('status')}"
                for c in conditions
                if isinstance(c, dict) and c.get("status") not in ("False", None)
            ]
            if failing:
                state["conditions"] = failing
        return state

    def _wait(self, resource: ManagedResource, timeout: float) -> bool:
        return self.k8s.wait_for_absence(
            resource.resource_type,
            resource.name,
            resource.namespace,
            timeout=timeout,
            poll_interval=self.settings.poll_interval,
        )

    # Patient delete

    def delete_resource(self, resource: ManagedResource, timeout: float | None = None) -> DeletionOutcome:
        """Delete one object, escalating once to a forced delete.

        Absent -> Deleted without any mutating call. Otherwise: clear
        finalizers, delete, wait ``timeout``; on timeout clear finalizers
        again, delete with grace period 0 and wait the secondary timeout.
        Never raises for API errors; they end up in the outcome.
        """
        started = time.monotonic()
        primary = self.timeout_for(resource) if timeout is None else timeout
        secondary = self.settings.secondary_timeout
        rtype = resource.resource_type

        if self.exists(resource) is False:
            logger.info("%s not found. Skipping.", resource)
            return self._outcome(resource, Outcome.DELETED, started, reason="already absent")

        try:
            self.clear_finalizers(resource)
            logger.info("Deleting %s", resource)
            if not self.k8s.delete(rtype, resource.name, resource.namespace):
                logger.info("%s was already gone", resource)
                return self._outcome(resource, Outcome.NOT_FOUND, started)

            if self._wait(resource, primary):
                logger.info("%s deleted", resource)
                return self._outcome(resource, Outcome.DELETED, started)

            if self.cancelled:
                logger.warning("%s did not delete within %ss; run cancelled, not forcing", resource, f"{primary:g}")
                return self._outcome(
                    resource, Outcome.TIMED_OUT, started,
                    reason=f"still present after {primary:g}s, escalation skipped (cancelled)",
                    last_state=self.describe(resource),
                )

            logger.warning(
                "%s did not delete within %ss. Removing finalizers again and forcing deletion.",
                resource, f"{primary:g}",
            )
            self.clear_finalizers(resource)
            self.k8s.delete(rtype, resource.name, resource.namespace, force=True)
            if self._wait(resource, secondary):
                logger.info("%s deleted after removing finalizers", resource)
                return self._outcome(resource, Outcome.DELETED, started, escalated=True)

            state = self.describe(resource)
            logger.error("%s still exists after cleanup attempts. Last state: %s", resource, state)
            return self._outcome(
                resource, Outcome.FAILED, started,
                reason=f"still present after {primary:g}s + forced {secondary:g}s",
                escalated=True,
                last_state=state,
            )
        except ClusterAPIError as e:
            state = self.describe(resource)
            logger.error("Failed to delete %s: %s. Last state: %s", resource, e, state)
            return self._outcome(resource, Outcome.FAILED, started, reason=str(e), last_state=state)

    @staticmethod
    def _outcome(
        resource: ManagedResource,
        status: Outcome,
        started: float,
        **details: Any,
    ) -> DeletionOutcome:
        return DeletionOutcome(resource=resource, status=status, elapsed=time.monotonic() - started, **details)

    # Namespaces

    def sweep_types(self) -> list[ResourceType]:
        """Allow-listed kinds served by this cluster, then every other namespaced kind."""
        with self._sweep_lock:
            if self._sweep_types is not None:
                return self._sweep_types
            types: list[ResourceType] = []
            seen: set[tuple[str, str]] = set()
            for rtype in NAMESPACE_SWEEP_TYPES:
                try:
                    resolved = self.k8s.resolve(rtype)
                except ClusterAPIError as e:
                    logger.debug("Could not resolve %s: %s", rtype, e)
                    continue
                if resolved is not None and resolved.namespaced and resolved.key not in seen:
                    types.append(resolved)
                    seen.add(resolved.key)
            try:
                discovered = self.k8s.namespaced_resource_types()
            except ClusterAPIError as e:
                logger.warning("Namespaced API discovery failed, sweeping the fixed kinds only: %s", e)
                discovered = []
            for rtype in discovered:
                if rtype.key in seen:
                    continue
                types.append(rtype)
                seen.add(rtype.key)
            self._sweep_types = types
            return types

    def namespace_inventory(self, namespace: str) -> dict[str, int]:
        """Count objects per kind inside ``namespace`` (kinds with zero items omitted)."""
        counts: dict[str, int] = {}
        for rtype in self.sweep_types():
            try:
                items = self.k8s.list(rtype, namespace=namespace)
            except ClusterAPIError as e:
                logger.debug("Could not list %s in %s: %s", rtype, namespace, e)
                continue
            if items:
                counts[str(rtype)] = len(items)
        return counts

    def sweep_namespace(self, namespace: str) -> int:
        """Delete every object of every sweep kind in ``namespace``.

        Best effort: failures are logged and the sweep moves on. Returns the
        number of kinds for which deletions were issued.
        """
        logger.info("Deleting all resources in namespace %s", namespace)
        swept = 0
        for rtype in self.sweep_types():
            if self.cancelled:
                logger.warning("Run cancelled, stopping sweep of namespace %s", namespace)
                break
            try:
                items = self.k8s.list(rtype, namespace=namespace)
                if not items:
                    continue
                logger.info("Deleting %d %s in namespace %s", len(items), rtype, namespace)
                self.k8s.delete_collection(rtype, namespace=namespace)
                swept += 1
            except ClusterAPIError as e:
                logger.warning("Failed to delete some %s resources in %s, continuing: %s", rtype, namespace, e)
        return swept

    def teardown_namespace(self, resource: ManagedResource) -> DeletionOutcome:
        """Sweep the namespace contents, then delete it with the namespace budget."""
        started = time.monotonic()
        if self.exists(resource) is False:
            logger.info("Namespace %s not found. Skipping.", resource.name)
            return self._outcome(resource, Outcome.DELETED, started, reason="already absent")

        logger.info("Processing namespace %s", resource.name)
        swept = self.sweep_namespace(resource.name)
        outcome = self.delete_resource(resource, timeout=self.settings.namespace_timeout)
        outcome.swept_kinds = swept
        outcome.elapsed = time.monotonic() - started
        if not outcome.is_success:
            logger.error(
                "Inspect stuck resources manually: kubectl get all -n %s; "
                "kubectl api-resources --verbs=list --namespaced -o name "
                "| xargs -n 1 kubectl get --show-kind --ignore-not-found -n %s",
                resource.name, resource.name,
            )
        return outcome

    # CRDs

    def discover_crds(
        self,
        patterns: Iterable[str] | None = None,
        labels: Iterable[str] | None = None,
    ) -> set[str]:
        """Names of CRDs matching any ownership pattern or carrying any management label."""
        compiled = [re.compile(p) for p in (self.settings.crd_patterns if patterns is None else patterns)]
        selectors = self.settings.crd_labels if labels is None else tuple(labels)

        names: set[str] = set()
        for crd in self.k8s.list_crds():
            name = (crd.get("metadata", {}) or {}).get("name", "")
            if name and any(p.search(name) for p in compiled):
                names.add(name)
        for selector in selectors:
            for crd in self.k8s.list_crds(label_selector=selector):
                name = (crd.get("metadata", {}) or {}).get("name", "")
                if name:
                    names.add(name)
        return names

    def _instance_type(self, info: CrdInfo) -> ResourceType | None:
        rtype = ResourceType(info.group, info.kind, info.version, info.namespaced)
        resolved = self.k8s.resolve(rtype)
        if resolved is None:
            # CRD may be newer than the discovery cache
            self.k8s.invalidate(rtype)
            resolved = self.k8s.resolve(rtype)
        return resolved

    def _list_instances(self, itype: ResourceType) -> list[tuple[str, str]]:
        instances = []
        for item in self.k8s.list(itype):
            meta = item.get("metadata", {}) or {}
            instances.append((meta.get("namespace", "") or "", meta.get("name", "")))
        return instances

    def crd_info(self, name: str, with_instances: bool = True) -> CrdInfo | None:
        crd = self.k8s.get(CRD_TYPE, name)
        if crd is None:
            return None
        info = CrdInfo.from_dict(crd)
        if with_instances and info.kind:
            itype = self._instance_type(info)
            if itype is None:
                logger.warning("%s is not served by the API server; assuming no instances", name)
            else:
                info.instances.extend(self._list_instances(itype))
        return info

    def delete_crd_instances(self, info: CrdInfo) -> int:
        """Delete all instances of ``info``, wait for them, then force the stragglers.

        A failure in one namespace does not stop the others. Stragglers get
        their finalizers stripped and a forced delete, which also covers
        objects whose first delete was rejected.
        """
        if not info.instances:
            return 0
        itype = self._instance_type(info)
        if itype is None:
            return 0

        logger.info("Deleting %d custom resources of type %s", info.instance_count, info.name)
        deleted = 0
        scopes = sorted({ns for ns, _ in info.instances}) if info.namespaced else [None]
        for namespace in scopes:
            try:
                deleted += self.k8s.delete_collection(itype, namespace=namespace)
            except ClusterAPIError as e:
                logger.warning(
                    "Failed to delete some resources of type %s in %s: %s",
                    info.name, namespace or "cluster scope", e,
                )

        deadline = time.monotonic() + self.settings.instance_timeout
        for namespace, name in info.instances:
            remaining = max(deadline - time.monotonic(), 0.0)
            if self.k8s.wait_for_absence(itype, name, namespace, timeout=remaining,
                                         poll_interval=self.settings.poll_interval):
                continue
            if self.cancelled:
                break
            logger.warning("%s %s/%s is stuck, removing its finalizers", info.kind, namespace or "-", name)
            try:
                self.k8s.remove_finalizers(itype, name, namespace)
                self.k8s.delete(itype, name, namespace, force=True)
            except ClusterAPIError as e:
                logger.warning("Could not force deletion of %s %s: %s", info.kind, name, e)
        return deleted

    def remaining_instances(self, info: CrdInfo, timeout: float = 0.0) -> list[tuple[str, str]]:
        """Instances of ``info`` still listed once ``timeout`` has passed (or none are left)."""
        itype = self._instance_type(info)
        if itype is None:
            return []
        deadline = time.monotonic() + timeout
        while True:
            survivors = self._list_instances(itype)
            remaining = deadline - time.monotonic()
            if not survivors or remaining <= 0 or self.cancelled:
                return survivors
            time.sleep(min(self.settings.poll_interval, remaining))

    def teardown_crd(self, resource: ManagedResource) -> DeletionOutcome:
        """Delete all instances of a CRD, then the definition itself."""
        started = time.monotonic()
        try:
            info = self.crd_info(resource.name)
        except ClusterAPIError as e:
            logger.error("Could not inspect CRD %s: %s", resource.name, e)
            return self._outcome(resource, Outcome.FAILED, started, reason=str(e))
        if info is None:
            logger.info("CRD %s not found. Skipping.", resource.name)
            return self._outcome(resource, Outcome.DELETED, started, reason="already absent")

        logger.info("Deleting CRD: %s", resource.name)
        instances_deleted = 0
        if info.instances:
            if self.cancelled:
                return self._outcome(
                    resource, Outcome.TIMED_OUT, started,
                    reason=f"{info.instance_count} instance(s) left, run cancelled",
                )
            try:
                instances_deleted = self.delete_crd_instances(info)
                survivors = self.remaining_instances(info, timeout=self.settings.secondary_timeout)
            except ClusterAPIError as e:
                logger.error("Could not clean up instances of %s, keeping the CRD: %s", resource.name, e)
                return self._outcome(
                    resource, Outcome.FAILED, started,
                    reason=f"instance cleanup failed: {e}",
                    instances_deleted=instances_deleted,
                )
            if survivors:
                listed = ", ".join(f"{ns}/{name}" if ns else name for ns, name in survivors)
                logger.error(
                    "%d instance(s) of %s still exist, keeping the CRD: %s",
                    len(survivors), resource.name, listed,
                )
                return self._outcome(
                    resource, Outcome.TIMED_OUT if self.cancelled else Outcome.FAILED, started,
                    reason=f"{len(survivors)} instance(s) still exist: {listed}",
                    instances_deleted=instances_deleted,
                )

        outcome = self.delete_resource(resource, timeout=self.settings.crd_timeout)
        outcome.instances_deleted = instances_deleted
        outcome.elapsed = time.monotonic() - started
        return outcome

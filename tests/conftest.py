"""Shared fixtures: an in-memory cluster that honours finalizers."""

from __future__ import annotations

import copy
import threading
from dataclasses import replace

import pytest

from gitops_teardown.config.settings import Settings, _ENV_OVERRIDES
from gitops_teardown.core.errors import ClusterAPIError, ClusterConnectionError
from gitops_teardown.core.teardown_engine import NAMESPACE_SWEEP_TYPES, TeardownEngine
from gitops_teardown.models import (
    API_SERVICE_TYPE,
    APPLICATION_TYPE,
    CLUSTER_ROLE_BINDING_TYPE,
    CLUSTER_ROLE_TYPE,
    CRD_TYPE,
    MUTATING_WEBHOOK_TYPE,
    NAMESPACE_TYPE,
    VALIDATING_WEBHOOK_TYPE,
    ResourceType,
)


def _matches(obj: dict, selector: str) -> bool:
    labels = obj["metadata"].get("labels") or {}
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key.strip()) != value.strip():
            return False
    return True


class FakeCluster:
    """Stand-in for K8sClient backed by a dict.

    Deleting an object that still has finalizers only marks it; it disappears
    once its finalizers are cleared. ``sticky[key] = n`` makes the next ``n``
    finalizer removals ineffective, like a controller re-adding them. Waits
    return immediately with the current state and are recorded in ``waits``.
    """

    active_context_name = "fake-context"

    def __init__(self):
        self.objects: dict[tuple[str, str, str, str], dict] = {}
        self.served: dict[tuple[str, str], ResourceType] = {}
        self.discovered: list[ResourceType] = []
        self.sticky: dict[tuple[str, str, str, str], int] = {}
        # (operation, name or kind) -> exception to raise
        self.errors: dict[tuple[str, str], Exception] = {}
        self.connection_error: ClusterConnectionError | None = None
        self.calls: list[tuple[str, str, str, str]] = []
        self.waits: list[tuple[str, str, float]] = []
        self._lock = threading.RLock()
        for rtype in (
            APPLICATION_TYPE, NAMESPACE_TYPE, CRD_TYPE, MUTATING_WEBHOOK_TYPE, VALIDATING_WEBHOOK_TYPE,
            CLUSTER_ROLE_TYPE, CLUSTER_ROLE_BINDING_TYPE, API_SERVICE_TYPE, *NAMESPACE_SWEEP_TYPES,
        ):
            self.serve(rtype)

    # Test setup helpers

    @staticmethod
    def key(rtype: ResourceType, name: str, namespace: str = "") -> tuple[str, str, str, str]:
        return (rtype.group, rtype.kind, namespace or "", name)

    def serve(self, rtype: ResourceType) -> ResourceType:
        if rtype.key not in self.served:
            self.served[rtype.key] = replace(rtype, version=rtype.version or "v1")
        return self.served[rtype.key]

    def add(
        self,
        rtype: ResourceType,
        name: str,
        namespace: str = "",
        labels: dict[str, str] | None = None,
        finalizers: list[str] | None = None,
        sticky: int = 0,
        **fields,
    ) -> dict:
        rtype = self.serve(rtype)
        obj = {
            "apiVersion": rtype.api_version,
            "kind": rtype.kind,
            "metadata": {
                "name": name,
                "labels": dict(labels or {}),
                "finalizers": list(finalizers or []),
                "creationTimestamp": "2024-05-01T10:00:00Z",
            },
        }
        if namespace:
            obj["metadata"]["namespace"] = namespace
        obj.update(fields)
        key = self.key(rtype, name, namespace)
        self.objects[key] = obj
        if sticky:
            self.sticky[key] = sticky
        return obj

    def add_crd(
        self,
        group: str,
        kind: str,
        plural: str,
        scope: str = "Namespaced",
        labels: dict[str, str] | None = None,
    ) -> tuple[str, ResourceType]:
        name = f"{plural}.{group}"
        self.add(
            CRD_TYPE,
            name,
            labels=labels,
            spec={
                "group": group,
                "names": {"kind": kind, "plural": plural},
                "scope": scope,
                "versions": [
                    {"name": "v1beta1", "served": True, "storage": False},
                    {"name": "v1", "served": True, "storage": True},
                ],
            },
        )
        itype = ResourceType(group, kind, "v1", namespaced=scope == "Namespaced")
        self.served[itype.key] = itype
        return name, itype

    def exists(self, rtype: ResourceType, name: str, namespace: str = "") -> bool:
        return self.key(rtype, name, namespace) in self.objects

    def calls_of(self, op: str) -> list[tuple[str, str, str, str]]:
        return [c for c in self.calls if c[0] == op]

    def _maybe_fail(self, op: str, target: str) -> None:
        exc = self.errors.get((op, target))
        if exc is not None:
            raise exc

    def _remove(self, key: tuple[str, str, str, str]) -> None:
        del self.objects[key]
        if key[:2] == NAMESPACE_TYPE.key:
            for other in [k for k in self.objects if k[2] == key[3]]:
                del self.objects[other]

    # K8sClient surface

    def check_connection(self) -> str:
        if self.connection_error is not None:
            raise self.connection_error
        return "v1.29.2"

    def resolve(self, rtype: ResourceType) -> ResourceType | None:
        return self.served.get(rtype.key)

    def invalidate(self, rtype: ResourceType) -> None:
        self.calls.append(("invalidate", rtype.kind, "", ""))

    def namespaced_resource_types(self) -> list[ResourceType]:
        return list(self.discovered)

    def list_crds(self, label_selector: str | None = None) -> list[dict]:
        return self.list(CRD_TYPE, label_selector=label_selector)

    def get(self, rtype: ResourceType, name: str, namespace: str = "") -> dict | None:
        with self._lock:
            self._maybe_fail("get", name)
            obj = self.objects.get(self.key(rtype, name, namespace))
            return copy.deepcopy(obj) if obj is not None else None

    def list(
        self,
        rtype: ResourceType,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> list[dict]:
        with self._lock:
            self._maybe_fail("list", rtype.kind)
            items = []
            for (group, kind, ns, _), obj in sorted(self.objects.items(), key=lambda kv: kv[0]):
                if (group, kind) != rtype.key:
                    continue
                if namespace and ns != namespace:
                    continue
                if label_selector and not _matches(obj, label_selector):
                    continue
                items.append(copy.deepcopy(obj))
            return items

    def remove_finalizers(self, rtype: ResourceType, name: str, namespace: str = "") -> bool:
        with self._lock:
            self.calls.append(("patch", rtype.kind, namespace or "", name))
            self._maybe_fail("patch", name)
            key = self.key(rtype, name, namespace)
            obj = self.objects.get(key)
            if obj is None:
                return False
            if self.sticky.get(key, 0) > 0:
                self.sticky[key] -= 1
                return True
            obj["metadata"]["finalizers"] = []
            if obj["metadata"].get("deletionTimestamp"):
                self._remove(key)
            return True

    def delete(self, rtype: ResourceType, name: str, namespace: str = "", force: bool = False) -> bool:
        with self._lock:
            self.calls.append(("force-delete" if force else "delete", rtype.kind, namespace or "", name))
            self._maybe_fail("delete", name)
            key = self.key(rtype, name, namespace)
            obj = self.objects.get(key)
            if obj is None:
                return False
            if obj["metadata"].get("finalizers"):
                obj["metadata"]["deletionTimestamp"] = "2024-05-01T12:00:00Z"
            else:
                self._remove(key)
            return True

    def delete_collection(
        self,
        rtype: ResourceType,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> int:
        with self._lock:
            self.calls.append(("delete-collection", rtype.kind, namespace or "", ""))
            deleted = 0
            failures = []
            for item in self.list(rtype, namespace=namespace, label_selector=label_selector):
                meta = item["metadata"]
                try:
                    if self.delete(rtype, meta["name"], meta.get("namespace", "")):
                        deleted += 1
                except ClusterAPIError as e:
                    failures.append(e)
            if failures:
                raise ClusterAPIError("; ".join(str(e) for e in failures), status=failures[0].status)
            return deleted

    def wait_for_absence(
        self,
        rtype: ResourceType,
        name: str,
        namespace: str = "",
        timeout: float = 60.0,
        poll_interval: float = 2.0,
    ) -> bool:
        with self._lock:
            self.waits.append((rtype.kind, name, timeout))
            return self.key(rtype, name, namespace) not in self.objects


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    """Keep the caller's shell from leaking into Settings.load()."""
    for var in _ENV_OVERRIDES:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def settings() -> Settings:
    return Settings(settle_seconds=0, poll_interval=0.01).validate()


@pytest.fixture
def engine(cluster, settings) -> TeardownEngine:
    return TeardownEngine(cluster, settings)

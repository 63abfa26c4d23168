"""Kubernetes API wrapper."""

from __future__ import annotations

import logging
import time
from typing import Any

import urllib3
from kubernetes import client, config
from kubernetes.client import ApiException
from kubernetes.dynamic import DynamicClient
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from gitops_teardown.core.errors import ClusterAPIError, ClusterConnectionError, TransientAPIError
from gitops_teardown.models import CRD_TYPE, ResourceType

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES: frozenset[int] = frozenset({429, 500, 502, 503, 504})

# Noisy and irrelevant to teardown
EVENT_RESOURCES: frozenset[tuple[str, str]] = frozenset({
    ("", "events"),
    ("events.k8s.io", "events"),
})

_retry_transient = retry(
    retry=retry_if_exception_type(TransientAPIError),
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
    reraise=True,
)


def translate_api_error(exc: Exception, action: str) -> ClusterAPIError:
    """Map a Kubernetes SDK / transport exception onto the error taxonomy."""
    if isinstance(exc, ApiException):
        message = f"{action}: HTTP {exc.status} {exc.reason or ''}".rstrip()
        if exc.status in TRANSIENT_STATUSES:
            return TransientAPIError(message, status=exc.status)
        return ClusterAPIError(message, status=exc.status)
    return TransientAPIError(f"{action}: {exc}")


class K8sClient:
    """Structured resource API over the Kubernetes dynamic client.

    Every operation is addressed by ``ResourceType`` + name/namespace (or a
    label selector). Not-found is never an error here: ``get`` returns None
    and the mutating calls report whether anything was there.
    """

    def __init__(self, context: str | None = None, request_timeout: float = 30.0):
        self.context = context
        self.request_timeout = request_timeout
        self._api_client: client.ApiClient | None = None
        self._dynamic: DynamicClient | None = None
        self._resolved: dict[tuple[str, str, str], Any] = {}

    def _load_config(self) -> client.ApiClient:
        if self._api_client is not None:
            return self._api_client
        try:
            cfg = client.Configuration()
            config.load_kube_config(
                context=self.context,
                client_configuration=cfg,
            )
            # Transient errors are retried by us, not by urllib3
            cfg.retries = 1
            if not cfg.connection_pool_maxsize:
                cfg.connection_pool_maxsize = 8
            self._api_client = client.ApiClient(configuration=cfg)
        except config.ConfigException:
            try:
                config.load_incluster_config()
            except config.ConfigException as e:
                raise ClusterConnectionError(f"No usable kubeconfig or in-cluster config: {e}") from e
            self._api_client = client.ApiClient()
        return self._api_client

    @property
    def dynamic(self) -> DynamicClient:
        if self._dynamic is None:
            try:
                self._dynamic = DynamicClient(self._load_config())
            except (ApiException, urllib3.exceptions.HTTPError) as e:
                raise ClusterConnectionError(f"Cannot reach the Kubernetes API server: {e}") from e
        return self._dynamic

    @property
    def active_context_name(self) -> str:
        if self.context:
            return self.context
        try:
            _, ctx = config.list_kube_config_contexts()
            return ctx.get("name", "unknown") if ctx else "unknown"
        except (config.ConfigException, OSError):
            return "in-cluster"

    def check_connection(self) -> str:
        """Return the server version, or raise ClusterConnectionError."""
        try:
            info = client.VersionApi(api_client=self._load_config()).get_code(
                _request_timeout=self.request_timeout,
            )
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise ClusterConnectionError(f"Cannot connect to Kubernetes cluster: {e}") from e
        return info.git_version

    # Discovery

    def _resource(self, rtype: ResourceType) -> Any | None:
        key = (rtype.group, rtype.kind, rtype.version)
        if key in self._resolved:
            return self._resolved[key]
        candidates = self.dynamic.resources.search(group=rtype.group, kind=rtype.kind)
        candidates = [c for c in candidates if c.kind == rtype.kind and "/" not in c.name]
        if rtype.version:
            candidates = [c for c in candidates if c.api_version == rtype.version]
        found = None
        if candidates:
            preferred = [c for c in candidates if getattr(c, "preferred", False)]
            found = (preferred or candidates)[0]
        self._resolved[key] = found
        return found

    def resolve(self, rtype: ResourceType) -> ResourceType | None:
        """Return ``rtype`` with the served version filled in, or None if not served."""
        res = self._resource(rtype)
        if res is None:
            return None
        return ResourceType(res.group, res.kind, res.api_version, bool(res.namespaced))

    def invalidate(self, rtype: ResourceType) -> None:
        """Forget the cached resolution, e.g. after the type's CRD was registered."""
        for key in [k for k in self._resolved if k[:2] == rtype.key]:
            del self._resolved[key]
        self.dynamic.resources.invalidate_cache()

    def namespaced_resource_types(self) -> list[ResourceType]:
        """Namespaced kinds that support list + deletecollection, events excluded."""
        by_key: dict[tuple[str, str], Any] = {}
        for res in self.dynamic.resources.search(namespaced=True):
            name = getattr(res, "name", "") or ""
            if not name or "/" in name or res.kind.endswith("List"):
                continue
            if (res.group, name) in EVENT_RESOURCES:
                continue
            verbs = set(getattr(res, "verbs", None) or [])
            if not {"list", "deletecollection"} <= verbs:
                continue
            current = by_key.get((res.group, res.kind))
            if current is None or (getattr(res, "preferred", False) and not getattr(current, "preferred", False)):
                by_key[(res.group, res.kind)] = res
        return sorted(
            (ResourceType(r.group, r.kind, r.api_version, True) for r in by_key.values()),
            key=lambda t: (t.group, t.kind),
        )

    def list_crds(self, label_selector: str | None = None) -> list[dict]:
        return self.list(CRD_TYPE, label_selector=label_selector)

    # Structured resource API

    @_retry_transient
    def get(self, rtype: ResourceType, name: str, namespace: str = "") -> dict | None:
        res = self._resource(rtype)
        if res is None:
            return None
        try:
            obj = self.dynamic.get(res, name=name, namespace=namespace or None,
                                   _request_timeout=self.request_timeout)
        except ApiException as e:
            if e.status == 404:
                return None
            raise translate_api_error(e, f"get {rtype} {name}") from e
        except urllib3.exceptions.HTTPError as e:
            raise translate_api_error(e, f"get {rtype} {name}") from e
        return obj.to_dict()

    @_retry_transient
    def list(
        self,
        rtype: ResourceType,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> list[dict]:
        res = self._resource(rtype)
        if res is None:
            return []
        try:
            result = self.dynamic.get(
                res,
                namespace=namespace or None,
                label_selector=label_selector or None,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return []
            raise translate_api_error(e, f"list {rtype}") from e
        except urllib3.exceptions.HTTPError as e:
            raise translate_api_error(e, f"list {rtype}") from e
        return result.to_dict().get("items", []) or []

    @_retry_transient
    def remove_finalizers(self, rtype: ResourceType, name: str, namespace: str = "") -> bool:
        """Set metadata.finalizers to an empty list. Returns False if the object is gone."""
        res = self._resource(rtype)
        if res is None:
            return False
        try:
            self.dynamic.patch(
                res,
                body={"metadata": {"finalizers": []}},
                name=name,
                namespace=namespace or None,
                content_type="application/merge-patch+json",
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise translate_api_error(e, f"patch {rtype} {name}") from e
        except urllib3.exceptions.HTTPError as e:
            raise translate_api_error(e, f"patch {rtype} {name}") from e
        return True

    @_retry_transient
    def delete(self, rtype: ResourceType, name: str, namespace: str = "", force: bool = False) -> bool:
        """Request deletion. Returns False if the object was already gone."""
        res = self._resource(rtype)
        if res is None:
            return False
        body: dict[str, Any] = {"apiVersion": "v1", "kind": "DeleteOptions", "propagationPolicy": "Background"}
        if force:
            body["gracePeriodSeconds"] = 0
        try:
            self.dynamic.delete(
                res,
                name=name,
                namespace=namespace or None,
                body=body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return False
            # 409: deletion already in progress
            if e.status == 409:
                return True
            raise translate_api_error(e, f"delete {rtype} {name}") from e
        except urllib3.exceptions.HTTPError as e:
            raise translate_api_error(e, f"delete {rtype} {name}") from e
        return True

    def delete_collection(
        self,
        rtype: ResourceType,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> int:
        """Delete every object of ``rtype`` in scope, the way ``kubectl delete --all`` does.

        Every listed object gets its own delete call even when earlier ones
        fail; the failures are raised together afterwards. Returns the number
        of deletions issued.
        """
        items = self.list(rtype, namespace=namespace, label_selector=label_selector)
        deleted = 0
        failures: list[ClusterAPIError] = []
        for item in items:
            meta = item.get("metadata", {}) or {}
            try:
                if self.delete(rtype, meta.get("name", ""), meta.get("namespace", "") or ""):
                    deleted += 1
            except ClusterAPIError as e:
                logger.debug("Delete failed, continuing with the rest of %s: %s", rtype, e)
                failures.append(e)
        if failures:
            raise ClusterAPIError(
                f"delete {rtype}: {len(failures)} of {len(items)} deletions failed "
                f"({deleted} issued): " + "; ".join(str(e) for e in failures),
                status=failures[0].status,
            )
        return deleted

    def wait_for_absence(
        self,
        rtype: ResourceType,
        name: str,
        namespace: str = "",
        timeout: float = 60.0,
        poll_interval: float = 2.0,
    ) -> bool:
        """Poll until the object is gone. Returns False when ``timeout`` elapses first."""
        deadline = time.monotonic() + timeout
        while True:
            try:
                if self.get(rtype, name, namespace) is None:
                    return True
            except TransientAPIError as e:
                logger.debug("Transient error while waiting for %s %s: %s", rtype, name, e)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(poll_interval, remaining))


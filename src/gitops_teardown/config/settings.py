"""Application configuration and defaults."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from gitops_teardown.core.errors import InvalidConfigError

# RFC 1123 label / subdomain, as enforced by the API server for object names
_DNS_LABEL = re.compile(r"^(?=.{1,63}$)[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_DNS_SUBDOMAIN = re.compile(r"^(?=.{1,253}$)[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
# RBAC object names may also contain ':' (e.g. cert-manager-webhook:subjectaccessreviews)
_RBAC_NAME = re.compile(r"^[A-Za-z0-9]([-A-Za-z0-9_.:]*[A-Za-z0-9])?$")


DEFAULT_APPLICATIONS: tuple[tuple[str, ...], ...] = (
    # Bootstrap applications of older installs
    (
        "oda-canvas-root",
        "oda-canvas-bootstrap",
        "oda-canvas-certificates",
        "oda-canvas-prerequisites",
        "oda-canvas-components",
    ),
    ("canvas-oda", "canvas-webhook-certificate", "secretsmanagement-operator"),
    ("canvas-kong", "canvas-vault"),
    # Istio, reverse install order
    ("istio-ingress",),
    ("istiod",),
    ("istio-base",),
    ("cert-manager-cluster-issuer",),
    ("cert-manager",),
    ("gateway-api-crds",),
)

DEFAULT_NAMESPACES: tuple[str, ...] = (
    "canvas",
    "components",
    "canvas-vault",
    "kong",
    "cert-manager",
    "istio-system",
    "istio-ingress",
    "gateway-system",
)

DEFAULT_CRD_PATTERNS: tuple[str, ...] = (
    r".*\.oda\.tmforum\.org",
    r".*\.cert-manager\.io",
    r".*\.acme\.cert-manager\.io",
    r".*\.networking\.istio\.io",
    r".*\.security\.istio\.io",
    r".*\.config\.istio\.io",
    r".*\.authentication\.istio\.io",
    r".*\.rbac\.istio\.io",
    r".*\.telemetry\.istio\.io",
    r".*\.extensions\.istio\.io",
    r".*\.gateway\.networking\.k8s\.io",
    r".*\.configuration\.konghq\.com",
    r".*\.apisix\.apache\.org",
    r".*\.vault\.hashicorp\.com",
    r".*\.secrets\.hashicorp\.com",
)

DEFAULT_CRD_LABELS: tuple[str, ...] = ("app.kubernetes.io/managed-by=Helm",)

DEFAULT_WEBHOOK_NAMES: tuple[str, ...] = (
    "istio-sidecar-injector",
    "istio-validator-istio-system",
    "istiod-default-validator",
    "istio-revision-tag-default",
    "cert-manager-webhook",
    "canvas-webhook",
    "oda-webhook",
)

# Same names are used for both ClusterRoles and ClusterRoleBindings
DEFAULT_RBAC_NAMES: tuple[str, ...] = (
    "istio-reader-clusterrole-istio-system",
    "istiod-clusterrole-istio-system",
    "istiod-gateway-controller-istio-system",
    "istio-sidecar-injector-istio-system",
    "cert-manager-cainjector",
    "cert-manager-controller-issuers",
    "cert-manager-controller-clusterissuers",
    "cert-manager-controller-certificates",
    "cert-manager-controller-orders",
    "cert-manager-controller-challenges",
    "cert-manager-controller-ingress-shim",
    "cert-manager-controller-approve:cert-manager-io",
    "cert-manager-controller-certificatesigningrequests",
    "cert-manager-webhook:subjectaccessreviews",
    "kong-kong",
)

DEFAULT_CLUSTER_OBJECT_LABELS: tuple[str, ...] = (
    "app.kubernetes.io/managed-by=Helm",
    "app.kubernetes.io/part-of=istio",
    "app.kubernetes.io/name=cert-manager",
)

DEFAULT_APISERVICE_LABELS: tuple[str, ...] = (
    "app.kubernetes.io/name=cert-manager",
    "app.kubernetes.io/part-of=istio",
)

_TUPLE_FIELDS = frozenset({
    "managed_namespaces", "crd_patterns", "crd_labels", "webhook_names",
    "cluster_role_names", "cluster_role_binding_names",
    "cluster_object_labels", "apiservice_labels",
})

# Environment variable -> (setting, type)
_ENV_OVERRIDES: dict[str, tuple[str, type]] = {
    "NAMESPACE": ("argocd_namespace", str),
    "ARGOCD_NAMESPACE": ("argocd_namespace", str),
    "DELETE_TIMEOUT_SECONDS": ("application_timeout", float),
    "NAMESPACE_DELETE_TIMEOUT": ("namespace_timeout", float),
    "SECONDARY_TIMEOUT": ("secondary_timeout", float),
    "TEARDOWN_MAX_WORKERS": ("max_workers", int),
}


@dataclass(frozen=True)
class Settings:
    argocd_namespace: str = "argocd"
    applications: tuple[tuple[str, ...], ...] = DEFAULT_APPLICATIONS
    managed_namespaces: tuple[str, ...] = DEFAULT_NAMESPACES
    crd_patterns: tuple[str, ...] = DEFAULT_CRD_PATTERNS
    crd_labels: tuple[str, ...] = DEFAULT_CRD_LABELS
    webhook_names: tuple[str, ...] = DEFAULT_WEBHOOK_NAMES
    cluster_role_names: tuple[str, ...] = DEFAULT_RBAC_NAMES
    cluster_role_binding_names: tuple[str, ...] = DEFAULT_RBAC_NAMES
    cluster_object_labels: tuple[str, ...] = DEFAULT_CLUSTER_OBJECT_LABELS
    apiservice_labels: tuple[str, ...] = DEFAULT_APISERVICE_LABELS

    application_timeout: float = 120.0
    namespace_timeout: float = 300.0
    cluster_object_timeout: float = 120.0
    crd_timeout: float = 120.0
    secondary_timeout: float = 30.0
    instance_timeout: float = 60.0
    poll_interval: float = 2.0
    settle_seconds: float = 10.0
    deadline_seconds: float | None = None
    max_workers: int = 4
    request_timeout: float = 30.0

    def with_overrides(self, **overrides: Any) -> Settings:
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(values) - {f.name for f in fields(self)}
        if unknown:
            raise InvalidConfigError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        for key in list(values):
            if key in _TUPLE_FIELDS:
                raw = values[key]
                values[key] = (raw,) if isinstance(raw, str) else tuple(raw)
            elif key == "applications":
                values[key] = _normalize_applications(values[key])
        return replace(self, **values)

    @classmethod
    def load(cls, path: Path | None = None, environ: dict[str, str] | None = None) -> Settings:
        """Defaults, then the YAML file (if any), then environment variables."""
        settings = cls()
        if path is not None:
            settings = settings.with_overrides(**_read_yaml(path))
        env = os.environ if environ is None else environ
        env_values: dict[str, Any] = {}
        for var, (name, cast) in _ENV_OVERRIDES.items():
            raw = env.get(var, "")
            if not raw:
                continue
            try:
                env_values[name] = cast(raw)
            except ValueError as e:
                raise InvalidConfigError(f"Invalid value for {var}: {raw!r}") from e
        return settings.with_overrides(**env_values)

    @property
    def primary_timeouts(self) -> dict[str, float]:
        return {
            "application_timeout": self.application_timeout,
            "namespace_timeout": self.namespace_timeout,
            "cluster_object_timeout": self.cluster_object_timeout,
            "crd_timeout": self.crd_timeout,
        }

    def validate(self) -> Settings:
        """Raise InvalidConfigError on anything that would be rejected mid-run."""
        errors: list[str] = []

        if not _DNS_LABEL.match(self.argocd_namespace):
            errors.append(f"invalid ArgoCD namespace {self.argocd_namespace!r}")

        seen_apps: set[str] = set()
        for group in self.applications:
            if not group:
                errors.append("application groups must not be empty")
            for name in group:
                if not _DNS_SUBDOMAIN.match(name):
                    errors.append(f"invalid application name {name!r}")
                if name in seen_apps:
                    errors.append(f"application {name!r} listed twice")
                seen_apps.add(name)

        for name in self.managed_namespaces:
            if not _DNS_LABEL.match(name):
                errors.append(f"invalid namespace name {name!r}")
        if len(set(self.managed_namespaces)) != len(self.managed_namespaces):
            errors.append("managed namespaces contain duplicates")

        for name in self.webhook_names:
            if not _DNS_SUBDOMAIN.match(name):
                errors.append(f"invalid webhook configuration name {name!r}")
        for name in (*self.cluster_role_names, *self.cluster_role_binding_names):
            if not _RBAC_NAME.match(name):
                errors.append(f"invalid RBAC object name {name!r}")

        for pattern in self.crd_patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                errors.append(f"invalid CRD pattern {pattern!r}: {e}")

        for selector in (*self.crd_labels, *self.cluster_object_labels, *self.apiservice_labels):
            if not selector or selector.startswith(("=", ",")):
                errors.append(f"invalid label selector {selector!r}")

        for name, value in self.primary_timeouts.items():
            if value <= 0:
                errors.append(f"{name} must be positive")
            elif self.secondary_timeout >= value:
                errors.append(f"secondary_timeout must be shorter than {name} ({value:g}s)")
        for name in ("secondary_timeout", "instance_timeout", "poll_interval", "request_timeout"):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")
        if self.settle_seconds < 0:
            errors.append("settle_seconds must not be negative")
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            errors.append("deadline_seconds must be positive")
        if self.max_workers < 1:
            errors.append("max_workers must be at least 1")

        if errors:
            raise InvalidConfigError("Invalid configuration: " + "; ".join(errors))
        return self


def _normalize_applications(raw: Any) -> tuple[tuple[str, ...], ...]:
    """Accept ``[[a, b], [c]]`` or ``[a, b, c]`` (one application per rank)."""
    if isinstance(raw, str) or not isinstance(raw, (list, tuple)):
        raise InvalidConfigError("applications must be a list of names or of name lists")
    groups: list[tuple[str, ...]] = []
    for entry in raw:
        if isinstance(entry, str):
            groups.append((entry,))
        elif isinstance(entry, (list, tuple)):
            groups.append(tuple(str(name) for name in entry))
        else:
            raise InvalidConfigError(f"invalid application entry {entry!r}")
    return tuple(groups)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise InvalidConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise InvalidConfigError(f"Config file {path} is not valid YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidConfigError(f"Config file {path} must contain a mapping")
    # Accept kebab-case keys as well
    return {str(k).replace("-", "_"): v for k, v in data.items()}

"""Data models for GitOps Teardown."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class ResourceKind(enum.Enum):
    APPLICATION = "Application"
    NAMESPACE = "Namespace"
    CLUSTER_OBJECT = "ClusterScopedObject"
    CRD = "CRD"


class Outcome(enum.Enum):
    DELETED = "deleted"
    NOT_FOUND = "not-found"
    TIMED_OUT = "timed-out"
    FAILED = "failed"

    @property
    def is_success(self) -> bool:
        return self in (Outcome.DELETED, Outcome.NOT_FOUND)


@dataclass(frozen=True)
class ResourceType:
    """An API type as the server serves it: group, kind and (optionally) version.

    ``version`` is left empty for allow-list entries and filled in by discovery.
    """

    group: str
    kind: str
    version: str = ""
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version or "v1"
        return f"{self.group}/{self.version}" if self.version else self.group

    @property
    def key(self) -> tuple[str, str]:
        return (self.group, self.kind)

    def __str__(self) -> str:
        return f"{self.kind}.{self.group}" if self.group else self.kind


# Fixed API types used by the engine
APPLICATION_TYPE = ResourceType("argoproj.io", "Application", "v1alpha1")
NAMESPACE_TYPE = ResourceType("", "Namespace", "v1", namespaced=False)
CRD_TYPE = ResourceType(
    "apiextensions.k8s.io", "CustomResourceDefinition", "v1", namespaced=False,
)

MUTATING_WEBHOOK_TYPE = ResourceType(
    "admissionregistration.k8s.io", "MutatingWebhookConfiguration", "v1", namespaced=False,
)
VALIDATING_WEBHOOK_TYPE = ResourceType(
    "admissionregistration.k8s.io", "ValidatingWebhookConfiguration", "v1", namespaced=False,
)
CLUSTER_ROLE_TYPE = ResourceType("rbac.authorization.k8s.io", "ClusterRole", "v1", namespaced=False)
CLUSTER_ROLE_BINDING_TYPE = ResourceType(
    "rbac.authorization.k8s.io", "ClusterRoleBinding", "v1", namespaced=False,
)
API_SERVICE_TYPE = ResourceType("apiregistration.k8s.io", "APIService", "v1", namespaced=False)

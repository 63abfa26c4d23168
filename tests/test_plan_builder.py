"""Tests for turning settings and discovery into deletion plans."""

from __future__ import annotations

import pytest

from gitops_teardown.core.errors import ClusterAPIError
from gitops_teardown.core.plan_builder import PlanBuilder
from gitops_teardown.models import (
    API_SERVICE_TYPE,
    CLUSTER_ROLE_BINDING_TYPE,
    CLUSTER_ROLE_TYPE,
    MUTATING_WEBHOOK_TYPE,
    VALIDATING_WEBHOOK_TYPE,
    ResourceKind,
)


@pytest.fixture
def builder(cluster, settings, engine) -> PlanBuilder:
    return PlanBuilder(cluster, settings, engine)


class TestApplicationPlan:
    def test_one_rank_per_group(self, builder, settings):
        plan = builder.application_plan()

        assert plan.ranks == list(range(len(settings.applications)))
        assert [r.name for r in plan.groups[0]] == list(settings.applications[0])
        assert all(r.namespace == "argocd" for r in plan.resources)
        assert plan.groups[-1][0].name == "gateway-api-crds"

    def test_explicit_names_share_a_rank(self, builder):
        plan = builder.application_plan(["canvas-oda", "istiod"], base_rank=3)

        assert plan.ranks == [3]
        assert len(plan) == 2


class TestClusterObjectPlan:
    def test_only_existing_objects_by_name_or_label(self, cluster, builder):
        cluster.add(MUTATING_WEBHOOK_TYPE, "istio-sidecar-injector")
        cluster.add(VALIDATING_WEBHOOK_TYPE, "istiod-default-validator")
        cluster.add(CLUSTER_ROLE_TYPE, "kong-kong")
        cluster.add(CLUSTER_ROLE_TYPE, "istio-extra", labels={"app.kubernetes.io/part-of": "istio"})
        cluster.add(CLUSTER_ROLE_TYPE, "cluster-admin")
        cluster.add(CLUSTER_ROLE_BINDING_TYPE, "kong-kong")
        cluster.add(API_SERVICE_TYPE, "v1.webhook.cert-manager.io", labels={"app.kubernetes.io/name": "cert-manager"})
        cluster.add(API_SERVICE_TYPE, "v1.apps")

        plan = builder.cluster_object_plan(rank=5)

        found = {(r.resource_type.kind, r.name) for r in plan.resources}
        assert found == {
            ("MutatingWebhookConfiguration", "istio-sidecar-injector"),
            ("ValidatingWebhookConfiguration", "istiod-default-validator"),
            ("ClusterRole", "kong-kong"),
            ("ClusterRole", "istio-extra"),
            ("ClusterRoleBinding", "kong-kong"),
            ("APIService", "v1.webhook.cert-manager.io"),
        }
        assert plan.ranks == [5]
        assert all(r.kind == ResourceKind.CLUSTER_OBJECT for r in plan.resources)

    def test_object_matching_name_and_label_listed_once(self, cluster, builder):
        cluster.add(CLUSTER_ROLE_TYPE, "kong-kong", labels={"app.kubernetes.io/managed-by": "Helm"})

        plan = builder.cluster_object_plan()

        assert [r.name for r in plan.resources] == ["kong-kong"]

    def test_discovery_error_is_collected(self, cluster, builder):
        cluster.add(MUTATING_WEBHOOK_TYPE, "cert-manager-webhook")
        cluster.errors[("list", "ClusterRole")] = ClusterAPIError("list: HTTP 403 Forbidden", status=403)

        plan = builder.cluster_object_plan()

        assert [r.name for r in plan.resources] == ["cert-manager-webhook"]
        assert len(builder.discovery_errors) == 1
        assert "ClusterRole" in builder.discovery_errors[0]


class TestFullPlan:
    def test_dependency_order(self, cluster, builder, settings):
        """GIVEN applications, namespaces, cluster objects and CRDs
        WHEN the full plan is built
        THEN namespaces follow the last application rank, then cluster objects, then CRDs
        """
        cluster.add(CLUSTER_ROLE_TYPE, "kong-kong")
        cluster.add_crd("oda.tmforum.org", "Component", "components")
        last_app_rank = len(settings.applications) - 1

        plan = builder.full_plan()

        kinds_by_rank = {g[0].rank: {r.kind for r in g} for g in plan.groups}
        assert kinds_by_rank[last_app_rank] == {ResourceKind.APPLICATION}
        assert kinds_by_rank[last_app_rank + 1] == {ResourceKind.NAMESPACE}
        assert kinds_by_rank[last_app_rank + 2] == {ResourceKind.CLUSTER_OBJECT}
        assert kinds_by_rank[last_app_rank + 3] == {ResourceKind.CRD}
        assert builder.namespace_rank == last_app_rank + 1

    def test_skip_crds(self, cluster, builder):
        cluster.add_crd("oda.tmforum.org", "Component", "components")

        plan = builder.full_plan(include_crds=False)

        assert ResourceKind.CRD not in {r.kind for r in plan.resources}

    def test_crd_discovery_failure(self, cluster, builder):
        cluster.errors[("list", "CustomResourceDefinition")] = ClusterAPIError("list: HTTP 500", status=500)

        plan = builder.crd_plan()

        assert not plan
        assert builder.discovery_errors

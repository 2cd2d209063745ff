"""Unit tests for the create-or-update primitive."""

import asyncio
import pytest
from datadog_operator.resources import BaseResource, NodeAgent, ClusterAgent
from datadog_operator.types.schemas import DatadogAgentSpecSchema
from datadog_operator.utils.errors import OwnershipConflictError
from conftest import (
    NAME,
    NAMESPACE,
    OWNER_UID,
    node_agent_spec,
    cluster_agent_spec,
    datadog_agent_body,
)

HASH = BaseResource.HASH_ANNOTATION


def make(cls, spec_dict):
    spec = DatadogAgentSpecSchema().load(spec_dict)
    return cls.from_spec(NAME, NAMESPACE, spec, datadog_agent_body(spec_dict), {})


@pytest.fixture
def agent():
    return make(NodeAgent, {"agent": node_agent_spec()})


@pytest.fixture
def cluster_agent():
    return make(
        ClusterAgent, {"agent": node_agent_spec(), "clusterAgent": cluster_agent_spec()}
    )


class TestCreate:
    """Tests for objects that do not exist yet."""

    def test_create_sets_owner_reference(self, cluster, agent):
        """Test a missing object is created with a controller owner reference."""
        changed = asyncio.run(agent.apply(agent.prepare_agent_service_account()))
        assert changed is True
        assert cluster.mutations() == [("create", "ServiceAccount", "foo-agent")]
        refs = cluster.get("ServiceAccount", "foo-agent")["metadata"]["ownerReferences"]
        assert len(refs) == 1
        assert refs[0]["uid"] == OWNER_UID
        assert refs[0]["kind"] == "DatadogAgent"
        assert refs[0]["controller"] is True

    def test_cluster_scoped_object(self, cluster, agent):
        """Test cluster-scoped objects are stored without a namespace."""
        asyncio.run(agent.apply(agent.prepare_agent_cluster_role()))
        assert cluster.get("ClusterRole", "foo-agent", namespace=None) is not None
        assert cluster.get("ClusterRole", "foo-agent") is None


class TestUpdate:
    """Tests for objects that already exist."""

    def test_unchanged_fingerprint_is_a_noop(self, cluster, agent):
        """Test an object with the desired fingerprint is left alone."""
        asyncio.run(agent.apply(agent.prepare_daemonset()))
        cluster.reset_calls()
        changed = asyncio.run(agent.apply(agent.prepare_daemonset()))
        assert changed is False
        assert cluster.mutations() == []

    def test_stale_fingerprint_is_patched_once(self, cluster, agent):
        """Test a stale fingerprint leads to exactly one patch."""
        daemonset = agent.prepare_daemonset()
        asyncio.run(agent.apply(daemonset))
        cluster.get("DaemonSet", "foo")["metadata"]["annotations"][HASH] = "stale"
        cluster.reset_calls()

        assert asyncio.run(agent.apply(agent.prepare_daemonset())) is True
        assert cluster.mutations() == [("patch", "DaemonSet", "foo")]
        assert (
            cluster.get("DaemonSet", "foo")["metadata"]["annotations"][HASH]
            == agent.manifest_hash(daemonset)
        )

        cluster.reset_calls()
        assert asyncio.run(agent.apply(agent.prepare_daemonset())) is False
        assert cluster.mutations() == []

    def test_foreign_labels_survive_patch(self, cluster, agent):
        """Test labels set by other controllers are merged, not replaced."""
        asyncio.run(agent.apply(agent.prepare_daemonset()))
        observed = cluster.get("DaemonSet", "foo")
        observed["metadata"]["labels"]["team"] = "observability"
        observed["metadata"]["annotations"][HASH] = "stale"

        asyncio.run(agent.apply(agent.prepare_daemonset()))
        labels = cluster.get("DaemonSet", "foo")["metadata"]["labels"]
        assert labels["team"] == "observability"
        assert labels["app.kubernetes.io/managed-by"] == "datadog-operator"

    def test_owner_reference_added_to_adopted_object(self, cluster, agent):
        """Test an object without a controller is adopted on patch."""
        cluster.add(
            "ServiceAccount",
            {"metadata": {"name": "foo-agent", "annotations": {HASH: "old"}}},
        )
        asyncio.run(agent.apply(agent.prepare_agent_service_account()))
        refs = cluster.get("ServiceAccount", "foo-agent")["metadata"]["ownerReferences"]
        assert [r["uid"] for r in refs] == [OWNER_UID]

    def test_ownership_conflict(self, cluster, agent):
        """Test an object controlled by another owner is never modified."""
        cluster.add(
            "DaemonSet",
            {
                "metadata": {
                    "name": "foo",
                    "ownerReferences": [
                        {
                            "apiVersion": "apps/v1",
                            "kind": "Deployment",
                            "name": "someone-else",
                            "uid": "other-uid",
                            "controller": True,
                        }
                    ],
                },
                "spec": {},
            },
        )
        with pytest.raises(OwnershipConflictError):
            asyncio.run(agent.apply(agent.prepare_daemonset()))
        assert cluster.mutations() == []


class TestGeneratedToken:
    """Tests for the cluster agent Secret holding a generated token."""

    def test_generated_token_is_not_rotated(self, cluster, cluster_agent):
        """Test later passes never replace a generated token."""
        paths = cluster_agent.patch_paths_for("Secret")
        asyncio.run(cluster_agent.apply(cluster_agent.prepare_secret(), patch_paths=paths))
        token = cluster.get("Secret", "foo-cluster-agent")["data"]["token"]
        cluster.reset_calls()

        assert (
            asyncio.run(
                cluster_agent.apply(cluster_agent.prepare_secret(), patch_paths=paths)
            )
            is False
        )
        assert cluster.mutations() == []

        cluster.get("Secret", "foo-cluster-agent")["metadata"]["annotations"][HASH] = "stale"
        asyncio.run(cluster_agent.apply(cluster_agent.prepare_secret(), patch_paths=paths))
        assert cluster.get("Secret", "foo-cluster-agent")["data"]["token"] == token

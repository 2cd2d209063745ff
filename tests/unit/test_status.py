"""Unit tests for the status accumulator."""

import pytest
from datadog_operator.controller import StatusAccumulator
from datadog_operator.controller.registry import AGENT, CLUSTER_AGENT
from datadog_operator.utils.errors import RenameConflictError

DAEMONSET_STATUS = {
    "status": {
        "desiredNumberScheduled": 3,
        "currentNumberScheduled": 3,
        "numberReady": 3,
        "numberAvailable": 3,
        "updatedNumberScheduled": 3,
    }
}


class TestRecord:
    """Tests for recording component status."""

    def test_running_daemonset(self):
        """Test a fully available, unchanged DaemonSet is Running."""
        acc = StatusAccumulator(None)
        acc.record(AGENT, "foo", "abc", DAEMONSET_STATUS, changed=False)
        assert acc.updates["agent"] == {
            "daemonsetName": "foo",
            "currentHash": "abc",
            "state": "Running",
            "desired": 3,
            "current": 3,
            "ready": 3,
            "available": 3,
            "upToDate": 3,
        }

    def test_changed_workload_is_updating(self):
        """Test a workload patched during the pass is Updating."""
        acc = StatusAccumulator(None)
        acc.record(AGENT, "foo", "abc", DAEMONSET_STATUS, changed=True)
        assert acc.updates["agent"]["state"] == "Updating"

    def test_workload_kind(self):
        """Test the node agent workload kind is recorded and read back."""
        acc = StatusAccumulator({"agent": {"workloadKind": "DaemonSet"}})
        assert acc.live_kind(AGENT) == "DaemonSet"
        assert acc.live_kind(CLUSTER_AGENT) is None
        acc.record(AGENT, "foo", "abc", DAEMONSET_STATUS, changed=True, kind="ExtendedDaemonSet")
        acc.record(
            CLUSTER_AGENT, "foo-cluster-agent", "abc", None, changed=False, kind="Deployment"
        )
        assert acc.updates["agent"]["workloadKind"] == "ExtendedDaemonSet"
        assert "workloadKind" not in acc.updates["clusterAgent"]

    def test_unavailable_deployment_is_progressing(self):
        """Test a Deployment without available replicas is Progressing."""
        acc = StatusAccumulator(None)
        acc.record(
            CLUSTER_AGENT,
            "foo-cluster-agent",
            "abc",
            {"status": {"replicas": 1}},
            changed=False,
        )
        status = acc.updates["clusterAgent"]
        assert status["deploymentName"] == "foo-cluster-agent"
        assert status["state"] == "Progressing"
        assert status["availableReplicas"] == 0

    def test_extended_daemonset_counts(self):
        """Test ExtendedDaemonSet status fields are understood."""
        acc = StatusAccumulator(None)
        acc.record(
            AGENT,
            "foo",
            "abc",
            {"status": {"desired": 2, "current": 2, "ready": 2, "available": 2, "upToDate": 2}},
            changed=False,
        )
        assert acc.updates["agent"]["state"] == "Running"
        assert acc.updates["agent"]["desired"] == 2


class TestRenameGuard:
    """Tests for the live workload name guard."""

    def test_first_pass_accepts_any_name(self):
        """Test no name is enforced before one is recorded."""
        StatusAccumulator({}).guard_rename(AGENT, "foo")

    def test_same_name(self):
        """Test the recorded name is accepted."""
        StatusAccumulator({"agent": {"daemonsetName": "foo"}}).guard_rename(AGENT, "foo")

    def test_rename_rejected(self):
        """Test a different desired name is rejected."""
        acc = StatusAccumulator({"clusterAgent": {"deploymentName": "foo-cluster-agent"}})
        with pytest.raises(RenameConflictError):
            acc.guard_rename(CLUSTER_AGENT, "dca")


class TestCommit:
    """Tests for `prepare_commit`."""

    def test_nothing_recorded(self):
        """Test a pass that recorded nothing commits nothing."""
        assert StatusAccumulator({"agent": {"state": "Running"}}).prepare_commit() is None

    def test_changes_are_committed_with_timestamp(self):
        """Test new values are committed with a lastUpdate timestamp."""
        acc = StatusAccumulator(None)
        acc.record(AGENT, "foo", "abc", DAEMONSET_STATUS, changed=False)
        commit = acc.prepare_commit()
        assert commit["agent"]["state"] == "Running"
        assert commit["agent"]["lastUpdate"]

    def test_unchanged_status_is_not_committed(self):
        """Test identical values are not written again."""
        first = StatusAccumulator(None)
        first.record(AGENT, "foo", "abc", DAEMONSET_STATUS, changed=False)
        current = first.prepare_commit()

        second = StatusAccumulator(current)
        second.record(AGENT, "foo", "abc", DAEMONSET_STATUS, changed=False)
        assert second.prepare_commit() is None

    def test_hash_change_is_committed(self):
        """Test a new fingerprint is committed."""
        first = StatusAccumulator(None)
        first.record(AGENT, "foo", "abc", DAEMONSET_STATUS, changed=False)

        second = StatusAccumulator(first.prepare_commit())
        second.record(AGENT, "foo", "def", DAEMONSET_STATUS, changed=True)
        commit = second.prepare_commit()
        assert commit["agent"]["currentHash"] == "def"
        assert commit["agent"]["state"] == "Updating"

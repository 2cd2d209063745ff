"""Unit tests for requeue directives and the cluster agent gate."""

import pytest
from datadog_operator.controller import Outcome, ReconcileResult, compute_requeue, ready
from datadog_operator.types.settings import Settings
from datadog_operator.utils.errors import ConfigurationError, GateNotReadyError


@pytest.fixture
def conf():
    return Settings()


class TestComputeRequeue:
    """Tests for `compute_requeue`."""

    @pytest.mark.parametrize("outcome", [Outcome.NOT_FOUND, Outcome.DELETED])
    def test_no_requeue(self, conf, outcome):
        """Test finished objects are not requeued."""
        result = compute_requeue(outcome, conf)
        assert not result.should_requeue
        assert result.delay(conf) is None

    @pytest.mark.parametrize("outcome", [Outcome.FINALIZER_ADDED, Outcome.STAGE_CHANGED])
    def test_immediate_requeue(self, conf, outcome):
        """Test a changed stage asks for another pass right away."""
        result = compute_requeue(outcome, conf)
        assert result.requeue is True
        assert result.requeue_after is None
        assert result.delay(conf) == conf.requeue_immediate_seconds

    def test_gate_blocked(self, conf):
        """Test a closed gate requeues after the short delay with a non-fatal error."""
        result = compute_requeue(Outcome.GATE_BLOCKED, conf)
        assert result.requeue_after == conf.requeue_short_seconds
        assert isinstance(result.error, GateNotReadyError)
        assert result.error.fatal is False

    @pytest.mark.parametrize("outcome", [Outcome.FINAL_CHANGED, Outcome.CONVERGED])
    def test_medium_requeue(self, conf, outcome):
        """Test rollouts and converged objects are revisited after the medium delay."""
        result = compute_requeue(outcome, conf)
        assert result.delay(conf) == conf.requeue_medium_seconds
        assert result.error is None

    def test_failure(self, conf):
        """Test fatal errors are returned without a requeue."""
        error = ConfigurationError("missing section")
        result = compute_requeue(Outcome.FAILED, conf, error)
        assert result.outcome is Outcome.FAILED
        assert result.error is error
        assert not result.should_requeue

    def test_delays_are_ordered(self, conf):
        """Test the default delays grow from immediate to medium."""
        assert (
            conf.requeue_immediate_seconds
            < conf.requeue_short_seconds
            < conf.requeue_medium_seconds
        )

    def test_default_result(self):
        """Test an empty directive requests nothing."""
        assert ReconcileResult().should_requeue is False


class TestGate:
    """Tests for cluster agent readiness."""

    def test_missing_deployment(self):
        """Test a missing Deployment is not ready."""
        assert ready(None) is False

    def test_no_status(self):
        """Test a Deployment without status is not ready."""
        assert ready({"metadata": {"name": "foo-cluster-agent"}}) is False

    def test_zero_available(self):
        """Test zero available replicas keep the gate closed."""
        assert ready({"status": {"replicas": 1, "availableReplicas": 0}}) is False

    def test_available(self):
        """Test one available replica opens the gate."""
        assert ready({"status": {"availableReplicas": 1}}) is True

"""Unit tests for the kopf handlers and the reconciliation queue."""

import asyncio
import logging
import kopf
import pytest
from unittest.mock import Mock
from kubernetes_asyncio.client import ApiException
from datadog_operator.common.models.labels import Labels
from datadog_operator.controller import Outcome, ReconcileResult, compute_requeue
from datadog_operator.handlers import datadogagent as handlers, probes
from datadog_operator.resources import BaseResource, DatadogAgent
from datadog_operator.sensors import OperatorSensor
from datadog_operator.utils.errors import ConfigurationError, GateNotReadyError
from conftest import NAME, NAMESPACE, datadog_agent_body

KEY = f"{NAMESPACE}/{NAME}"
logger = logging.getLogger(__name__)


class FakePatch:
    def __init__(self):
        self.status = {}


@pytest.fixture(autouse=True)
def reset_state(monkeypatch):
    monkeypatch.setattr(BaseResource, "sensor", OperatorSensor())
    for state in (
        handlers.names_in_queue,
        handlers.reconciliation_queue,
        handlers.queue_locks,
        handlers.reconciliation_locks,
        handlers.scheduled_requests,
        handlers.failed_generations,
    ):
        state.clear()
    yield
    for handle in handlers.scheduled_requests.values():
        handle.cancel()
    handlers.scheduled_requests.clear()


@pytest.fixture
def warn(monkeypatch):
    mock = Mock()
    monkeypatch.setattr(kopf, "warn", mock)
    return mock


def stub_reconciler(monkeypatch, result=None, error=None):
    calls = []

    class StubReconciler:
        def __init__(self, conf, logger):
            pass

        async def reconcile(self, name, namespace):
            calls.append((name, namespace))
            if error is not None:
                raise error
            return result

    monkeypatch.setattr(handlers, "Reconciler", StubReconciler)
    return calls


def call_reconcile(patch, status=None, trigger_source="manual"):
    body = datadog_agent_body(status=status)
    return handlers.reconcile(
        NAME,
        NAMESPACE,
        body,
        body["metadata"],
        status or {},
        patch,
        logger,
        trigger_source=trigger_source,
    )


def conditions(patch):
    return {c["type"]: c for c in patch.status["conditions"]}


class TestQueue:
    """Tests for the per-DatadogAgent reconciliation queue."""

    def test_requests_are_deduplicated(self):
        """Test a key already waiting is not queued twice."""

        async def scenario():
            await handlers.request_reconciliation(NAME, NAMESPACE)
            await handlers.request_reconciliation(NAME, NAMESPACE)
            return handlers.reconciliation_queue[KEY].qsize()

        assert asyncio.run(scenario()) == 1
        assert handlers.names_in_queue == {KEY}

    def test_dependent_event_enqueues_owner(self):
        """Test a change to a managed object queues its DatadogAgent."""
        asyncio.run(
            handlers.on_dependent_event(
                type="MODIFIED",
                name="foo-cluster-agent",
                namespace=NAMESPACE,
                labels={Labels.DATADOG_NAME_LABEL: NAME},
                logger=logger,
            )
        )
        assert handlers.names_in_queue == {KEY}

    def test_dependent_event_without_owner(self):
        """Test objects without the owner label are ignored."""
        asyncio.run(
            handlers.on_dependent_event(
                type="MODIFIED",
                name="unrelated",
                namespace=NAMESPACE,
                labels={},
                logger=logger,
            )
        )
        assert handlers.names_in_queue == set()

    def test_earlier_schedule_wins(self):
        """Test a later request never postpones an earlier one."""

        async def scenario():
            handlers.schedule_reconciliation(NAME, NAMESPACE, 10)
            first = handlers.scheduled_requests[KEY].when()
            handlers.schedule_reconciliation(NAME, NAMESPACE, 100)
            unchanged = handlers.scheduled_requests[KEY].when()
            handlers.schedule_reconciliation(NAME, NAMESPACE, 1)
            earlier = handlers.scheduled_requests[KEY].when()
            handlers.forget(NAME, NAMESPACE)
            return first, unchanged, earlier

        first, unchanged, earlier = asyncio.run(scenario())
        assert unchanged == first
        assert earlier < first
        assert handlers.scheduled_requests == {}

    def test_scheduled_request_is_enqueued(self):
        """Test a scheduled request lands in the queue when due."""

        async def scenario():
            handlers.schedule_reconciliation(NAME, NAMESPACE, 0.01)
            await asyncio.sleep(0.05)

        asyncio.run(scenario())
        assert handlers.names_in_queue == {KEY}
        assert KEY not in handlers.scheduled_requests

    def test_forget(self):
        """Test forgetting drops every trace of a DatadogAgent."""

        async def scenario():
            await handlers.request_reconciliation(NAME, NAMESPACE)
            handlers.schedule_reconciliation(NAME, NAMESPACE, 30)
            async with handlers.reconciliation_locks[KEY]:
                pass
            handlers.forget(NAME, NAMESPACE)

        asyncio.run(scenario())
        assert handlers.names_in_queue == set()
        assert KEY not in handlers.reconciliation_queue
        assert KEY not in handlers.queue_locks
        assert KEY not in handlers.reconciliation_locks
        assert handlers.scheduled_requests == {}


class TestReconcile:
    """Tests for mapping pass results onto kopf."""

    def test_converged(self, monkeypatch):
        """Test a converged pass marks the DatadogAgent Ready and schedules a visit."""
        stub_reconciler(monkeypatch, compute_requeue(Outcome.CONVERGED, DatadogAgent.conf))
        patch = FakePatch()

        async def scenario():
            result = await call_reconcile(patch)
            return result, KEY in handlers.scheduled_requests

        result, scheduled = asyncio.run(scenario())
        assert result.outcome is Outcome.CONVERGED
        assert scheduled
        conds = conditions(patch)
        assert conds["Ready"]["status"] == "True"
        assert conds["Progressing"]["status"] == "False"
        assert conds["Ready"]["observedGeneration"] == 1

    def test_gate_blocked(self, monkeypatch):
        """Test a closed gate is reported as progressing, not failed."""
        stub_reconciler(
            monkeypatch, compute_requeue(Outcome.GATE_BLOCKED, DatadogAgent.conf)
        )
        patch = FakePatch()

        async def scenario():
            return await call_reconcile(patch)

        asyncio.run(scenario())
        conds = conditions(patch)
        assert conds["Ready"]["reason"] == "ClusterAgentNotReady"
        assert conds["Progressing"]["status"] == "True"

    def test_unchanged_conditions_are_not_written(self, monkeypatch):
        """Test conditions are only written when they change."""
        stub_reconciler(monkeypatch, compute_requeue(Outcome.CONVERGED, DatadogAgent.conf))
        first = FakePatch()

        async def scenario(patch, status=None):
            return await call_reconcile(patch, status=status)

        asyncio.run(scenario(first))
        second = FakePatch()
        asyncio.run(scenario(second, status={"conditions": first.status["conditions"]}))
        assert second.status == {}

    def test_not_found_forgets(self, monkeypatch):
        """Test a vanished DatadogAgent drops its queue state."""
        stub_reconciler(monkeypatch, ReconcileResult(outcome=Outcome.NOT_FOUND))
        handlers.names_in_queue.add(KEY)
        patch = FakePatch()

        async def scenario():
            return await call_reconcile(patch)

        assert asyncio.run(scenario()).outcome is Outcome.NOT_FOUND
        assert handlers.names_in_queue == set()
        assert patch.status == {}

    def test_fatal_error(self, monkeypatch, warn):
        """Test a fatal error raises PermanentError, warns and marks Ready=False."""
        error = ConfigurationError("Missing defaulted sections: agent.rbac.")
        stub_reconciler(monkeypatch, compute_requeue(Outcome.FAILED, DatadogAgent.conf, error))
        patch = FakePatch()

        with pytest.raises(kopf.PermanentError):
            asyncio.run(call_reconcile(patch))
        warn.assert_called_once()
        assert warn.call_args.kwargs == {"reason": "InvalidConfiguration", "message": str(error)}
        conds = conditions(patch)
        assert conds["Ready"]["status"] == "False"
        assert conds["Ready"]["reason"] == "InvalidConfiguration"
        assert conds["Progressing"]["message"] == str(error)

    def test_non_fatal_error(self, monkeypatch, warn):
        """Test a non-fatal error is retried."""
        error = GateNotReadyError("not yet")
        stub_reconciler(monkeypatch, ReconcileResult(error=error, outcome=Outcome.FAILED))

        with pytest.raises(kopf.TemporaryError):
            asyncio.run(call_reconcile(FakePatch()))

    def test_server_error_is_temporary(self, monkeypatch):
        """Test a 5xx from the API server is retried."""
        stub_reconciler(monkeypatch, error=ApiException(status=500, reason="Internal"))
        with pytest.raises(kopf.TemporaryError):
            asyncio.run(call_reconcile(FakePatch()))

    def test_forbidden_is_permanent(self, monkeypatch):
        """Test a 403 from the API server is not retried."""
        stub_reconciler(monkeypatch, error=ApiException(status=403, reason="Forbidden"))
        with pytest.raises(kopf.PermanentError):
            asyncio.run(call_reconcile(FakePatch()))

    def test_on_error(self):
        """Test `on_error` marks both conditions False with the error reason."""
        patch = FakePatch()
        handlers.on_error(ConfigurationError("bad"), {"generation": 4}, {}, patch)
        conds = conditions(patch)
        assert conds["Progressing"]["status"] == "False"
        assert conds["Ready"]["reason"] == "InvalidConfiguration"
        assert conds["Ready"]["observedGeneration"] == 4


class TestProcessQueue:
    """Tests for the queue draining timer."""

    def run_timer(self):
        body = datadog_agent_body()
        return handlers.process_reconciliation_requests(
            name=NAME,
            namespace=NAMESPACE,
            body=body,
            meta=body["metadata"],
            status={},
            patch=FakePatch(),
            logger=logger,
            stopped=False,
        )

    def test_empty_queue(self, monkeypatch):
        """Test nothing runs when no request is waiting."""
        calls = []

        async def fake_reconcile(*args, **kwargs):
            calls.append(kwargs)

        monkeypatch.setattr(handlers, "reconcile", fake_reconcile)
        asyncio.run(self.run_timer())
        assert calls == []

    def test_request_is_processed(self, monkeypatch):
        """Test a queued request runs one pass and frees its key."""
        calls = []

        async def fake_reconcile(*args, **kwargs):
            calls.append(kwargs["trigger_source"])

        monkeypatch.setattr(handlers, "reconcile", fake_reconcile)

        async def scenario():
            await handlers.request_reconciliation(NAME, NAMESPACE)
            await self.run_timer()

        asyncio.run(scenario())
        assert calls == ["queue"]
        assert handlers.names_in_queue == set()

    def test_temporary_error_is_rescheduled(self, monkeypatch):
        """Test a retriable failure schedules another request."""

        async def fake_reconcile(*args, **kwargs):
            raise kopf.TemporaryError("later", delay=42)

        monkeypatch.setattr(handlers, "reconcile", fake_reconcile)

        async def scenario():
            await handlers.request_reconciliation(NAME, NAMESPACE)
            await self.run_timer()
            handle = handlers.scheduled_requests[KEY]
            return handle.when() - asyncio.get_running_loop().time()

        remaining = asyncio.run(scenario())
        assert 40 < remaining <= 42


class TestHeartbeat:
    """Tests for the periodic reconciliation timer."""

    def beat(self, generation):
        return handlers.periodic_reconciliation(
            name=NAME,
            namespace=NAMESPACE,
            meta={"name": NAME, "namespace": NAMESPACE, "generation": generation},
            logger=logger,
        )

    def test_requests_reconciliation(self):
        """Test the heartbeat queues a pass."""
        asyncio.run(self.beat(1))
        assert handlers.names_in_queue == {KEY}

    def test_fatal_error_pauses_heartbeat(self, monkeypatch, warn):
        """Test a fatally failed generation is not retried until the spec changes."""
        error = ConfigurationError("Missing defaulted sections: agent.rbac.")
        stub_reconciler(monkeypatch, compute_requeue(Outcome.FAILED, DatadogAgent.conf, error))
        with pytest.raises(kopf.PermanentError):
            asyncio.run(call_reconcile(FakePatch()))
        assert handlers.failed_generations == {KEY: 1}

        asyncio.run(self.beat(1))
        assert handlers.names_in_queue == set()
        warn.assert_called_once()

        asyncio.run(self.beat(2))
        assert handlers.names_in_queue == {KEY}

    def test_success_resumes_heartbeat(self, monkeypatch):
        """Test a successful pass clears the failed generation."""
        handlers.failed_generations[KEY] = 1
        stub_reconciler(monkeypatch, compute_requeue(Outcome.CONVERGED, DatadogAgent.conf))

        async def scenario():
            await call_reconcile(FakePatch())
            await self.beat(1)

        asyncio.run(scenario())
        assert handlers.failed_generations == {}
        assert handlers.names_in_queue == {KEY}

    def test_non_fatal_error_keeps_heartbeat(self, monkeypatch, warn):
        """Test retriable failures do not pause the heartbeat."""
        stub_reconciler(
            monkeypatch,
            ReconcileResult(error=GateNotReadyError("not yet"), outcome=Outcome.FAILED),
        )
        with pytest.raises(kopf.TemporaryError):
            asyncio.run(call_reconcile(FakePatch()))
        asyncio.run(self.beat(1))
        assert handlers.names_in_queue == {KEY}


class TestProbes:
    """Tests for the liveness probes."""

    def test_queued_counts_waiting_and_scheduled(self):
        """Test the probe reports queued and scheduled requests."""

        async def scenario():
            await handlers.request_reconciliation(NAME, NAMESPACE)
            handlers.schedule_reconciliation("bar", NAMESPACE, 30)
            return probes.get_queued_requests()

        assert asyncio.run(scenario()) == 2

    def test_now(self):
        """Test the timestamp probe returns an ISO timestamp."""
        assert "T" in probes.get_current_timestamp()

import asyncio
import kopf
import time
from logging import Logger
from collections import defaultdict
from typing import Dict, Optional, Set
from kubernetes_asyncio.client import ApiException
from datadog_operator.common.models.labels import Labels
from datadog_operator.controller import Outcome, ReconcileResult, Reconciler
from datadog_operator.resources import BaseResource, DatadogAgent
from datadog_operator.types.settings import (
    RECONCILE_QUEUE_INTERVAL_SECONDS,
    REQUEUE_MEDIUM_SECONDS,
)
from datadog_operator.utils.errors import ReconcileError, convert_api_exception
from datadog_operator.utils.helpers import upsert_condition

GROUP = DatadogAgent.GROUP_NAME
VERSION = DatadogAgent.GROUP_VERSION
PLURAL = DatadogAgent.PLURAL_NAME

#: label selector of every namespaced dependent the operator creates
MANAGED_BY = {Labels.KUBERNETES_MANAGED_BY_LABEL: BaseResource.OPERATOR_NAME}

# Use a set to track which keys are already queued
names_in_queue: Set[str] = set()
# The actual queue for ordered processing; items are enqueue timestamps
reconciliation_queue: Dict[str, asyncio.Queue] = defaultdict(asyncio.Queue)
# Locks to prevent race conditions when enqueueing reconciliation requests
queue_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
# At most one in-flight pass per DatadogAgent
reconciliation_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
# Delayed requests asked for by a previous pass
scheduled_requests: Dict[str, asyncio.TimerHandle] = {}
# Generation whose pass failed fatally; the heartbeat skips it until the spec changes
failed_generations: Dict[str, int] = {}
_background_tasks: Set[asyncio.Task] = set()

# (type, status, reason, message) per outcome
CONDITIONS = {
    Outcome.FINALIZER_ADDED: (
        ("Progressing", "True", "Reconciling", "Finalizer added"),
        ("Ready", "False", "Reconciling", "Datadog agent is being deployed"),
    ),
    Outcome.STAGE_CHANGED: (
        ("Progressing", "True", "Reconciling", "Dependents are being updated"),
        ("Ready", "False", "Reconciling", "Datadog agent is being deployed"),
    ),
    Outcome.GATE_BLOCKED: (
        ("Progressing", "True", "ClusterAgentNotReady", "Waiting for an available cluster agent replica"),
        ("Ready", "False", "ClusterAgentNotReady", "Datadog agent is being deployed"),
    ),
    Outcome.FINAL_CHANGED: (
        ("Progressing", "True", "RollingOut", "Node agent workload was updated"),
        ("Ready", "False", "RollingOut", "Datadog agent is being deployed"),
    ),
    Outcome.CONVERGED: (
        ("Progressing", "False", "ReconcileComplete", "All dependents are in the desired state"),
        ("Ready", "True", "Ready", "Datadog agent is deployed"),
    ),
}


def get_sensor():
    """Get sensor from the resource base class."""
    return getattr(BaseResource, "sensor", None)


def queue_key(name: str, namespace: str) -> str:
    return f"{namespace}/{name}"


async def request_reconciliation(name: str, namespace: str, **kwargs):
    """Request reconciliation for the DatadogAgent.

    Enqueues the request only if it's not already in the queue.
    Uses a lock to ensure atomicity of the check-and-add operation.
    """
    key = queue_key(name, namespace)
    async with queue_locks[key]:
        if key not in names_in_queue:
            names_in_queue.add(key)
            await reconciliation_queue[key].put(time.time())

            sensor = get_sensor()
            if sensor:
                sensor.on_reconcile_queued(
                    name, namespace, reconciliation_queue[key].qsize()
                )


def _fire_scheduled(name: str, namespace: str):
    scheduled_requests.pop(queue_key(name, namespace), None)
    task = asyncio.ensure_future(request_reconciliation(name, namespace))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


def schedule_reconciliation(name: str, namespace: str, delay: float):
    """Enqueue a request after `delay` seconds. An earlier pending request wins."""
    key = queue_key(name, namespace)
    loop = asyncio.get_running_loop()
    handle = scheduled_requests.get(key)
    if handle is not None:
        if handle.when() <= loop.time() + delay:
            return
        handle.cancel()
    scheduled_requests[key] = loop.call_later(delay, _fire_scheduled, name, namespace)


def forget(name: str, namespace: str):
    """Drop all in-memory state kept for a DatadogAgent."""
    key = queue_key(name, namespace)
    handle = scheduled_requests.pop(key, None)
    if handle is not None:
        handle.cancel()
    reconciliation_queue.pop(key, None)
    queue_locks.pop(key, None)
    reconciliation_locks.pop(key, None)
    failed_generations.pop(key, None)
    names_in_queue.discard(key)


def on_error(error, meta, status, patch, **_):
    """Handle fatal errors during reconciliation."""
    gen = (meta or {}).get("generation", 0)
    reason = getattr(error, "reason", "Error")
    conds = (status or {}).get("conditions", [])
    conds = upsert_condition(
        conds,
        {
            "type": "Progressing",
            "status": "False",
            "reason": reason,
            "message": str(error) if error else "Reconcile failed; see events/logs",
            "observedGeneration": gen,
        },
    )
    conds = upsert_condition(
        conds,
        {
            "type": "Ready",
            "status": "False",
            "reason": reason,
            "message": "Datadog agent not ready",
            "observedGeneration": gen,
        },
    )
    patch.status["conditions"] = conds


def update_conditions(outcome: Outcome, meta, status, patch):
    """Write Progressing/Ready for the outcome of a pass, only when they change."""
    if outcome not in CONDITIONS:
        return
    gen = (meta or {}).get("generation", 0)
    current = (status or {}).get("conditions", [])
    conds = current
    for type_, cond_status, reason, message in CONDITIONS[outcome]:
        conds = upsert_condition(
            conds,
            {
                "type": type_,
                "status": cond_status,
                "reason": reason,
                "message": message,
                "observedGeneration": gen,
            },
        )
    if conds != current:
        patch.status["conditions"] = conds


async def reconcile(
    name,
    namespace,
    body,
    meta,
    status,
    patch,
    logger: Logger,
    trigger_source: str = "manual",
    **kwargs,
) -> Optional[ReconcileResult]:
    """Run one pass for the DatadogAgent and map its result onto kopf.

    Fatal errors surface as a warning event, `Ready=False` and
    `kopf.PermanentError`; API errors as `kopf.TemporaryError`. Requeue
    directives are scheduled on the reconciliation queue.
    """
    conf = DatadogAgent.conf
    sensor = get_sensor()
    sensor_state = None
    if sensor:
        sensor_state = sensor.on_reconcile_start(
            name, namespace, (meta or {}).get("generation", 0), trigger_source
        )

    success = True
    error = None
    try:
        async with reconciliation_locks[queue_key(name, namespace)]:
            logger.debug(f"Reconciling DatadogAgent/{name} in {namespace} namespace.")
            result = await Reconciler(conf, logger).reconcile(name, namespace)
        if result.outcome is Outcome.FAILED:
            success, error = False, result.error
    except ApiException as e:
        success, error = False, e
        logger.error(f"Kubernetes API error during reconciliation: {e.status} {e.reason}")
        convert_api_exception(e, delay=conf.api_retry_delay_seconds)
    except asyncio.TimeoutError as e:
        success, error = False, e
        logger.error("Kubernetes API call timed out during reconciliation.")
        raise kopf.TemporaryError(
            "Kubernetes API call timed out.", delay=conf.api_retry_delay_seconds
        ) from e
    finally:
        if sensor:
            sensor.on_reconcile_complete(name, namespace, sensor_state, success, error)

    if result.outcome in (Outcome.NOT_FOUND, Outcome.DELETED):
        forget(name, namespace)
        return result

    if result.outcome is Outcome.FAILED:
        on_error(result.error, meta, status, patch)
        reason = getattr(result.error, "reason", "ReconcileFailed")
        kopf.warn(body, reason=reason, message=str(result.error))
        if isinstance(result.error, ReconcileError) and not result.error.fatal:
            raise kopf.TemporaryError(str(result.error), delay=conf.requeue_short_seconds)
        key = queue_key(name, namespace)
        failed_generations[key] = (meta or {}).get("generation", 0)
        raise kopf.PermanentError(str(result.error))

    failed_generations.pop(queue_key(name, namespace), None)
    update_conditions(result.outcome, meta, status, patch)
    delay = result.delay(conf)
    if delay is not None:
        schedule_reconciliation(name, namespace, delay)
    return result


@kopf.on.resume(GROUP, VERSION, PLURAL)
@kopf.on.create(GROUP, VERSION, PLURAL)
async def on_create(name, namespace, body, meta, status, patch, logger: Logger, **kwargs):
    """Reconciles a new (or resumed) DatadogAgent."""
    await reconcile(
        name, namespace, body, meta, status, patch, logger, trigger_source="create"
    )


@kopf.on.update(GROUP, VERSION, PLURAL, field="spec")
@kopf.on.update(GROUP, VERSION, PLURAL, field="metadata.labels")
async def on_update(name, namespace, body, meta, status, patch, logger: Logger, **kwargs):
    """Reconciles a DatadogAgent whose spec or labels changed."""
    await reconcile(
        name, namespace, body, meta, status, patch, logger, trigger_source="update"
    )


@kopf.on.delete(GROUP, VERSION, PLURAL, optional=True)
async def on_delete(name, namespace, body, meta, status, patch, logger: Logger, **kwargs):
    """Finalizes a DatadogAgent held by the operator's finalizer."""
    try:
        await reconcile(
            name, namespace, body, meta, status, patch, logger, trigger_source="delete"
        )
    finally:
        forget(name, namespace)


@kopf.timer(GROUP, VERSION, PLURAL, initial_delay=3.0, interval=RECONCILE_QUEUE_INTERVAL_SECONDS)
async def process_reconciliation_requests(
    name, namespace, body, meta, status, patch, logger: Logger, stopped, **kwargs
):
    """Process reconciliation requests from the queue.

    Processes each request exactly once, even if it was
    requested multiple times while processing another request.
    """
    if stopped:
        return
    key = queue_key(name, namespace)
    try:
        enqueued_at = reconciliation_queue[key].get_nowait()
    except asyncio.QueueEmpty:
        return

    sensor = get_sensor()
    if sensor:
        sensor.on_reconcile_dequeued(name, namespace, time.time() - enqueued_at)
    # Allow this key to be requeued while the pass runs
    names_in_queue.discard(key)

    start_time = time.time()
    try:
        await reconcile(
            name, namespace, body, meta, status, patch, logger, trigger_source="queue"
        )
    except kopf.TemporaryError as e:
        logger.warning(f"Reconciliation of {name} will be retried: {e}")
        schedule_reconciliation(name, namespace, e.delay or DatadogAgent.conf.api_retry_delay_seconds)
    except kopf.PermanentError as e:
        logger.error(f"Reconciliation of {name} stopped: {e}")
    else:
        logger.debug(
            f"Reconciliation for {name} completed in {time.time() - start_time:.2f} seconds"
        )


@kopf.timer(GROUP, VERSION, PLURAL, initial_delay=5.0, interval=REQUEUE_MEDIUM_SECONDS)
async def periodic_reconciliation(name, namespace, meta, logger: Logger, **kwargs):
    """Steady-state heartbeat. Skipped while the current generation failed fatally."""
    generation = (meta or {}).get("generation", 0)
    if failed_generations.get(queue_key(name, namespace)) == generation:
        logger.debug(
            f"Skipping heartbeat of {name}: generation {generation} failed fatally."
        )
        return
    await request_reconciliation(name, namespace)


@kopf.on.event("apps", "v1", "deployments", labels=MANAGED_BY)
@kopf.on.event("apps", "v1", "daemonsets", labels=MANAGED_BY)
@kopf.on.event("v1", "services", labels=MANAGED_BY)
@kopf.on.event("v1", "configmaps", labels=MANAGED_BY)
@kopf.on.event("v1", "secrets", labels=MANAGED_BY)
@kopf.on.event("policy", "v1", "poddisruptionbudgets", labels=MANAGED_BY)
async def on_dependent_event(type, name, namespace, labels, logger: Logger, **kwargs):
    """Enqueue the owning DatadogAgent when one of its dependents changes."""
    owner = (labels or {}).get(Labels.DATADOG_NAME_LABEL)
    if not owner or not namespace:
        return
    logger.debug(f"Dependent {name} changed ({type}), requesting reconciliation of {owner}.")
    await request_reconciliation(owner, namespace)

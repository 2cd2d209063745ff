import datetime
import kopf
from datadog_operator.handlers.datadogagent import names_in_queue, scheduled_requests


# Liveness probe
@kopf.on.probe(id="now")
def get_current_timestamp(**kwargs):
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


@kopf.on.probe(id="queued")
def get_queued_requests(**kwargs):
    """Number of DatadogAgents waiting for a pass, now or later."""
    return len(names_in_queue) + len(scheduled_requests)

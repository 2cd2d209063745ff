from typing import Any, Dict, Optional
from datadog_operator.resources import ClusterAgent, KINDS
from datadog_operator.utils.helpers import get_path

GATE_NAME = "cluster-agent-ready"


def ready(observed_deployment: Optional[Dict[str, Any]]) -> bool:
    """The cluster agent is ready once its Deployment exists and reports at
    least one available replica."""
    if not observed_deployment:
        return False
    return (get_path(observed_deployment, "/status/availableReplicas", 0) or 0) >= 1


async def cluster_agent_ready(cluster_agent: ClusterAgent) -> bool:
    observed = await cluster_agent.fetch(
        KINDS["Deployment"], cluster_agent.deployment_name, cluster_agent.namespace
    )
    return ready(observed)

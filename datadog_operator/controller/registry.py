"""Closed registry of the dependent objects a DatadogAgent can own.

Each :class:`Identity` maps to exactly one builder method of one component.
Builders return ``None`` when the object does not apply to the current spec
(feature disabled, RBAC managed by the user, no custom configuration).
"""

from typing import Any, Dict, NamedTuple, Optional, Tuple
from datadog_operator.resources import BaseComponent
from datadog_operator.utils.errors import BuilderError

AGENT = "agent"
CLUSTER_AGENT = "cluster-agent"
CLUSTER_CHECKS_RUNNER = "cluster-checks-runner"

COMPONENTS = (AGENT, CLUSTER_AGENT, CLUSTER_CHECKS_RUNNER)


class Identity(NamedTuple):
    kind: str
    role: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.role}"


class Builder(NamedTuple):
    component: str
    method: str
    #: identities that must have been applied before this one
    after: Tuple[Identity, ...] = ()


AGENT_CLUSTER_ROLE = Identity("ClusterRole", "agent")
AGENT_SERVICE_ACCOUNT = Identity("ServiceAccount", "agent")
AGENT_CLUSTER_ROLE_BINDING = Identity("ClusterRoleBinding", "agent")
AGENT_SYSTEM_PROBE_CONFIG = Identity("ConfigMap", "agent-system-probe")
AGENT_SECCOMP_PROFILE = Identity("ConfigMap", "agent-seccomp")
AGENT_CUSTOM_CONFIG = Identity("ConfigMap", "agent-custom-config")
AGENT_DAEMONSET = Identity("DaemonSet", "agent")

CLUSTER_AGENT_SECRET = Identity("Secret", "cluster-agent")
CLUSTER_AGENT_SERVICE = Identity("Service", "cluster-agent")
CLUSTER_AGENT_METRICS_SERVICE = Identity("Service", "cluster-agent-metrics-server")
CLUSTER_AGENT_PDB = Identity("PodDisruptionBudget", "cluster-agent")
CLUSTER_AGENT_CLUSTER_ROLE = Identity("ClusterRole", "cluster-agent")
CLUSTER_AGENT_ROLE = Identity("Role", "cluster-agent")
CLUSTER_AGENT_SERVICE_ACCOUNT = Identity("ServiceAccount", "cluster-agent")
CLUSTER_AGENT_ROLE_BINDING = Identity("RoleBinding", "cluster-agent")
CLUSTER_AGENT_CLUSTER_ROLE_BINDING = Identity("ClusterRoleBinding", "cluster-agent")
CLUSTER_AGENT_AUTH_DELEGATOR = Identity("ClusterRoleBinding", "cluster-agent-auth-delegator")
CLUSTER_AGENT_CUSTOM_CONFIG = Identity("ConfigMap", "cluster-agent-custom-config")
CLUSTER_AGENT_DEPLOYMENT = Identity("Deployment", "cluster-agent")

RUNNER_PDB = Identity("PodDisruptionBudget", "cluster-checks-runner")
RUNNER_SERVICE_ACCOUNT = Identity("ServiceAccount", "cluster-checks-runner")
RUNNER_CLUSTER_ROLE_BINDING = Identity("ClusterRoleBinding", "cluster-checks-runner")
RUNNER_CUSTOM_CONFIG = Identity("ConfigMap", "cluster-checks-runner-custom-config")
RUNNER_DEPLOYMENT = Identity("Deployment", "cluster-checks-runner")


BUILDERS: Dict[Identity, Builder] = {
    AGENT_CLUSTER_ROLE: Builder(AGENT, "prepare_agent_cluster_role"),
    AGENT_SERVICE_ACCOUNT: Builder(AGENT, "prepare_agent_service_account"),
    AGENT_CLUSTER_ROLE_BINDING: Builder(
        AGENT,
        "prepare_agent_cluster_role_binding",
        (AGENT_CLUSTER_ROLE, AGENT_SERVICE_ACCOUNT),
    ),
    AGENT_SYSTEM_PROBE_CONFIG: Builder(AGENT, "prepare_system_probe_config_map"),
    AGENT_SECCOMP_PROFILE: Builder(AGENT, "prepare_seccomp_config_map"),
    AGENT_CUSTOM_CONFIG: Builder(AGENT, "prepare_agent_custom_config_map"),
    # DaemonSet or ExtendedDaemonSet, depending on `agent.useExtendedDaemonset`
    AGENT_DAEMONSET: Builder(
        AGENT,
        "prepare_workload",
        (AGENT_SERVICE_ACCOUNT, AGENT_SYSTEM_PROBE_CONFIG, AGENT_SECCOMP_PROFILE),
    ),
    CLUSTER_AGENT_SECRET: Builder(CLUSTER_AGENT, "prepare_secret"),
    CLUSTER_AGENT_SERVICE: Builder(CLUSTER_AGENT, "prepare_service"),
    CLUSTER_AGENT_METRICS_SERVICE: Builder(CLUSTER_AGENT, "prepare_metrics_service"),
    CLUSTER_AGENT_PDB: Builder(CLUSTER_AGENT, "prepare_cluster_agent_pdb"),
    CLUSTER_AGENT_CLUSTER_ROLE: Builder(
        CLUSTER_AGENT, "prepare_cluster_agent_cluster_role"
    ),
    CLUSTER_AGENT_ROLE: Builder(CLUSTER_AGENT, "prepare_cluster_agent_role"),
    CLUSTER_AGENT_SERVICE_ACCOUNT: Builder(
        CLUSTER_AGENT, "prepare_cluster_agent_service_account"
    ),
    CLUSTER_AGENT_ROLE_BINDING: Builder(
        CLUSTER_AGENT,
        "prepare_cluster_agent_role_binding",
        (CLUSTER_AGENT_ROLE, CLUSTER_AGENT_SERVICE_ACCOUNT),
    ),
    CLUSTER_AGENT_CLUSTER_ROLE_BINDING: Builder(
        CLUSTER_AGENT,
        "prepare_cluster_agent_cluster_role_binding",
        (CLUSTER_AGENT_CLUSTER_ROLE, CLUSTER_AGENT_SERVICE_ACCOUNT),
    ),
    CLUSTER_AGENT_AUTH_DELEGATOR: Builder(
        CLUSTER_AGENT,
        "prepare_auth_delegator_binding",
        (CLUSTER_AGENT_SERVICE_ACCOUNT,),
    ),
    CLUSTER_AGENT_CUSTOM_CONFIG: Builder(
        CLUSTER_AGENT, "prepare_cluster_agent_custom_config_map"
    ),
    CLUSTER_AGENT_DEPLOYMENT: Builder(
        CLUSTER_AGENT,
        "prepare_deployment",
        (CLUSTER_AGENT_SECRET, CLUSTER_AGENT_SERVICE_ACCOUNT, CLUSTER_AGENT_CUSTOM_CONFIG),
    ),
    RUNNER_PDB: Builder(CLUSTER_CHECKS_RUNNER, "prepare_runner_pdb"),
    RUNNER_SERVICE_ACCOUNT: Builder(
        CLUSTER_CHECKS_RUNNER, "prepare_runner_service_account"
    ),
    RUNNER_CLUSTER_ROLE_BINDING: Builder(
        CLUSTER_CHECKS_RUNNER,
        "prepare_runner_cluster_role_binding",
        (AGENT_CLUSTER_ROLE, RUNNER_SERVICE_ACCOUNT),
    ),
    RUNNER_CUSTOM_CONFIG: Builder(
        CLUSTER_CHECKS_RUNNER, "prepare_runner_custom_config_map"
    ),
    RUNNER_DEPLOYMENT: Builder(
        CLUSTER_CHECKS_RUNNER,
        "prepare_deployment",
        (RUNNER_SERVICE_ACCOUNT, RUNNER_CUSTOM_CONFIG, CLUSTER_AGENT_SECRET),
    ),
}


def build(identity: Identity, components: Dict[str, BaseComponent]) -> Optional[Any]:
    """Build the desired manifest of `identity`.

    Returns None when its component is disabled or the object does not apply.
    Raises KeyError for an identity outside the registry.
    """
    builder = BUILDERS[identity]
    component = components.get(builder.component)
    if component is None:
        return None
    try:
        return getattr(component, builder.method)()
    except BuilderError:
        raise
    except (ValueError, TypeError) as e:
        raise BuilderError(f"Failed to build {identity}: {e}") from e

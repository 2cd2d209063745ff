"""Declared stage graph of a reconcile pass.

Stages run in declaration order. A stage applies its identities in order and
only runs once every stage it requires has run earlier in the list. Gated
stages wait for the cluster agent to report an available replica.
"""

from typing import List, NamedTuple, Sequence, Tuple
from datadog_operator.controller.registry import (
    AGENT,
    CLUSTER_AGENT,
    CLUSTER_CHECKS_RUNNER,
    BUILDERS,
    Identity,
    AGENT_CLUSTER_ROLE,
    AGENT_SERVICE_ACCOUNT,
    AGENT_CLUSTER_ROLE_BINDING,
    AGENT_SYSTEM_PROBE_CONFIG,
    AGENT_SECCOMP_PROFILE,
    AGENT_CUSTOM_CONFIG,
    AGENT_DAEMONSET,
    CLUSTER_AGENT_SECRET,
    CLUSTER_AGENT_SERVICE,
    CLUSTER_AGENT_METRICS_SERVICE,
    CLUSTER_AGENT_PDB,
    CLUSTER_AGENT_CLUSTER_ROLE,
    CLUSTER_AGENT_ROLE,
    CLUSTER_AGENT_SERVICE_ACCOUNT,
    CLUSTER_AGENT_ROLE_BINDING,
    CLUSTER_AGENT_CLUSTER_ROLE_BINDING,
    CLUSTER_AGENT_AUTH_DELEGATOR,
    CLUSTER_AGENT_CUSTOM_CONFIG,
    CLUSTER_AGENT_DEPLOYMENT,
    RUNNER_PDB,
    RUNNER_SERVICE_ACCOUNT,
    RUNNER_CLUSTER_ROLE_BINDING,
    RUNNER_CUSTOM_CONFIG,
    RUNNER_DEPLOYMENT,
)


class StageGraphError(Exception):
    """The declared stage graph is inconsistent."""


class Stage(NamedTuple):
    name: str
    component: str
    identities: Tuple[Identity, ...]
    requires: Tuple[str, ...] = ()
    #: skipped while the cluster agent is not ready
    gated: bool = False
    #: applies the component's workload; its status is recorded afterwards
    workload: bool = False
    #: a change here ends the pass with the medium requeue delay
    final: bool = False


STAGES: Tuple[Stage, ...] = (
    Stage(
        "agent-rbac",
        AGENT,
        (AGENT_CLUSTER_ROLE, AGENT_SERVICE_ACCOUNT, AGENT_CLUSTER_ROLE_BINDING),
    ),
    Stage("cluster-agent-secret", CLUSTER_AGENT, (CLUSTER_AGENT_SECRET,)),
    Stage(
        "cluster-agent-services",
        CLUSTER_AGENT,
        (CLUSTER_AGENT_SERVICE, CLUSTER_AGENT_METRICS_SERVICE),
        requires=("cluster-agent-secret",),
    ),
    Stage(
        "cluster-agent-pdb",
        CLUSTER_AGENT,
        (CLUSTER_AGENT_PDB,),
        requires=("cluster-agent-services",),
    ),
    Stage(
        "cluster-agent-rbac",
        CLUSTER_AGENT,
        (
            CLUSTER_AGENT_CLUSTER_ROLE,
            CLUSTER_AGENT_ROLE,
            CLUSTER_AGENT_SERVICE_ACCOUNT,
            CLUSTER_AGENT_ROLE_BINDING,
            CLUSTER_AGENT_CLUSTER_ROLE_BINDING,
            CLUSTER_AGENT_AUTH_DELEGATOR,
        ),
        requires=("cluster-agent-pdb",),
    ),
    Stage(
        "cluster-agent-config",
        CLUSTER_AGENT,
        (CLUSTER_AGENT_CUSTOM_CONFIG,),
        requires=("cluster-agent-rbac",),
    ),
    Stage(
        "cluster-agent-deployment",
        CLUSTER_AGENT,
        (CLUSTER_AGENT_DEPLOYMENT,),
        requires=("cluster-agent-secret", "cluster-agent-rbac", "cluster-agent-config"),
        workload=True,
    ),
    Stage(
        "cluster-checks-runner-pdb",
        CLUSTER_CHECKS_RUNNER,
        (RUNNER_PDB,),
        requires=("cluster-agent-deployment",),
        gated=True,
    ),
    Stage(
        "cluster-checks-runner-rbac",
        CLUSTER_CHECKS_RUNNER,
        (RUNNER_SERVICE_ACCOUNT, RUNNER_CLUSTER_ROLE_BINDING),
        requires=("agent-rbac", "cluster-checks-runner-pdb"),
        gated=True,
    ),
    Stage(
        "cluster-checks-runner-config",
        CLUSTER_CHECKS_RUNNER,
        (RUNNER_CUSTOM_CONFIG,),
        requires=("cluster-checks-runner-rbac",),
        gated=True,
    ),
    Stage(
        "cluster-checks-runner-deployment",
        CLUSTER_CHECKS_RUNNER,
        (RUNNER_DEPLOYMENT,),
        requires=("cluster-checks-runner-rbac", "cluster-checks-runner-config"),
        gated=True,
        workload=True,
    ),
    Stage(
        "agent-config",
        AGENT,
        (AGENT_SYSTEM_PROBE_CONFIG, AGENT_SECCOMP_PROFILE, AGENT_CUSTOM_CONFIG),
        gated=True,
    ),
    Stage(
        "agent-daemonset",
        AGENT,
        (AGENT_DAEMONSET,),
        requires=("agent-rbac", "agent-config"),
        gated=True,
        workload=True,
        final=True,
    ),
)


def validate_graph(stages: Sequence[Stage]) -> None:
    """Check the stage graph without touching the cluster.

    * stage names are unique and prerequisites are declared earlier;
    * every identity is registered and applied exactly once, by a stage of
      the component that builds it;
    * every identity comes after the identities it references, so that a
      binding never precedes its role or service account.
    """
    seen_stages = set()
    applied: List[Identity] = []
    for stage in stages:
        if stage.name in seen_stages:
            raise StageGraphError(f"Duplicate stage `{stage.name}`.")
        for required in stage.requires:
            if required not in seen_stages:
                raise StageGraphError(
                    f"Stage `{stage.name}` requires `{required}` which does not run before it."
                )
        for identity in stage.identities:
            builder = BUILDERS.get(identity)
            if builder is None:
                raise StageGraphError(f"No builder registered for {identity}.")
            if builder.component != stage.component:
                raise StageGraphError(
                    f"{identity} is built by `{builder.component}`, not `{stage.component}`."
                )
            if identity in applied:
                raise StageGraphError(f"{identity} is applied twice.")
            for dependency in builder.after:
                if dependency not in applied:
                    raise StageGraphError(
                        f"{identity} must be applied after {dependency}."
                    )
            applied.append(identity)
        seen_stages.add(stage.name)
    missing = set(BUILDERS) - set(applied)
    if missing:
        raise StageGraphError(
            f"Registered identities never applied: {sorted(str(i) for i in missing)}."
        )


validate_graph(STAGES)

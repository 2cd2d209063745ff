import logging
from logging import Logger
from typing import Any, Dict, List, Optional, Tuple
from marshmallow import ValidationError
from datadog_operator.controller.gate import GATE_NAME, cluster_agent_ready, ready
from datadog_operator.controller.registry import (
    AGENT,
    CLUSTER_AGENT,
    CLUSTER_CHECKS_RUNNER,
    build,
)
from datadog_operator.controller.requeue import Outcome, ReconcileResult, compute_requeue
from datadog_operator.controller.stages import STAGES, Stage
from datadog_operator.controller.status import StatusAccumulator
from datadog_operator.resources import (
    BaseResource,
    BaseComponent,
    NodeAgent,
    ClusterAgent,
    ClusterChecksRunner,
    DatadogAgent,
    KINDS,
)
from datadog_operator.types.models import DatadogAgentSpec
from datadog_operator.types.schemas import DatadogAgentSpecSchema
from datadog_operator.types.settings import Settings
from datadog_operator.utils.errors import (
    BuilderError,
    ConfigurationError,
    OwnershipConflictError,
    ReconcileError,
)
from datadog_operator.utils.helpers import get_path, serialize

MANDATORY_SECTIONS = ("image", "config", "rbac")


class Reconciler:
    """Moves the dependents of one DatadogAgent one step toward its spec.

    A pass loads the custom resource, handles deletion and the finalizer,
    validates the DatadogAgent spec, walks :data:`STAGES` through the create-or-update
    primitive, commits the status once and returns a requeue directive.
    Kubernetes API errors are not handled here; they propagate to the caller.
    """

    conf: Settings
    logger: Logger

    def __init__(self, conf: Settings = None, logger: Logger = None):
        self.conf = conf or Settings()
        self.logger = logger or logging.getLogger(__name__)

    @property
    def sensor(self):
        return BaseResource.sensor

    async def reconcile(self, name: str, namespace: str) -> ReconcileResult:
        root = DatadogAgent(name, namespace)
        root.logger = self.logger

        body = await root.load()
        if body is None:
            self.logger.info(f"DatadogAgent `{name}` not found, nothing to do.")
            return compute_requeue(Outcome.NOT_FOUND, self.conf)

        if root.being_deleted(body):
            if root.has_finalizer(body):
                deleted = await root.cleanup(get_path(body, "/metadata/uid"))
                self.logger.info(
                    f"Finalized DatadogAgent `{name}` ({len(deleted)} cluster-scoped objects deleted)."
                )
                await root.remove_finalizer(body)
            return compute_requeue(Outcome.DELETED, self.conf)

        if not root.has_finalizer(body):
            await root.add_finalizer(body)
            return compute_requeue(Outcome.FINALIZER_ADDED, self.conf)

        try:
            spec = self.validate(body.get("spec"))
            components = self.prepare_components(name, namespace, spec, body)
            accumulator = StatusAccumulator(body.get("status"))
            for component_name, component in components.items():
                accumulator.guard_rename(component_name, component.workload_name())
            outcome = await self.run_stages(name, namespace, components, accumulator)
        except BuilderError as e:
            self.logger.exception(e)
            return compute_requeue(Outcome.FAILED, self.conf, e)
        except ReconcileError as e:
            self.logger.error(f"Reconcile of DatadogAgent `{name}` failed: {e}")
            return compute_requeue(Outcome.FAILED, self.conf, e)

        await self.commit_status(root, accumulator)
        return compute_requeue(outcome, self.conf)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, spec: Optional[Dict[str, Any]]) -> DatadogAgentSpec:
        """Load the DatadogAgent spec and check the sections the admission webhook defaults."""
        try:
            spec_model: DatadogAgentSpec = DatadogAgentSpecSchema().load(spec or {})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid DatadogAgent spec: {e.messages}") from e

        if spec_model.agent is None:
            raise ConfigurationError("Missing defaulted section `agent`.")

        missing = self._missing_sections("agent", spec_model.agent)
        if spec_model.cluster_agent_enabled:
            missing += self._missing_sections("clusterAgent", spec_model.cluster_agent)
        if spec_model.cluster_checks_runner_enabled:
            if not spec_model.cluster_agent_enabled:
                raise ConfigurationError(
                    "`clusterChecksRunner` requires an enabled `clusterAgent`."
                )
            missing += self._missing_sections(
                "clusterChecksRunner", spec_model.cluster_checks_runner
            )
        if missing:
            raise ConfigurationError(
                f"Missing defaulted sections: {', '.join(missing)}."
            )
        return spec_model

    @staticmethod
    def _missing_sections(prefix: str, section: Any) -> List[str]:
        return [
            f"{prefix}.{attr}"
            for attr in MANDATORY_SECTIONS
            if getattr(section, attr, None) is None
        ]

    def prepare_components(
        self,
        name: str,
        namespace: str,
        spec: DatadogAgentSpec,
        body: Dict[str, Any],
    ) -> Dict[str, BaseComponent]:
        """Component resources of the enabled parts of the DatadogAgent spec."""
        labels = get_path(body, "/metadata/labels", {})
        use_eds = bool(spec.agent.use_extended_daemonset)
        if use_eds and not self.conf.support_extended_daemonset:
            self.logger.warning(
                "`agent.useExtendedDaemonset` is set but ExtendedDaemonSet support "
                "is disabled; deploying a DaemonSet."
            )
            use_eds = False

        components = {
            AGENT: NodeAgent.from_spec(
                name,
                namespace,
                spec,
                body,
                labels,
                self.logger,
                use_extended_daemonset=use_eds,
            )
        }
        if spec.cluster_agent_enabled:
            components[CLUSTER_AGENT] = ClusterAgent.from_spec(
                name, namespace, spec, body, labels, self.logger
            )
        if spec.cluster_checks_runner_enabled:
            components[CLUSTER_CHECKS_RUNNER] = ClusterChecksRunner.from_spec(
                name, namespace, spec, body, labels, self.logger
            )
        return components

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def run_stages(
        self,
        name: str,
        namespace: str,
        components: Dict[str, BaseComponent],
        accumulator: StatusAccumulator,
    ) -> Outcome:
        gate_open: Optional[bool] = None
        observed_workloads: Dict[str, Optional[Dict]] = {}
        blocked: List[str] = []

        for stage in STAGES:
            component = components.get(stage.component)
            if component is None:
                continue

            if stage.gated:
                if gate_open is None:
                    gate_open = await self.gate_open(components, observed_workloads)
                if not gate_open:
                    blocked.append(stage.name)
                    continue

            replaced = False
            if stage.workload and stage.component == AGENT:
                replaced = await self.retire_replaced_workload(component, accumulator)

            changed, manifests = await self.apply_stage(stage, component, components)
            changed = changed or replaced

            if stage.workload and manifests:
                observed_workloads[stage.component] = await self.record_status(
                    stage, component, manifests[-1], accumulator, changed
                )

            if changed:
                if stage.final:
                    return Outcome.FINAL_CHANGED
                self.logger.info(f"Stage `{stage.name}` changed the cluster.")
                return Outcome.STAGE_CHANGED

        if blocked:
            self.sensor.on_gate_blocked(name, namespace, GATE_NAME, blocked)
            self.logger.info(
                f"Cluster agent is not ready yet, skipped: {', '.join(blocked)}."
            )
            return Outcome.GATE_BLOCKED
        return Outcome.CONVERGED

    async def apply_stage(
        self,
        stage: Stage,
        component: BaseComponent,
        components: Dict[str, BaseComponent],
    ) -> Tuple[bool, List[Any]]:
        changed, manifests = False, []
        for identity in stage.identities:
            manifest = build(identity, components)
            if manifest is None:
                continue
            manifests.append(manifest)
            applied = await component.apply(
                manifest,
                component=stage.component,
                patch_paths=component.patch_paths_for(identity.kind),
            )
            changed = applied or changed
        return changed, manifests

    async def retire_replaced_workload(
        self, agent: NodeAgent, accumulator: StatusAccumulator
    ) -> bool:
        """Delete the node agent workload of the previously applied kind.

        Switching between DaemonSet and ExtendedDaemonSet keeps the workload
        name, so the old kind has to go before the new one is created.
        """
        previous = accumulator.live_kind(AGENT)
        if previous is None or previous == agent.workload_kind:
            return False
        kind = KINDS[previous]
        name = agent.workload_name()
        observed = await agent.fetch(kind, name, agent.namespace)
        if observed is None:
            return False
        if agent.controller_uid(observed) != (agent.owner_reference or {}).get("uid"):
            raise OwnershipConflictError(
                f"{previous} `{name}` is not controlled by this DatadogAgent; "
                f"refusing to replace it with a {agent.workload_kind}."
            )
        deleted = await agent.delete(kind, name, agent.namespace)
        if deleted:
            self.logger.info(
                f"Deleted {previous} `{name}`, replaced by a {agent.workload_kind}."
            )
        return deleted

    async def gate_open(
        self,
        components: Dict[str, BaseComponent],
        observed_workloads: Dict[str, Optional[Dict]],
    ) -> bool:
        cluster_agent = components.get(CLUSTER_AGENT)
        if cluster_agent is None:
            return True
        if CLUSTER_AGENT in observed_workloads:
            return ready(observed_workloads[CLUSTER_AGENT])
        return await cluster_agent_ready(cluster_agent)

    async def record_status(
        self,
        stage: Stage,
        component: BaseComponent,
        manifest: Any,
        accumulator: StatusAccumulator,
        changed: bool,
    ) -> Optional[Dict]:
        kind = KINDS[serialize(manifest)["kind"]]
        workload_name = component.workload_name()
        observed = await component.fetch(kind, workload_name, component.namespace)
        accumulator.record(
            stage.component,
            workload_name,
            component.manifest_hash(manifest),
            observed,
            changed,
            kind=kind.kind,
        )
        return observed

    async def commit_status(self, root: DatadogAgent, accumulator: StatusAccumulator):
        updates = accumulator.prepare_commit()
        if not updates:
            return
        await root.patch_status(updates)
        self.sensor.on_status_update(root.name, root.namespace, updates)

import base64
import secrets
from typing import List, Optional, Tuple
from datadog_operator.resources.component import BaseComponent
from datadog_operator.types.base import optional
from datadog_operator.types.models import (
    DatadogAgentResources,
    ClusterAgentSpec,
    ClusterAgentConfig,
)
from datadog_operator.utils.objects import cached_property
from kubernetes_asyncio.client import (
    V1ObjectMeta,
    V1Secret,
    V1Service,
    V1ServiceSpec,
    V1ServicePort,
    V1PolicyRule,
    V1Deployment,
    V1DeploymentSpec,
    V1LabelSelector,
    V1PodTemplateSpec,
    V1PodSpec,
    V1Container,
    V1ContainerPort,
    V1EnvVar,
    V1Probe,
    V1HTTPGetAction,
)


class ClusterAgent(BaseComponent):
    """Datadog Cluster Agent: cluster level collection on behalf of the node
    agents, optionally serving external metrics to the HPA controller."""

    COMPONENT = "cluster-agent"
    CONTAINER_NAME = "cluster-agent"
    AGENT_PORT = 5005
    AGENT_PORT_NAME = "agentport"
    METRICS_PORT_NAME = "metricsapi"
    METRICS_SERVICE_PORT = 443
    TOKEN_KEY = "token"
    TOKEN_PLACEHOLDER = "<generated>"
    AUTH_DELEGATOR_ROLE = "system:auth-delegator"

    @property
    def component_spec(self) -> ClusterAgentSpec:
        return self.spec.cluster_agent

    @property
    def config(self) -> ClusterAgentConfig:
        return self.spec.cluster_agent.config

    @cached_property
    def rbac_name(self) -> str:
        return DatadogAgentResources.cluster_agent_name(self.name)

    @cached_property
    def service_account_name(self) -> str:
        return DatadogAgentResources.cluster_agent_service_account_name(
            self.name, optional(self.component_spec.rbac, "service_account_name")
        )

    @cached_property
    def deployment_name(self) -> str:
        return DatadogAgentResources.cluster_agent_deployment_name(
            self.name, self.component_spec.deployment_name
        )

    def workload_name(self) -> str:
        return self.deployment_name

    @cached_property
    def secret_name(self) -> str:
        return DatadogAgentResources.cluster_agent_secret_name(self.name)

    @cached_property
    def external_metrics_enabled(self) -> bool:
        return bool(optional(self.config.external_metrics, "enabled", False))

    @cached_property
    def metrics_port(self) -> int:
        return self.validate_port(
            self.config.external_metrics.port,
            "clusterAgent.config.externalMetrics.port",
        )

    @cached_property
    def cluster_checks_enabled(self) -> bool:
        return bool(self.config.cluster_checks_enabled)

    @cached_property
    def token_generated(self) -> bool:
        return not self.spec.credentials.token

    def patch_paths_for(self, kind: str) -> Optional[Tuple[str, ...]]:
        # a generated token must survive later passes
        if kind == "Secret" and self.token_generated:
            return ()
        return None

    # ------------------------------------------------------------------
    # Secret and services
    # ------------------------------------------------------------------

    def prepare_secret(self) -> V1Secret:
        """Build the Secret holding the token shared by node and cluster agents.

        A generated token is never part of the fingerprint, otherwise every
        pass would produce a new one.
        """
        secret = V1Secret(
            api_version="v1",
            kind="Secret",
            type="Opaque",
            metadata=self.prepare_metadata(self.secret_name),
            data={self.TOKEN_KEY: self._encode(self.TOKEN_PLACEHOLDER)},
        )
        if not self.token_generated:
            secret.data = {self.TOKEN_KEY: self._encode(self.spec.credentials.token)}
            return self.stamp(secret)
        self.stamp(secret)
        secret.data = {self.TOKEN_KEY: self._encode(secrets.token_hex(16))}
        return secret

    @staticmethod
    def _encode(value: str) -> str:
        return base64.b64encode(value.encode()).decode()

    def prepare_service(self) -> V1Service:
        service = V1Service(
            api_version="v1",
            kind="Service",
            metadata=self.prepare_metadata(
                DatadogAgentResources.cluster_agent_service_name(self.name)
            ),
            spec=V1ServiceSpec(
                type="ClusterIP",
                selector=self.prepare_selector(),
                ports=[
                    V1ServicePort(
                        name=self.AGENT_PORT_NAME,
                        port=self.AGENT_PORT,
                        target_port=self.AGENT_PORT,
                        protocol="TCP",
                    )
                ],
            ),
        )
        return self.stamp(service)

    def prepare_metrics_service(self) -> Optional[V1Service]:
        if not self.external_metrics_enabled:
            return None
        service = V1Service(
            api_version="v1",
            kind="Service",
            metadata=self.prepare_metadata(
                DatadogAgentResources.metrics_server_service_name(self.name)
            ),
            spec=V1ServiceSpec(
                type="ClusterIP",
                selector=self.prepare_selector(),
                ports=[
                    V1ServicePort(
                        name=self.METRICS_PORT_NAME,
                        port=self.METRICS_SERVICE_PORT,
                        target_port=self.metrics_port,
                        protocol="TCP",
                    )
                ],
            ),
        )
        return self.stamp(service)

    def prepare_cluster_agent_pdb(self):
        return self.prepare_pod_disruption_budget(self.rbac_name)

    # ------------------------------------------------------------------
    # RBAC
    # ------------------------------------------------------------------

    def prepare_cluster_policy_rules(self) -> List[V1PolicyRule]:
        return [
            V1PolicyRule(
                api_groups=[""],
                resources=[
                    "services",
                    "events",
                    "endpoints",
                    "pods",
                    "nodes",
                    "componentstatuses",
                ],
                verbs=["get", "list", "watch"],
            ),
            V1PolicyRule(
                api_groups=["quota.openshift.io"],
                resources=["clusterresourcequotas"],
                verbs=["get", "list"],
            ),
            V1PolicyRule(
                api_groups=["autoscaling"],
                resources=["horizontalpodautoscalers"],
                verbs=["list", "watch"],
            ),
            V1PolicyRule(api_groups=[""], resources=["events"], verbs=["create"]),
            V1PolicyRule(non_resource_urls=["/version", "/healthz"], verbs=["get"]),
        ]

    def prepare_namespace_policy_rules(self) -> List[V1PolicyRule]:
        return [
            V1PolicyRule(
                api_groups=[""],
                resources=["configmaps"],
                resource_names=["datadogtoken", "datadog-leader-election"],
                verbs=["get", "update"],
            ),
            V1PolicyRule(api_groups=[""], resources=["configmaps"], verbs=["create"]),
        ]

    def prepare_cluster_agent_cluster_role(self):
        if not self.rbac_enabled:
            return None
        return self.prepare_cluster_role(
            self.rbac_name, self.prepare_cluster_policy_rules()
        )

    def prepare_cluster_agent_role(self):
        if not self.rbac_enabled:
            return None
        return self.prepare_role(self.rbac_name, self.prepare_namespace_policy_rules())

    def prepare_cluster_agent_service_account(self):
        if not self.rbac_enabled:
            return None
        return self.prepare_service_account(self.service_account_name)

    def prepare_cluster_agent_role_binding(self):
        if not self.rbac_enabled:
            return None
        return self.prepare_role_binding(
            self.rbac_name, self.rbac_name, self.service_account_name
        )

    def prepare_cluster_agent_cluster_role_binding(self):
        if not self.rbac_enabled:
            return None
        return self.prepare_cluster_role_binding(
            self.rbac_name, self.rbac_name, self.service_account_name
        )

    def prepare_auth_delegator_binding(self):
        """Lets the metrics server delegate authentication to the API server."""
        if not (self.rbac_enabled and self.external_metrics_enabled):
            return None
        return self.prepare_cluster_role_binding(
            DatadogAgentResources.auth_delegator_name(self.name),
            self.AUTH_DELEGATOR_ROLE,
            self.service_account_name,
        )

    def prepare_cluster_agent_custom_config_map(self):
        return self.prepare_custom_config_map(
            DatadogAgentResources.cluster_agent_custom_config_name(self.name)
        )

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    def prepare_env_vars(self) -> List[V1EnvVar]:
        config = self.config
        env_vars = self.prepare_site_env_vars()
        env_vars.extend(
            [
                self.env("DD_CLUSTER_CHECKS_ENABLED", self.cluster_checks_enabled),
                self.env(
                    "DD_CLUSTER_AGENT_KUBERNETES_SERVICE_NAME",
                    DatadogAgentResources.cluster_agent_service_name(self.name),
                ),
                self.env_from_secret(
                    "DD_CLUSTER_AGENT_AUTH_TOKEN", self.secret_name, self.TOKEN_KEY
                ),
                self.env("DD_LEADER_ELECTION", True),
                self.prepare_api_key_env(),
            ]
        )
        if config.log_level:
            env_vars.append(self.env("DD_LOG_LEVEL", config.log_level))
        if config.collect_events is not None:
            env_vars.append(
                self.env("DD_COLLECT_KUBERNETES_EVENTS", config.collect_events)
            )
        if self.cluster_checks_enabled:
            env_vars.append(self.env("DD_EXTRA_CONFIG_PROVIDERS", "kube_services"))
            env_vars.append(self.env("DD_EXTRA_LISTENERS", "kube_services"))
        if self.external_metrics_enabled:
            env_vars.append(self.env("DD_EXTERNAL_METRICS_PROVIDER_ENABLED", True))
            env_vars.append(
                self.env("DD_EXTERNAL_METRICS_PROVIDER_PORT", self.metrics_port)
            )
            app_key = self.prepare_app_key_env()
            if app_key is not None:
                env_vars.append(app_key)
        return self.merge_env_vars(
            env_vars, self.prepare_container_env_vars(config.env)
        )

    def prepare_container_ports(self) -> List[V1ContainerPort]:
        ports = [
            V1ContainerPort(
                name=self.AGENT_PORT_NAME,
                container_port=self.AGENT_PORT,
                protocol="TCP",
            )
        ]
        if self.external_metrics_enabled:
            ports.append(
                V1ContainerPort(
                    name=self.METRICS_PORT_NAME,
                    container_port=self.metrics_port,
                    protocol="TCP",
                )
            )
        return ports

    def prepare_metrics_probe(self) -> V1Probe:
        return V1Probe(
            http_get=V1HTTPGetAction(
                path="/healthz", port=self.metrics_port, scheme="HTTPS"
            ),
            initial_delay_seconds=15,
            period_seconds=15,
            timeout_seconds=5,
            failure_threshold=6,
            success_threshold=1,
        )

    def prepare_container(self) -> V1Container:
        probes = {}
        if self.external_metrics_enabled:
            probes = dict(
                liveness_probe=self.prepare_metrics_probe(),
                readiness_probe=self.prepare_metrics_probe(),
            )
        _, custom_mounts = self.prepare_custom_config_volumes(
            DatadogAgentResources.cluster_agent_custom_config_name(self.name)
        )
        mounts = custom_mounts + self.prepare_container_volume_mounts(
            self.config.volume_mounts
        )
        return V1Container(
            name=self.CONTAINER_NAME,
            image=self.image,
            image_pull_policy=self.image_pull_policy,
            ports=self.prepare_container_ports(),
            env=self.prepare_env_vars(),
            volume_mounts=mounts or None,
            **probes,
            **self.prepare_resource_requirements(self.config.resources),
        )

    def prepare_pod_template(self) -> V1PodTemplateSpec:
        spec = self.component_spec
        custom_volumes, _ = self.prepare_custom_config_volumes(
            DatadogAgentResources.cluster_agent_custom_config_name(self.name)
        )
        volumes = custom_volumes + list(self.config.volumes or [])
        return V1PodTemplateSpec(
            metadata=V1ObjectMeta(
                labels=self.prepare_labels(self.deployment_name).as_dict(),
                annotations=dict(self.additional_annotations),
            ),
            spec=V1PodSpec(
                service_account_name=self.service_account_name,
                image_pull_secrets=self.image_pull_secrets,
                priority_class_name=spec.priority_class_name,
                affinity=self.prepare_affinity(self.deployment_name, spec.affinity),
                tolerations=spec.tolerations or None,
                node_selector=spec.node_selector or None,
                containers=[self.prepare_container()],
                volumes=volumes or None,
            ),
        )

    def prepare_deployment(self) -> V1Deployment:
        """Build deployment resource."""
        deployment = V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=self.prepare_metadata(self.deployment_name),
            spec=V1DeploymentSpec(
                replicas=self.component_spec.replicas,
                selector=V1LabelSelector(match_labels=self.prepare_selector()),
                template=self.prepare_pod_template(),
            ),
        )
        return self.stamp(deployment)

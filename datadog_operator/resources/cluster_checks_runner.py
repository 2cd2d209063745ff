from typing import List
from datadog_operator.resources.component import BaseComponent
from datadog_operator.types.base import optional
from datadog_operator.types.models import (
    DatadogAgentResources,
    ClusterChecksRunnerSpec,
    ClusterChecksRunnerConfig,
)
from datadog_operator.utils.objects import cached_property
from kubernetes_asyncio.client import (
    V1ObjectMeta,
    V1Deployment,
    V1DeploymentSpec,
    V1LabelSelector,
    V1PodTemplateSpec,
    V1PodSpec,
    V1Container,
    V1EnvVar,
    V1Volume,
    V1VolumeMount,
    V1EmptyDirVolumeSource,
)


class ClusterChecksRunner(BaseComponent):
    """Agents dedicated to running checks dispatched by the cluster agent."""

    COMPONENT = "cluster-checks-runner"
    CONTAINER_NAME = "cluster-checks-runner"

    @property
    def component_spec(self) -> ClusterChecksRunnerSpec:
        return self.spec.cluster_checks_runner

    @property
    def config(self) -> ClusterChecksRunnerConfig:
        return self.spec.cluster_checks_runner.config

    @cached_property
    def rbac_name(self) -> str:
        return DatadogAgentResources.cluster_checks_runner_name(self.name)

    @cached_property
    def service_account_name(self) -> str:
        return DatadogAgentResources.cluster_checks_runner_service_account_name(
            self.name, optional(self.component_spec.rbac, "service_account_name")
        )

    @cached_property
    def deployment_name(self) -> str:
        return DatadogAgentResources.cluster_checks_runner_deployment_name(
            self.name, self.component_spec.deployment_name
        )

    def workload_name(self) -> str:
        return self.deployment_name

    def prepare_runner_pdb(self):
        return self.prepare_pod_disruption_budget(self.rbac_name)

    def prepare_runner_service_account(self):
        if not self.rbac_enabled:
            return None
        return self.prepare_service_account(self.service_account_name)

    def prepare_runner_cluster_role_binding(self):
        """Runners reuse the node agent ClusterRole."""
        if not self.rbac_enabled:
            return None
        return self.prepare_cluster_role_binding(
            self.rbac_name,
            DatadogAgentResources.agent_name(self.name),
            self.service_account_name,
        )

    def prepare_runner_custom_config_map(self):
        return self.prepare_custom_config_map(
            DatadogAgentResources.cluster_checks_runner_custom_config_name(self.name)
        )

    def prepare_env_vars(self) -> List[V1EnvVar]:
        env_vars = [self.prepare_api_key_env()]
        env_vars.extend(self.prepare_site_env_vars())
        env_vars.extend(
            [
                self.env("DD_CLUSTER_AGENT_ENABLED", True),
                self.env(
                    "DD_CLUSTER_AGENT_KUBERNETES_SERVICE_NAME",
                    DatadogAgentResources.cluster_agent_service_name(self.name),
                ),
                self.env_from_secret(
                    "DD_CLUSTER_AGENT_AUTH_TOKEN",
                    DatadogAgentResources.cluster_agent_secret_name(self.name),
                    "token",
                ),
                self.env("DD_EXTRA_CONFIG_PROVIDERS", "clusterchecks"),
                self.env("DD_HEALTH_PORT", self.HEALTH_PORT),
                self.env("DD_CLC_RUNNER_ENABLED", True),
                self.env_from_field("DD_CLC_RUNNER_HOST", "status.podIP"),
                # runners only run checks; host metadata comes from node agents
                self.env("DD_ENABLE_METADATA_COLLECTION", False),
            ]
        )
        if self.config.log_level:
            env_vars.append(self.env("DD_LOG_LEVEL", self.config.log_level))
        return self.merge_env_vars(
            env_vars, self.prepare_container_env_vars(self.config.env)
        )

    def prepare_container(self) -> V1Container:
        _, custom_mounts = self.prepare_custom_config_volumes(
            DatadogAgentResources.cluster_checks_runner_custom_config_name(self.name)
        )
        mounts = [
            V1VolumeMount(name="config", mount_path="/etc/datadog-agent"),
            V1VolumeMount(name="logdatadog", mount_path="/var/log/datadog"),
        ]
        mounts.extend(custom_mounts)
        mounts.extend(self.prepare_container_volume_mounts(self.config.volume_mounts))
        return V1Container(
            name=self.CONTAINER_NAME,
            image=self.image,
            image_pull_policy=self.image_pull_policy,
            command=["agent", "run"],
            env=self.prepare_env_vars(),
            volume_mounts=mounts,
            liveness_probe=self.prepare_health_probe("/live", None),
            readiness_probe=self.prepare_health_probe("/ready", None),
            **self.prepare_resource_requirements(self.config.resources),
        )

    def prepare_pod_template(self) -> V1PodTemplateSpec:
        spec = self.component_spec
        custom_volumes, _ = self.prepare_custom_config_volumes(
            DatadogAgentResources.cluster_checks_runner_custom_config_name(self.name)
        )
        volumes = [
            V1Volume(name="config", empty_dir=V1EmptyDirVolumeSource()),
            V1Volume(name="logdatadog", empty_dir=V1EmptyDirVolumeSource()),
        ]
        volumes.extend(custom_volumes)
        volumes.extend(self.config.volumes or [])
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
                volumes=volumes,
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

import logging
from logging import Logger
from typing import Any, Dict, List, Optional, Tuple
from datadog_operator.resources.base import BaseResource
from datadog_operator.common.models.labels import Labels
from datadog_operator.types.models import (
    ContainerEnvVar,
    VolumeMount,
    ResourceRequirements,
    Probe,
    DatadogAgentSpec,
)
from datadog_operator.utils.errors import BuilderError
from datadog_operator.utils.helpers import serialize
from kubernetes_asyncio.client import (
    V1ObjectMeta,
    V1ServiceAccount,
    V1ClusterRole,
    V1Role,
    V1PolicyRule,
    V1ClusterRoleBinding,
    V1RoleBinding,
    V1RoleRef,
    V1PodDisruptionBudget,
    V1PodDisruptionBudgetSpec,
    V1LabelSelector,
    V1ConfigMap,
    V1EnvVar,
    V1EnvVarSource,
    V1ConfigMapKeySelector,
    V1SecretKeySelector,
    V1ObjectFieldSelector,
    V1VolumeMount,
    V1Volume,
    V1ConfigMapVolumeSource,
    V1ResourceRequirements,
    V1Affinity,
    V1PodAntiAffinity,
    V1WeightedPodAffinityTerm,
    V1PodAffinityTerm,
    V1Probe,
    V1HTTPGetAction,
)


class BaseComponent(BaseResource):
    """A deployable part of a DatadogAgent (node agent, cluster agent,
    cluster-checks runner) and the builders shared by all of them."""

    COMPONENT: str = None
    DEFAULT_IMAGE_TAG = "latest"
    API_KEY_SECRET_KEY = "api_key"
    APP_KEY_SECRET_KEY = "app_key"
    CUSTOM_CONFIG_KEY = "datadog.yaml"
    CUSTOM_CONFIG_VOLUME = "custom-datadog-yaml"
    CUSTOM_CONFIG_MOUNT_PATH = "/etc/datadog-agent/datadog.yaml"
    HEALTH_PORT = 5555
    ANTI_AFFINITY_WEIGHT = 50
    ANTI_AFFINITY_TOPOLOGY_KEY = "kubernetes.io/hostname"

    spec: DatadogAgentSpec
    owner_labels: Dict[str, str]

    def __init__(
        self,
        name: str,
        namespace: str,
        spec: DatadogAgentSpec,
        owner: Dict[str, Any] = None,
        owner_labels: Dict[str, str] = None,
    ):
        super().__init__(name, namespace, owner)
        self.spec = spec
        self.owner_labels = dict(owner_labels or {})

    @classmethod
    def from_spec(
        cls,
        name: str,
        namespace: str,
        spec: DatadogAgentSpec,
        owner: Dict[str, Any] = None,
        labels: Dict[str, str] = None,
        logger: Logger = None,
        **kwargs,
    ) -> "BaseComponent":
        component = cls(name, namespace, spec, owner, labels, **kwargs)
        component.logger = logger or logging.getLogger(__name__)
        return component

    @property
    def component_spec(self):
        """The section of the DatadogAgent spec describing this component."""
        raise NotImplementedError()

    @property
    def image(self) -> str:
        return self.component_spec.image.name

    @property
    def image_pull_policy(self) -> Optional[str]:
        return self.component_spec.image.pull_policy

    @property
    def image_pull_secrets(self) -> Optional[List[Dict[str, str]]]:
        return self.component_spec.image.pull_secrets or None

    @property
    def image_tag(self) -> str:
        """Tag of the image, used as `app.kubernetes.io/version`."""
        image = self.image or ""
        last = image.rsplit("/", 1)[-1]
        if "@" in last:
            return last.rsplit("@", 1)[-1].replace(":", "-")
        if ":" in last:
            return last.rsplit(":", 1)[-1]
        return self.DEFAULT_IMAGE_TAG

    @property
    def additional_labels(self) -> Dict[str, str]:
        return self.component_spec.additional_labels or {}

    @property
    def additional_annotations(self) -> Dict[str, str]:
        return self.component_spec.additional_annotations or {}

    @property
    def rbac_enabled(self) -> bool:
        rbac = self.component_spec.rbac
        return rbac is not None and rbac.create is not False

    @property
    def custom_config_data(self) -> Optional[str]:
        custom_config = self.component_spec.custom_config
        return custom_config.config_data if custom_config else None

    def patch_paths_for(self, kind: str) -> Optional[Tuple[str, ...]]:
        """Patch paths overriding the defaults of `kind`; None keeps the defaults."""
        return None

    def workload_name(self) -> str:
        raise NotImplementedError()

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def prepare_labels(self, resource_name: str) -> Labels:
        labels = Labels.generate_default_labels(
            self.name,
            self.COMPONENT,
            resource_name,
            self.image_tag,
            self.OPERATOR_NAME,
        )
        labels.update(self.owner_labels)
        labels.update(self.additional_labels)
        return labels

    def prepare_selector(self) -> Dict[str, str]:
        """Selector labels of this component's pods."""
        return (
            Labels()
            .include_datadog_name(self.name)
            .include_datadog_component(self.COMPONENT)
            .as_dict()
        )

    def prepare_metadata(
        self,
        resource_name: str,
        namespaced: bool = True,
        annotations: Dict[str, str] = None,
    ) -> V1ObjectMeta:
        _annotations = dict(self.additional_annotations)
        _annotations.update(annotations or {})
        return V1ObjectMeta(
            name=resource_name,
            namespace=self.namespace if namespaced else None,
            labels=self.prepare_labels(resource_name).as_dict(),
            annotations=_annotations,
        )

    def stamp(self, manifest: Any) -> Any:
        """Attach the fingerprint annotation to a freshly built manifest."""
        if isinstance(manifest, dict):
            annotations = manifest["metadata"].setdefault("annotations", {})
        else:
            if manifest.metadata.annotations is None:
                manifest.metadata.annotations = {}
            annotations = manifest.metadata.annotations
        annotations.update(self.prepare_hash_annotation(self.prepare_hash(manifest)))
        return manifest

    def manifest_hash(self, manifest: Any) -> Optional[str]:
        annotations = serialize(manifest)["metadata"].get("annotations") or {}
        return annotations.get(self.HASH_ANNOTATION)

    # ------------------------------------------------------------------
    # RBAC and policy objects
    # ------------------------------------------------------------------

    def prepare_service_account(self, name: str) -> V1ServiceAccount:
        """Build service account resource."""
        sa = V1ServiceAccount(
            api_version="v1",
            kind="ServiceAccount",
            metadata=self.prepare_metadata(name),
        )
        return self.stamp(sa)

    def prepare_cluster_role(self, name: str, rules: List[V1PolicyRule]) -> V1ClusterRole:
        role = V1ClusterRole(
            api_version="rbac.authorization.k8s.io/v1",
            kind="ClusterRole",
            metadata=self.prepare_metadata(name, namespaced=False),
            rules=rules,
        )
        return self.stamp(role)

    def prepare_role(self, name: str, rules: List[V1PolicyRule]) -> V1Role:
        role = V1Role(
            api_version="rbac.authorization.k8s.io/v1",
            kind="Role",
            metadata=self.prepare_metadata(name),
            rules=rules,
        )
        return self.stamp(role)

    def prepare_subjects(self, service_account_name: str) -> List[Dict[str, str]]:
        return [
            {
                "kind": "ServiceAccount",
                "name": service_account_name,
                "namespace": self.namespace,
            }
        ]

    def prepare_cluster_role_binding(
        self, name: str, role_name: str, service_account_name: str
    ) -> V1ClusterRoleBinding:
        binding = V1ClusterRoleBinding(
            api_version="rbac.authorization.k8s.io/v1",
            kind="ClusterRoleBinding",
            metadata=self.prepare_metadata(name, namespaced=False),
            role_ref=V1RoleRef(
                api_group="rbac.authorization.k8s.io",
                kind="ClusterRole",
                name=role_name,
            ),
            subjects=self.prepare_subjects(service_account_name),
        )
        return self.stamp(binding)

    def prepare_role_binding(
        self, name: str, role_name: str, service_account_name: str
    ) -> V1RoleBinding:
        binding = V1RoleBinding(
            api_version="rbac.authorization.k8s.io/v1",
            kind="RoleBinding",
            metadata=self.prepare_metadata(name),
            role_ref=V1RoleRef(
                api_group="rbac.authorization.k8s.io",
                kind="Role",
                name=role_name,
            ),
            subjects=self.prepare_subjects(service_account_name),
        )
        return self.stamp(binding)

    def prepare_pod_disruption_budget(
        self, name: str, min_available: int = 1
    ) -> V1PodDisruptionBudget:
        pdb = V1PodDisruptionBudget(
            api_version="policy/v1",
            kind="PodDisruptionBudget",
            metadata=self.prepare_metadata(name),
            spec=V1PodDisruptionBudgetSpec(
                min_available=min_available,
                selector=V1LabelSelector(match_labels=self.prepare_selector()),
            ),
        )
        return self.stamp(pdb)

    def prepare_config_map(self, name: str, data: Dict[str, str]) -> V1ConfigMap:
        config_map = V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=self.prepare_metadata(name),
            data=data,
        )
        return self.stamp(config_map)

    def prepare_custom_config_map(self, name: str) -> Optional[V1ConfigMap]:
        """ConfigMap carrying a user supplied `datadog.yaml`, if any."""
        if not self.custom_config_data:
            return None
        return self.prepare_config_map(
            name, {self.CUSTOM_CONFIG_KEY: self.custom_config_data}
        )

    def prepare_custom_config_volumes(
        self, config_map_name: str, mount_path: str = None
    ) -> Tuple[List[V1Volume], List[V1VolumeMount]]:
        if not self.custom_config_data:
            return [], []
        volume = V1Volume(
            name=self.CUSTOM_CONFIG_VOLUME,
            config_map=V1ConfigMapVolumeSource(name=config_map_name),
        )
        mount = V1VolumeMount(
            name=self.CUSTOM_CONFIG_VOLUME,
            mount_path=mount_path or self.CUSTOM_CONFIG_MOUNT_PATH,
            sub_path=self.CUSTOM_CONFIG_KEY,
            read_only=True,
        )
        return [volume], [mount]

    # ------------------------------------------------------------------
    # Pod level helpers
    # ------------------------------------------------------------------

    def prepare_affinity(self, resource_name: str, affinity: Optional[Dict] = None):
        """User affinity wins; otherwise spread replicas of the same resource
        across nodes."""
        if affinity:
            return affinity
        return V1Affinity(
            pod_anti_affinity=V1PodAntiAffinity(
                preferred_during_scheduling_ignored_during_execution=[
                    V1WeightedPodAffinityTerm(
                        weight=self.ANTI_AFFINITY_WEIGHT,
                        pod_affinity_term=V1PodAffinityTerm(
                            label_selector=V1LabelSelector(
                                match_labels={
                                    Labels.KUBERNETES_INSTANCE_LABEL: resource_name
                                }
                            ),
                            topology_key=self.ANTI_AFFINITY_TOPOLOGY_KEY,
                        ),
                    )
                ]
            )
        )

    def prepare_health_probe(self, path: str, timings: Optional[Probe]) -> V1Probe:
        """HTTP probe on the agent health port."""
        extras = {}
        if timings is not None:
            extras = dict(
                failure_threshold=timings.failure_threshold,
                initial_delay_seconds=timings.initial_delay_seconds,
                period_seconds=timings.period_seconds,
                success_threshold=timings.success_threshold,
                timeout_seconds=timings.timeout_seconds,
            )
        return V1Probe(
            http_get=V1HTTPGetAction(path=path, port=self.HEALTH_PORT),
            **extras,
        )

    def prepare_resource_requirements(
        self, resources: Optional[ResourceRequirements]
    ) -> Dict[str, V1ResourceRequirements]:
        """Build container resource requirements; they are optional."""
        extras = {}
        if resources is not None and (resources.limits or resources.requests):
            extras["resources"] = V1ResourceRequirements(
                limits=resources.limits, requests=resources.requests
            )
        return extras

    def validate_port(self, port: Any, field: str) -> int:
        if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
            raise BuilderError(f"{field} must be a port number (1-65535), got {port!r}.")
        return port

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    @staticmethod
    def env(name: str, value: Any) -> V1EnvVar:
        if isinstance(value, bool):
            value = "true" if value else "false"
        return V1EnvVar(name=name, value=str(value))

    @staticmethod
    def env_from_secret(name: str, secret_name: str, key: str) -> V1EnvVar:
        return V1EnvVar(
            name=name,
            value_from=V1EnvVarSource(
                secret_key_ref=V1SecretKeySelector(name=secret_name, key=key)
            ),
        )

    @staticmethod
    def env_from_field(name: str, field_path: str) -> V1EnvVar:
        return V1EnvVar(
            name=name,
            value_from=V1EnvVarSource(
                field_ref=V1ObjectFieldSelector(field_path=field_path)
            ),
        )

    def prepare_api_key_env(self) -> V1EnvVar:
        credentials = self.spec.credentials
        if credentials.api_key_existing_secret:
            return self.env_from_secret(
                "DD_API_KEY",
                credentials.api_key_existing_secret,
                self.API_KEY_SECRET_KEY,
            )
        return V1EnvVar(name="DD_API_KEY", value=credentials.api_key or "")

    def prepare_app_key_env(self) -> Optional[V1EnvVar]:
        credentials = self.spec.credentials
        if credentials.app_key_existing_secret:
            return self.env_from_secret(
                "DD_APP_KEY",
                credentials.app_key_existing_secret,
                self.APP_KEY_SECRET_KEY,
            )
        if credentials.app_key:
            return V1EnvVar(name="DD_APP_KEY", value=credentials.app_key)
        return None

    def prepare_site_env_vars(self) -> List[V1EnvVar]:
        """Cluster name, site and intake URL, each only when configured."""
        env_vars = []
        if self.spec.cluster_name:
            env_vars.append(self.env("DD_CLUSTER_NAME", self.spec.cluster_name))
        if self.spec.site:
            env_vars.append(self.env("DD_SITE", self.spec.site))
        agent_config = self.spec.agent.config if self.spec.agent else None
        if agent_config is not None and agent_config.dd_url:
            env_vars.append(self.env("DD_DD_URL", agent_config.dd_url))
        return env_vars

    def prepare_container_env_vars(
        self, env: Optional[List[ContainerEnvVar]]
    ) -> List[V1EnvVar]:
        """Convert user supplied environment variables."""
        env_vars = []
        for cev in env or []:
            if cev.value_from:
                source = cev.value_from
                if source.config_map_key_ref:
                    env_vars.append(
                        V1EnvVar(
                            name=cev.name,
                            value_from=V1EnvVarSource(
                                config_map_key_ref=V1ConfigMapKeySelector(
                                    key=source.config_map_key_ref.key,
                                    name=source.config_map_key_ref.name,
                                    optional=source.config_map_key_ref.optional,
                                )
                            ),
                        )
                    )
                elif source.secret_key_ref:
                    env_vars.append(
                        V1EnvVar(
                            name=cev.name,
                            value_from=V1EnvVarSource(
                                secret_key_ref=V1SecretKeySelector(
                                    key=source.secret_key_ref.key,
                                    name=source.secret_key_ref.name,
                                    optional=source.secret_key_ref.optional,
                                )
                            ),
                        )
                    )
                elif source.field_ref:
                    env_vars.append(
                        V1EnvVar(
                            name=cev.name,
                            value_from=V1EnvVarSource(
                                field_ref=V1ObjectFieldSelector(
                                    field_path=source.field_ref.field_path,
                                    api_version=source.field_ref.api_version,
                                )
                            ),
                        )
                    )
            else:
                env_vars.append(V1EnvVar(name=cev.name, value=cev.value or ""))
        return env_vars

    def merge_env_vars(
        self, env_vars: List[V1EnvVar], overrides: List[V1EnvVar]
    ) -> List[V1EnvVar]:
        """User variables replace operator variables of the same name."""
        merged = {e.name: e for e in env_vars}
        for e in overrides:
            merged[e.name] = e
        return list(merged.values())

    def prepare_container_volume_mounts(
        self, volume_mounts: Optional[List[VolumeMount]]
    ) -> List[V1VolumeMount]:
        """Convert user supplied volume mounts."""
        mounts = []
        for vm in volume_mounts or []:
            mounts.append(
                V1VolumeMount(
                    name=vm.name,
                    mount_path=vm.mount_path,
                    sub_path=vm.sub_path,
                    read_only=vm.read_only,
                    mount_propagation=vm.mount_propagation,
                    sub_path_expr=vm.sub_path_expr,
                )
            )
        return mounts

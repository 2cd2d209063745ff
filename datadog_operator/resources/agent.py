import json
import yaml
from typing import Any, Dict, List, Optional
from datadog_operator.resources.component import BaseComponent
from datadog_operator.types.base import optional
from datadog_operator.types.models import (
    DatadogAgentResources,
    NodeAgentSpec,
    NodeAgentConfig,
)
from datadog_operator.utils.objects import cached_property
from datadog_operator.utils.helpers import serialize
from kubernetes_asyncio.client import (
    V1ObjectMeta,
    V1ClusterRole,
    V1PolicyRule,
    V1ConfigMap,
    V1DaemonSet,
    V1DaemonSetSpec,
    V1DaemonSetUpdateStrategy,
    V1LabelSelector,
    V1PodTemplateSpec,
    V1PodSpec,
    V1Container,
    V1ContainerPort,
    V1EnvVar,
    V1Volume,
    V1VolumeMount,
    V1EmptyDirVolumeSource,
    V1HostPathVolumeSource,
    V1ConfigMapVolumeSource,
    V1SecurityContext,
    V1Capabilities,
    V1Probe,
    V1TCPSocketAction,
)


class NodeAgent(BaseComponent):
    """Node agent: one pod per node running the agent and its optional
    trace, process and system-probe sidecars."""

    COMPONENT = "agent"

    AGENT_CONTAINER_NAME = "agent"
    TRACE_AGENT_CONTAINER_NAME = "trace-agent"
    PROCESS_AGENT_CONTAINER_NAME = "process-agent"
    SYSTEM_PROBE_CONTAINER_NAME = "system-probe"
    SECCOMP_SETUP_CONTAINER_NAME = "seccomp-setup"

    DOGSTATSD_PORT = 8125
    TRACE_PORT = 8126

    CONFIG_DIR = "/etc/datadog-agent"
    CONFIG_FILE = "/etc/datadog-agent/datadog.yaml"
    SYSTEM_PROBE_CONFIG_KEY = "system-probe.yaml"
    SYSTEM_PROBE_CONFIG_FILE = "/etc/datadog-agent/system-probe.yaml"
    SYSTEM_PROBE_SOCKET_DIR = "/var/run/sysprobe"
    SYSTEM_PROBE_SOCKET = "/var/run/sysprobe/sysprobe.sock"
    SECCOMP_PROFILE_KEY = "system-probe-seccomp.json"
    SECCOMP_PROFILE_FILE = "system-probe"
    SECCOMP_ANNOTATION = "container.seccomp.security.alpha.kubernetes.io/system-probe"
    APPARMOR_ANNOTATION = "container.apparmor.security.beta.kubernetes.io/system-probe"
    DEFAULT_APPARMOR_PROFILE = "unconfined"

    EDS_API_VERSION = "datadoghq.com/v1alpha1"
    EDS_CANARY_REPLICAS = 1
    EDS_CANARY_DURATION = "10m"
    EDS_MAX_PARALLEL_POD_CREATION = 250
    EDS_SLOW_START_INTERVAL = "1m"

    # Syscalls needed by system-probe on top of the runtime default profile
    SYSTEM_PROBE_SYSCALLS = [
        "accept4", "access", "arch_prctl", "bind", "bpf", "brk", "capget",
        "capset", "chdir", "clock_gettime", "clone", "close", "connect",
        "dup", "dup2", "dup3", "epoll_create", "epoll_create1", "epoll_ctl",
        "epoll_pwait", "epoll_wait", "eventfd2", "execve", "exit",
        "exit_group", "fcntl", "fstat", "fstatfs", "futex", "getcwd",
        "getdents64", "getpid", "getppid", "getrandom", "getsockname",
        "getsockopt", "gettid", "ioctl", "lseek", "madvise", "mkdirat",
        "mmap", "mprotect", "munmap", "nanosleep", "newfstatat", "openat",
        "perf_event_open", "pipe2", "prctl", "pread64", "prlimit64",
        "read", "readlinkat", "recvfrom", "recvmsg", "rt_sigaction",
        "rt_sigprocmask", "rt_sigreturn", "sched_yield", "sendmsg",
        "sendto", "setns", "setsockopt", "socket", "statfs", "sysinfo",
        "tgkill", "uname", "unlinkat", "wait4", "write",
    ]

    use_extended_daemonset: bool

    def __init__(self, *args, use_extended_daemonset: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_extended_daemonset = use_extended_daemonset

    @property
    def component_spec(self) -> NodeAgentSpec:
        return self.spec.agent

    @property
    def config(self) -> NodeAgentConfig:
        return self.spec.agent.config

    @cached_property
    def rbac_name(self) -> str:
        return DatadogAgentResources.agent_name(self.name)

    @cached_property
    def service_account_name(self) -> str:
        return DatadogAgentResources.agent_service_account_name(
            self.name, optional(self.component_spec.rbac, "service_account_name")
        )

    @cached_property
    def daemonset_name(self) -> str:
        return DatadogAgentResources.agent_daemonset_name(
            self.name, self.component_spec.daemonset_name
        )

    def workload_name(self) -> str:
        return self.daemonset_name

    @property
    def workload_kind(self) -> str:
        return "ExtendedDaemonSet" if self.use_extended_daemonset else "DaemonSet"

    @cached_property
    def apm_enabled(self) -> bool:
        return bool(optional(self.component_spec.apm, "enabled", False))

    @cached_property
    def process_enabled(self) -> bool:
        return bool(optional(self.component_spec.process, "enabled", False))

    @cached_property
    def system_probe_enabled(self) -> bool:
        return bool(optional(self.component_spec.system_probe, "enabled", False))

    @cached_property
    def process_agent_required(self) -> bool:
        """Network monitoring data flows through the process agent."""
        return self.process_enabled or self.system_probe_enabled

    # ------------------------------------------------------------------
    # RBAC
    # ------------------------------------------------------------------

    def prepare_policy_rules(self) -> List[V1PolicyRule]:
        """Node level rules, plus cluster level ones when no cluster agent
        collects cluster data on behalf of the node agents."""
        rules = []
        if not self.spec.cluster_agent_enabled:
            rules.extend(
                [
                    V1PolicyRule(
                        api_groups=[""],
                        resources=[
                            "services",
                            "events",
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
                        api_groups=[""],
                        resources=["configmaps"],
                        resource_names=["datadogtoken", "datadog-leader-election"],
                        verbs=["get", "update"],
                    ),
                    V1PolicyRule(
                        api_groups=[""], resources=["configmaps"], verbs=["create"]
                    ),
                    V1PolicyRule(
                        non_resource_urls=["/version", "/healthz"], verbs=["get"]
                    ),
                ]
            )
        rules.extend(
            [
                V1PolicyRule(api_groups=[""], resources=["endpoints"], verbs=["get"]),
                V1PolicyRule(
                    api_groups=[""],
                    resources=[
                        "nodes/metrics",
                        "nodes/spec",
                        "nodes/proxy",
                        "nodes/stats",
                    ],
                    verbs=["get"],
                ),
            ]
        )
        return rules

    def prepare_agent_cluster_role(self) -> Optional[V1ClusterRole]:
        if not self.rbac_enabled:
            return None
        return self.prepare_cluster_role(self.rbac_name, self.prepare_policy_rules())

    def prepare_agent_service_account(self):
        if not self.rbac_enabled:
            return None
        return self.prepare_service_account(self.service_account_name)

    def prepare_agent_cluster_role_binding(self):
        if not self.rbac_enabled:
            return None
        return self.prepare_cluster_role_binding(
            self.rbac_name, self.rbac_name, self.service_account_name
        )

    # ------------------------------------------------------------------
    # ConfigMaps
    # ------------------------------------------------------------------

    def prepare_system_probe_config(self) -> Dict[str, Any]:
        system_probe = self.component_spec.system_probe
        return {
            "system_probe_config": {
                "enabled": True,
                "debug_port": 0,
                "sysprobe_socket": self.SYSTEM_PROBE_SOCKET,
                "enable_conntrack": bool(system_probe.conntrack_enabled),
                "bpf_debug": bool(system_probe.bpf_debug_enabled),
                "enable_tcp_queue_length": bool(system_probe.enable_tcp_queue_length),
                "enable_oom_kill": bool(system_probe.enable_oom_kill),
                "collect_dns_stats": bool(system_probe.collect_dns_stats),
            }
        }

    def prepare_system_probe_config_map(self) -> Optional[V1ConfigMap]:
        if not self.system_probe_enabled:
            return None
        data = yaml.dump(
            self.prepare_system_probe_config(),
            default_flow_style=False,
            allow_unicode=True,
            Dumper=yaml.SafeDumper,
        )
        return self.prepare_config_map(
            DatadogAgentResources.system_probe_config_name(self.name),
            {self.SYSTEM_PROBE_CONFIG_KEY: data},
        )

    def prepare_seccomp_profile(self) -> Dict[str, Any]:
        return {
            "defaultAction": "SCMP_ACT_ERRNO",
            "syscalls": [
                {"names": self.SYSTEM_PROBE_SYSCALLS, "action": "SCMP_ACT_ALLOW"}
            ],
        }

    def prepare_seccomp_config_map(self) -> Optional[V1ConfigMap]:
        if not self.system_probe_enabled:
            return None
        return self.prepare_config_map(
            DatadogAgentResources.system_probe_seccomp_name(self.name),
            {self.SECCOMP_PROFILE_KEY: json.dumps(self.prepare_seccomp_profile(), indent=2)},
        )

    def prepare_agent_custom_config_map(self) -> Optional[V1ConfigMap]:
        return self.prepare_custom_config_map(
            DatadogAgentResources.custom_config_name(self.name)
        )

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def prepare_common_env_vars(self) -> List[V1EnvVar]:
        """Variables shared by every container of the node agent pod."""
        env_vars = [self.prepare_api_key_env()]
        env_vars.extend(self.prepare_site_env_vars())
        env_vars.append(
            self.env_from_field("DD_KUBERNETES_KUBELET_HOST", "status.hostIP")
        )
        if self.config.log_level:
            env_vars.append(self.env("DD_LOG_LEVEL", self.config.log_level))
        return env_vars

    def prepare_cluster_agent_env_vars(self) -> List[V1EnvVar]:
        if not self.spec.cluster_agent_enabled:
            return []
        env_vars = [
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
        ]
        if optional(self.spec.cluster_agent.config, "cluster_checks_enabled", False):
            env_vars.append(self.env("DD_EXTRA_CONFIG_PROVIDERS", "clusterchecks"))
        return env_vars

    def prepare_agent_env_vars(self) -> List[V1EnvVar]:
        config = self.config
        env_vars = self.prepare_common_env_vars()
        if config.tags:
            env_vars.append(
                self.env("DD_TAGS", json.dumps(config.tags, separators=(",", ":")))
            )
        if config.pod_labels_as_tags:
            env_vars.append(
                self.env(
                    "DD_KUBERNETES_POD_LABELS_AS_TAGS",
                    json.dumps(config.pod_labels_as_tags, separators=(",", ":")),
                )
            )
        if config.pod_annotations_as_tags:
            env_vars.append(
                self.env(
                    "DD_KUBERNETES_POD_ANNOTATIONS_AS_TAGS",
                    json.dumps(config.pod_annotations_as_tags, separators=(",", ":")),
                )
            )
        if config.collect_events is not None:
            env_vars.append(
                self.env("DD_COLLECT_KUBERNETES_EVENTS", config.collect_events)
            )
        if config.leader_election is not None:
            env_vars.append(self.env("DD_LEADER_ELECTION", config.leader_election))
        # the image enables both by default, so false must be explicit
        env_vars.append(self.env("DD_APM_ENABLED", self.apm_enabled))
        env_vars.append(self.env("DD_PROCESS_AGENT_ENABLED", self.process_enabled))
        if self.system_probe_enabled:
            env_vars.append(self.env("DD_SYSTEM_PROBE_ENABLED", True))
            env_vars.append(self.env("DD_SYSPROBE_SOCKET", self.SYSTEM_PROBE_SOCKET))
        env_vars.extend(self.prepare_cluster_agent_env_vars())
        return self.merge_env_vars(
            env_vars, self.prepare_container_env_vars(config.env)
        )

    def prepare_trace_agent_env_vars(self) -> List[V1EnvVar]:
        env_vars = self.prepare_common_env_vars()
        env_vars.append(self.env("DD_APM_ENABLED", True))
        env_vars.extend(self.prepare_cluster_agent_env_vars())
        return self.merge_env_vars(
            env_vars,
            self.prepare_container_env_vars(self.component_spec.apm.env),
        )

    def prepare_process_agent_env_vars(self) -> List[V1EnvVar]:
        env_vars = self.prepare_common_env_vars()
        env_vars.append(self.env("DD_PROCESS_AGENT_ENABLED", self.process_enabled))
        if self.system_probe_enabled:
            env_vars.append(self.env("DD_SYSTEM_PROBE_ENABLED", True))
            env_vars.append(self.env("DD_SYSPROBE_SOCKET", self.SYSTEM_PROBE_SOCKET))
        env_vars.extend(self.prepare_cluster_agent_env_vars())
        process = self.component_spec.process
        return self.merge_env_vars(
            env_vars, self.prepare_container_env_vars(optional(process, "env", []))
        )

    def prepare_system_probe_env_vars(self) -> List[V1EnvVar]:
        env_vars = [
            self.env("DD_SYSTEM_PROBE_ENABLED", True),
            self.env("DD_SYSPROBE_SOCKET", self.SYSTEM_PROBE_SOCKET),
        ]
        if self.config.log_level:
            env_vars.append(self.env("DD_LOG_LEVEL", self.config.log_level))
        return self.merge_env_vars(
            env_vars,
            self.prepare_container_env_vars(self.component_spec.system_probe.env),
        )

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    def prepare_volumes(self) -> List[V1Volume]:
        volumes = [
            V1Volume(name="logdatadog", empty_dir=V1EmptyDirVolumeSource()),
            V1Volume(name="config", empty_dir=V1EmptyDirVolumeSource()),
            V1Volume(name="procdir", host_path=V1HostPathVolumeSource(path="/proc")),
            V1Volume(
                name="cgroups", host_path=V1HostPathVolumeSource(path="/sys/fs/cgroup")
            ),
            V1Volume(
                name="runtimesocketdir",
                host_path=V1HostPathVolumeSource(path="/var/run"),
            ),
        ]
        if self.system_probe_enabled:
            system_probe = self.component_spec.system_probe
            volumes.extend(
                [
                    V1Volume(
                        name="sysprobe-socket-dir", empty_dir=V1EmptyDirVolumeSource()
                    ),
                    V1Volume(
                        name="system-probe-config",
                        config_map=V1ConfigMapVolumeSource(
                            name=DatadogAgentResources.system_probe_config_name(
                                self.name
                            )
                        ),
                    ),
                    V1Volume(
                        name="datadog-agent-security",
                        config_map=V1ConfigMapVolumeSource(
                            name=DatadogAgentResources.system_probe_seccomp_name(
                                self.name
                            )
                        ),
                    ),
                    V1Volume(
                        name="seccomp-root",
                        host_path=V1HostPathVolumeSource(
                            path=system_probe.sec_comp_root_path
                        ),
                    ),
                    V1Volume(
                        name="debugfs",
                        host_path=V1HostPathVolumeSource(path="/sys/kernel/debug"),
                    ),
                ]
            )
        custom_volumes, _ = self.prepare_custom_config_volumes(
            DatadogAgentResources.custom_config_name(self.name)
        )
        volumes.extend(custom_volumes)
        volumes.extend(self.config.volumes or [])
        return volumes

    def prepare_base_volume_mounts(self) -> List[V1VolumeMount]:
        return [
            V1VolumeMount(name="logdatadog", mount_path="/var/log/datadog"),
            V1VolumeMount(name="config", mount_path=self.CONFIG_DIR),
            V1VolumeMount(name="procdir", mount_path="/host/proc", read_only=True),
            V1VolumeMount(
                name="cgroups", mount_path="/host/sys/fs/cgroup", read_only=True
            ),
            V1VolumeMount(
                name="runtimesocketdir", mount_path="/host/var/run", read_only=True
            ),
        ]

    def prepare_sysprobe_socket_mount(self) -> List[V1VolumeMount]:
        if not self.system_probe_enabled:
            return []
        return [
            V1VolumeMount(
                name="sysprobe-socket-dir",
                mount_path=self.SYSTEM_PROBE_SOCKET_DIR,
                read_only=True,
            )
        ]

    def prepare_agent_volume_mounts(self) -> List[V1VolumeMount]:
        mounts = self.prepare_base_volume_mounts()
        mounts.extend(self.prepare_sysprobe_socket_mount())
        _, custom_mounts = self.prepare_custom_config_volumes(
            DatadogAgentResources.custom_config_name(self.name)
        )
        mounts.extend(custom_mounts)
        mounts.extend(self.prepare_container_volume_mounts(self.config.volume_mounts))
        return mounts

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def prepare_agent_container(self) -> V1Container:
        ports = [
            V1ContainerPort(
                name="dogstatsdport",
                container_port=self.DOGSTATSD_PORT,
                protocol="UDP",
                host_port=(
                    self.validate_port(self.config.host_port, "agent.config.hostPort")
                    if self.config.host_port is not None
                    else None
                ),
            )
        ]
        return V1Container(
            name=self.AGENT_CONTAINER_NAME,
            image=self.image,
            image_pull_policy=self.image_pull_policy,
            command=["agent", "run"],
            ports=ports,
            env=self.prepare_agent_env_vars(),
            volume_mounts=self.prepare_agent_volume_mounts(),
            liveness_probe=self.prepare_health_probe("/live", self.config.liveness_probe),
            readiness_probe=self.prepare_health_probe(
                "/ready", self.config.readiness_probe
            ),
            **self.prepare_resource_requirements(self.config.resources),
        )

    def prepare_trace_agent_container(self) -> Optional[V1Container]:
        if not self.apm_enabled:
            return None
        apm = self.component_spec.apm
        return V1Container(
            name=self.TRACE_AGENT_CONTAINER_NAME,
            image=self.image,
            image_pull_policy=self.image_pull_policy,
            command=["trace-agent", f"--config={self.CONFIG_FILE}"],
            ports=[
                V1ContainerPort(
                    name="traceport",
                    container_port=self.TRACE_PORT,
                    protocol="TCP",
                    host_port=(
                        self.validate_port(apm.host_port, "agent.apm.hostPort")
                        if apm.host_port is not None
                        else None
                    ),
                )
            ],
            env=self.prepare_trace_agent_env_vars(),
            volume_mounts=[
                V1VolumeMount(name="config", mount_path=self.CONFIG_DIR),
                V1VolumeMount(name="logdatadog", mount_path="/var/log/datadog"),
            ],
            liveness_probe=V1Probe(
                tcp_socket=V1TCPSocketAction(port=self.TRACE_PORT),
                initial_delay_seconds=15,
                period_seconds=15,
                timeout_seconds=5,
            ),
            **self.prepare_resource_requirements(apm.resources),
        )

    def prepare_process_agent_container(self) -> Optional[V1Container]:
        if not self.process_agent_required:
            return None
        mounts = [
            V1VolumeMount(name="config", mount_path=self.CONFIG_DIR),
            V1VolumeMount(name="logdatadog", mount_path="/var/log/datadog"),
            V1VolumeMount(name="procdir", mount_path="/host/proc", read_only=True),
            V1VolumeMount(
                name="cgroups", mount_path="/host/sys/fs/cgroup", read_only=True
            ),
            V1VolumeMount(
                name="runtimesocketdir", mount_path="/host/var/run", read_only=True
            ),
        ]
        mounts.extend(self.prepare_sysprobe_socket_mount())
        return V1Container(
            name=self.PROCESS_AGENT_CONTAINER_NAME,
            image=self.image,
            image_pull_policy=self.image_pull_policy,
            command=["process-agent", f"-config={self.CONFIG_FILE}"],
            env=self.prepare_process_agent_env_vars(),
            volume_mounts=mounts,
            **self.prepare_resource_requirements(
                optional(self.component_spec.process, "resources")
            ),
        )

    def prepare_system_probe_container(self) -> Optional[V1Container]:
        if not self.system_probe_enabled:
            return None
        system_probe = self.component_spec.system_probe
        return V1Container(
            name=self.SYSTEM_PROBE_CONTAINER_NAME,
            image=self.image,
            image_pull_policy=self.image_pull_policy,
            command=[
                "/opt/datadog-agent/embedded/bin/system-probe",
                f"--config={self.SYSTEM_PROBE_CONFIG_FILE}",
            ],
            env=self.prepare_system_probe_env_vars(),
            security_context=V1SecurityContext(
                capabilities=V1Capabilities(
                    add=["SYS_ADMIN", "SYS_RESOURCE", "SYS_PTRACE", "NET_ADMIN", "IPC_LOCK"]
                )
            ),
            volume_mounts=[
                V1VolumeMount(name="debugfs", mount_path="/sys/kernel/debug"),
                V1VolumeMount(
                    name="sysprobe-socket-dir", mount_path=self.SYSTEM_PROBE_SOCKET_DIR
                ),
                V1VolumeMount(
                    name="system-probe-config",
                    mount_path=self.SYSTEM_PROBE_CONFIG_FILE,
                    sub_path=self.SYSTEM_PROBE_CONFIG_KEY,
                ),
                V1VolumeMount(name="procdir", mount_path="/host/proc", read_only=True),
                V1VolumeMount(
                    name="cgroups", mount_path="/host/sys/fs/cgroup", read_only=True
                ),
            ],
            **self.prepare_resource_requirements(system_probe.resources),
        )

    def prepare_seccomp_setup_container(self) -> Optional[V1Container]:
        if not self.system_probe_enabled:
            return None
        return V1Container(
            name=self.SECCOMP_SETUP_CONTAINER_NAME,
            image=self.image,
            image_pull_policy=self.image_pull_policy,
            command=[
                "cp",
                f"/etc/config/{self.SECCOMP_PROFILE_KEY}",
                f"/host/var/lib/kubelet/seccomp/{self.SECCOMP_PROFILE_FILE}",
            ],
            volume_mounts=[
                V1VolumeMount(name="datadog-agent-security", mount_path="/etc/config"),
                V1VolumeMount(
                    name="seccomp-root", mount_path="/host/var/lib/kubelet/seccomp"
                ),
            ],
        )

    def prepare_containers(self) -> List[V1Container]:
        containers = [
            self.prepare_agent_container(),
            self.prepare_trace_agent_container(),
            self.prepare_process_agent_container(),
            self.prepare_system_probe_container(),
        ]
        return [c for c in containers if c is not None]

    # ------------------------------------------------------------------
    # Workload
    # ------------------------------------------------------------------

    def prepare_pod_annotations(self) -> Dict[str, str]:
        annotations = dict(self.additional_annotations)
        if self.system_probe_enabled:
            system_probe = self.component_spec.system_probe
            annotations[self.SECCOMP_ANNOTATION] = system_probe.sec_comp_profile_name
            annotations[self.APPARMOR_ANNOTATION] = (
                system_probe.app_armor_profile_name or self.DEFAULT_APPARMOR_PROFILE
            )
        return annotations

    def prepare_pod_template(self) -> V1PodTemplateSpec:
        """Build pod template of the node agent."""
        init_containers = [
            c for c in [self.prepare_seccomp_setup_container()] if c is not None
        ]
        spec = self.component_spec
        return V1PodTemplateSpec(
            metadata=V1ObjectMeta(
                labels=self.prepare_labels(self.daemonset_name).as_dict(),
                annotations=self.prepare_pod_annotations(),
            ),
            spec=V1PodSpec(
                service_account_name=self.service_account_name,
                image_pull_secrets=self.image_pull_secrets,
                priority_class_name=spec.priority_class_name,
                host_network=spec.host_network,
                dns_policy=spec.dns_policy,
                tolerations=self.config.tolerations or None,
                init_containers=init_containers or None,
                containers=self.prepare_containers(),
                volumes=self.prepare_volumes(),
            ),
        )

    def prepare_daemonset(self) -> V1DaemonSet:
        """Build daemon set resource."""
        daemonset = V1DaemonSet(
            api_version="apps/v1",
            kind="DaemonSet",
            metadata=self.prepare_metadata(self.daemonset_name),
            spec=V1DaemonSetSpec(
                selector=V1LabelSelector(match_labels=self.prepare_selector()),
                template=self.prepare_pod_template(),
                update_strategy=V1DaemonSetUpdateStrategy(type="RollingUpdate"),
            ),
        )
        return self.stamp(daemonset)

    def prepare_extended_daemonset(self) -> Dict[str, Any]:
        """Build an ExtendedDaemonSet; its CRD has no typed model."""
        eds = {
            "apiVersion": self.EDS_API_VERSION,
            "kind": "ExtendedDaemonSet",
            "metadata": serialize(self.prepare_metadata(self.daemonset_name)),
            "spec": {
                "selector": {"matchLabels": self.prepare_selector()},
                "template": serialize(self.prepare_pod_template()),
                "strategy": {
                    "canary": {
                        "replicas": self.EDS_CANARY_REPLICAS,
                        "duration": self.EDS_CANARY_DURATION,
                    },
                    "rollingUpdate": {
                        "maxParallelPodCreation": self.EDS_MAX_PARALLEL_POD_CREATION,
                        "slowStartIntervalDuration": self.EDS_SLOW_START_INTERVAL,
                    },
                },
            },
        }
        return self.stamp(eds)

    def prepare_workload(self):
        if self.use_extended_daemonset:
            return self.prepare_extended_daemonset()
        return self.prepare_daemonset()

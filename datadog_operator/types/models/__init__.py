from .probe import Probe
from .container import (
    ConfigMapKeySelector,
    SecretKeySelector,
    ObjectFieldSelector,
    ContainerEnvVarSource,
    ContainerEnvVar,
    VolumeMount,
    ResourceRequirements,
    ImageConfig,
)
from .datadogagent_spec import (
    AgentCredentials,
    RbacConfig,
    CustomConfigSpec,
    NodeAgentConfig,
    APMSpec,
    ProcessSpec,
    SystemProbeSpec,
    NodeAgentSpec,
    ExternalMetricsConfig,
    ClusterAgentConfig,
    ClusterAgentSpec,
    ClusterChecksRunnerConfig,
    ClusterChecksRunnerSpec,
    DatadogAgentSpec,
)
from .datadogagent_resources import DatadogAgentResources

__all__ = [
    "Probe",
    "ConfigMapKeySelector",
    "SecretKeySelector",
    "ObjectFieldSelector",
    "ContainerEnvVarSource",
    "ContainerEnvVar",
    "VolumeMount",
    "ResourceRequirements",
    "ImageConfig",
    "AgentCredentials",
    "RbacConfig",
    "CustomConfigSpec",
    "NodeAgentConfig",
    "APMSpec",
    "ProcessSpec",
    "SystemProbeSpec",
    "NodeAgentSpec",
    "ExternalMetricsConfig",
    "ClusterAgentConfig",
    "ClusterAgentSpec",
    "ClusterChecksRunnerConfig",
    "ClusterChecksRunnerSpec",
    "DatadogAgentSpec",
    "DatadogAgentResources",
]

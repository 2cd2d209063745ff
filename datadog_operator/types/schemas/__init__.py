from .probe import ProbeSchema
from .container import (
    ContainerEnvVarSchema,
    VolumeMountSchema,
    ResourceRequirementsSchema,
    ImageConfigSchema,
)
from .datadogagent_spec import DatadogAgentSpecSchema

__all__ = [
    "ProbeSchema",
    "ContainerEnvVarSchema",
    "VolumeMountSchema",
    "ResourceRequirementsSchema",
    "ImageConfigSchema",
    "DatadogAgentSpecSchema",
]

from .base import BaseResource, KINDS
from .component import BaseComponent
from .agent import NodeAgent
from .cluster_agent import ClusterAgent
from .cluster_checks_runner import ClusterChecksRunner
from .datadogagent import DatadogAgent

__all__ = [
    "BaseResource",
    "KINDS",
    "BaseComponent",
    "NodeAgent",
    "ClusterAgent",
    "ClusterChecksRunner",
    "DatadogAgent",
]

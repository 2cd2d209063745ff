from datadog_operator.handlers import datadogagent, probes

__all__ = [
    "datadogagent",
    "probes",
]

import kopf
import logging
import datadog_operator.handlers.datadogagent as datadogagent
import datadog_operator.handlers.probes as probes
from datadog_operator.types.settings import Settings
from datadog_operator.resources import BaseResource, DatadogAgent
from datadog_operator.sensors import init_metrics_server, SensorDelegate, PrometheusMonitor
from kubernetes_asyncio import config
from kubernetes_asyncio.client.api_client import ApiClient


# Configure Kopf settings
@kopf.on.startup()
async def setup(
    settings: kopf.OperatorSettings, memo: kopf.Memo, logger: logging.Logger, **kwargs
):
    # Load Kubernetes config - try in-cluster first (for production), then local kubeconfig (for dev)
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        logger.info("In-cluster config not found, trying local kubeconfig")
        try:
            await config.load_kube_config()
            logger.info("Loaded local Kubernetes configuration")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    memo.conf = Settings()
    DatadogAgent.conf = memo.conf

    # Create a shared ApiClient for all resources to prevent connection leaks
    BaseResource.shared_api_client = ApiClient()
    logger.info("Shared Kubernetes API client initialized")

    # Initialize sensor infrastructure
    sensor_delegate = SensorDelegate()
    if memo.conf.metrics_enabled:
        sensor_delegate.add(PrometheusMonitor())
    memo.sensor = sensor_delegate
    BaseResource.sensor = sensor_delegate

    if memo.conf.metrics_enabled:
        try:
            init_metrics_server(memo.conf.metrics_port)
        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            # Don't fail operator startup if metrics server fails
            logger.warning("Continuing without metrics server")
    else:
        logger.info("Metrics are disabled")

    if not memo.conf.support_extended_daemonset:
        logger.info(
            "ExtendedDaemonSet support is disabled; "
            "`agent.useExtendedDaemonset` falls back to a DaemonSet."
        )

    # Limit the number of concurrent workers to prevent flooding the API
    settings.batching.worker_limit = memo.conf.worker_limit

    # Post events to the Kubernetes API for logging >= Warning
    settings.posting.enabled = True
    settings.posting.level = logging.WARNING


@kopf.on.cleanup()
async def cleanup(logger: logging.Logger, **kwargs):
    """Cleanup handler for operator shutdown."""
    logger.info("Shutting down operator...")

    for handle in list(datadogagent.scheduled_requests.values()):
        handle.cancel()
    datadogagent.scheduled_requests.clear()

    if BaseResource.shared_api_client:
        await BaseResource.shared_api_client.close()
        BaseResource.shared_api_client = None
        logger.info("Shared API client closed")

    logger.info("Operator shutdown complete")


__all__ = [
    "datadogagent",
    "probes",
]

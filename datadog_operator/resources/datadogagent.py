from typing import Any, Dict, List, Optional
from datadog_operator.resources.base import BaseResource, KINDS
from datadog_operator.types.models import DatadogAgentResources
from datadog_operator.types.settings import Settings
from datadog_operator.utils.errors import not_found_error
from datadog_operator.utils.helpers import get_path
from kubernetes_asyncio.client import ApiException


class DatadogAgent(BaseResource):
    """The DatadogAgent custom resource itself: loading, finalizer and status
    bookkeeping, and cleanup of cluster-scoped dependents on deletion."""

    GROUP_NAME = "datadoghq.com"
    GROUP_VERSION = "v1alpha1"
    PLURAL_NAME = "datadogagents"
    KIND = "DatadogAgent"
    FINALIZER = "finalizer.agent.datadoghq.com"

    conf: Settings = Settings()

    async def load(self) -> Optional[Dict[str, Any]]:
        """Fetch the custom resource, None when it no longer exists."""
        try:
            return await self.custom_objects_api.get_namespaced_custom_object(
                group=self.GROUP_NAME,
                version=self.GROUP_VERSION,
                namespace=self.namespace,
                plural=self.PLURAL_NAME,
                name=self.name,
            )
        except ApiException as ex:
            if not_found_error(ex):
                return None
            raise

    @staticmethod
    def finalizers(body: Dict[str, Any]) -> List[str]:
        return list(get_path(body, "/metadata/finalizers", []))

    @classmethod
    def has_finalizer(cls, body: Dict[str, Any]) -> bool:
        return cls.FINALIZER in cls.finalizers(body)

    @staticmethod
    def being_deleted(body: Dict[str, Any]) -> bool:
        return get_path(body, "/metadata/deletionTimestamp") is not None

    async def patch_metadata(self, metadata: Dict[str, Any]):
        await self.custom_objects_api.patch_namespaced_custom_object(
            group=self.GROUP_NAME,
            version=self.GROUP_VERSION,
            namespace=self.namespace,
            plural=self.PLURAL_NAME,
            name=self.name,
            body={"metadata": metadata},
        )

    async def add_finalizer(self, body: Dict[str, Any]):
        finalizers = self.finalizers(body) + [self.FINALIZER]
        await self.patch_metadata({"finalizers": finalizers})
        self.logger.info(f"Added finalizer {self.FINALIZER}.")

    async def remove_finalizer(self, body: Dict[str, Any]):
        finalizers = [f for f in self.finalizers(body) if f != self.FINALIZER]
        await self.patch_metadata({"finalizers": finalizers})
        self.logger.info(f"Removed finalizer {self.FINALIZER}.")

    async def patch_status(self, status: Dict[str, Any]):
        """Merge `status` into the status subresource."""
        await self.custom_objects_api.patch_namespaced_custom_object_status(
            group=self.GROUP_NAME,
            version=self.GROUP_VERSION,
            namespace=self.namespace,
            plural=self.PLURAL_NAME,
            name=self.name,
            body={"status": status},
        )

    async def cleanup(self, uid: str) -> List[str]:
        """Delete the cluster-scoped dependents; owner references cannot
        garbage collect them. Only objects controlled by the DatadogAgent
        with `uid` are deleted. Returns what was actually deleted."""
        deleted = []
        for kind, name in DatadogAgentResources.cluster_scoped_names(self.name):
            observed = await self.fetch(KINDS[kind], name)
            if observed is None:
                continue
            if self.controller_uid(observed) != uid:
                self.logger.info(
                    f"Keeping {kind} `{name}`, it is not controlled by this DatadogAgent."
                )
                continue
            if await self.delete(KINDS[kind], name):
                deleted.append(f"{kind}/{name}")
                self.logger.info(f"Deleted {kind} `{name}`.")
        return deleted

import datadog_operator
import kopf
import mmh3
import hashlib
import logging
from logging import Logger
from typing import Any, Dict, List, NamedTuple, Optional, Tuple, Union
from datadog_operator.utils.objects import cached_property
from datadog_operator.utils.helpers import (
    canonicalize_dict,
    serialize,
    get_path,
    merge_dicts,
)
from datadog_operator.utils.errors import OwnershipConflictError, not_found_error
from datadog_operator.sensors import OperatorSensor
from kubernetes_asyncio.client import (
    ApiException,
    AppsV1Api,
    CoreV1Api,
    CustomObjectsApi,
    PolicyV1Api,
    RbacAuthorizationV1Api,
)
from kubernetes_asyncio.client.api_client import ApiClient


class ResourceKind(NamedTuple):
    """How to reach one kind of dependent object through kubernetes_asyncio."""

    kind: str
    #: name of the API attribute on `BaseResource`
    api: str
    #: method suffix for typed APIs, plural for custom objects
    resource: str
    namespaced: bool
    #: JSON pointers owned by the operator; only these are patched
    patch_paths: Tuple[str, ...]
    group: Optional[str] = None
    version: Optional[str] = None

    @property
    def custom(self) -> bool:
        return self.group is not None


KINDS: Dict[str, ResourceKind] = {
    k.kind: k
    for k in [
        ResourceKind("ServiceAccount", "core_v1_api", "service_account", True, ()),
        ResourceKind("Secret", "core_v1_api", "secret", True, ("/data", "/type")),
        ResourceKind("ConfigMap", "core_v1_api", "config_map", True, ("/data",)),
        ResourceKind(
            "Service",
            "core_v1_api",
            "service",
            True,
            ("/spec/ports", "/spec/selector", "/spec/type"),
        ),
        ResourceKind("ClusterRole", "rbac_v1_api", "cluster_role", False, ("/rules",)),
        ResourceKind(
            "ClusterRoleBinding",
            "rbac_v1_api",
            "cluster_role_binding",
            False,
            ("/subjects",),
        ),
        ResourceKind("Role", "rbac_v1_api", "role", True, ("/rules",)),
        ResourceKind("RoleBinding", "rbac_v1_api", "role_binding", True, ("/subjects",)),
        ResourceKind(
            "PodDisruptionBudget",
            "policy_v1_api",
            "pod_disruption_budget",
            True,
            ("/spec",),
        ),
        ResourceKind("Deployment", "apps_v1_api", "deployment", True, ("/spec",)),
        ResourceKind("DaemonSet", "apps_v1_api", "daemon_set", True, ("/spec",)),
        ResourceKind(
            "ExtendedDaemonSet",
            "custom_objects_api",
            "extendeddaemonsets",
            True,
            ("/spec",),
            group="datadoghq.com",
            version="v1alpha1",
        ),
    ]
}


class BaseResource:
    """Base resource model.

    Holds the Kubernetes API handles and the create-or-update primitive every
    dependent object of a DatadogAgent goes through.
    """

    OPERATOR_NAME = "datadog-operator"
    HASH_ANNOTATION = "agent.datadoghq.com/agentspechash"

    logger: Logger = logging.getLogger(__name__)
    sensor: OperatorSensor = OperatorSensor()
    shared_api_client: ApiClient = None

    _name: str
    _namespace: str
    _owner: Optional[Dict[str, Any]]

    _api_client: ApiClient = None
    _core_v1_api: CoreV1Api = None
    _apps_v1_api: AppsV1Api = None
    _rbac_v1_api: RbacAuthorizationV1Api = None
    _policy_v1_api: PolicyV1Api = None
    _custom_objects_api: CustomObjectsApi = None

    def __init__(self, name: str, namespace: str, owner: Dict[str, Any] = None):
        self._name = name
        self._namespace = namespace
        self._owner = owner

    @property
    def name(self) -> str:
        return self._name

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def owner(self) -> Optional[Dict[str, Any]]:
        """Body (apiVersion, kind, metadata) of the owning DatadogAgent."""
        return self._owner

    @cached_property
    def operator_version(self) -> str:
        return datadog_operator.__version__

    @cached_property
    def owner_reference(self) -> Optional[Dict[str, Any]]:
        if not self.owner:
            return None
        return kopf.build_owner_reference(self.owner)

    def compute_hash(self, data: Any) -> str:
        """Compute a murmur3 hash."""
        if isinstance(data, dict):
            _data = canonicalize_dict(data)
        elif isinstance(data, str):
            _data = data.encode()
        else:
            raise ValueError(f"Hash of {type(data)} is not supported.")
        mumur_str = str(mmh3.hash128(_data))

        hash_obj = hashlib.sha256(mumur_str.encode("utf-8"))
        full_hash = hash_obj.hexdigest()

        # First 16 characters are enough for an annotation value
        return full_hash[:16]

    def prepare_hash(self, manifest: Any) -> str:
        """Fingerprint of a desired manifest (model or plain dict)."""
        return self.compute_hash(serialize(manifest))

    def prepare_hash_annotation(self, hash: Union[str, int]) -> Dict[str, str]:
        """Prepare hash annotation for k8s resources."""
        return {self.HASH_ANNOTATION: str(hash)}

    # ------------------------------------------------------------------
    # Generic API access
    # ------------------------------------------------------------------

    def api_for(self, kind: ResourceKind):
        return getattr(self, kind.api)

    async def fetch(
        self, kind: ResourceKind, name: str, namespace: str = None
    ) -> Optional[Dict[str, Any]]:
        """Retrieve the latest state of an object, None when it does not exist."""
        api = self.api_for(kind)
        try:
            if kind.custom:
                obj = await api.get_namespaced_custom_object(
                    group=kind.group,
                    version=kind.version,
                    namespace=namespace,
                    plural=kind.resource,
                    name=name,
                )
            elif kind.namespaced:
                read = getattr(api, f"read_namespaced_{kind.resource}")
                obj = await read(name=name, namespace=namespace)
            else:
                read = getattr(api, f"read_{kind.resource}")
                obj = await read(name=name)
        except ApiException as ex:
            if not_found_error(ex):
                return None
            raise
        return serialize(obj)

    async def create(self, kind: ResourceKind, namespace: str, body: Dict) -> None:
        api = self.api_for(kind)
        if kind.custom:
            await api.create_namespaced_custom_object(
                group=kind.group,
                version=kind.version,
                namespace=namespace,
                plural=kind.resource,
                body=body,
            )
        elif kind.namespaced:
            create = getattr(api, f"create_namespaced_{kind.resource}")
            await create(namespace=namespace, body=body)
        else:
            create = getattr(api, f"create_{kind.resource}")
            await create(body=body)

    async def patch(
        self, kind: ResourceKind, name: str, namespace: str, body: Union[List, Dict]
    ) -> None:
        api = self.api_for(kind)
        if kind.custom:
            await api.patch_namespaced_custom_object(
                group=kind.group,
                version=kind.version,
                namespace=namespace,
                plural=kind.resource,
                name=name,
                body=body,
            )
        elif kind.namespaced:
            patch = getattr(api, f"patch_namespaced_{kind.resource}")
            await patch(name=name, namespace=namespace, body=body)
        else:
            patch = getattr(api, f"patch_{kind.resource}")
            await patch(name=name, body=body)

    async def delete(self, kind: ResourceKind, name: str, namespace: str = None) -> bool:
        """Delete an object. Returns False if it was already gone."""
        api = self.api_for(kind)
        try:
            if kind.custom:
                await api.delete_namespaced_custom_object(
                    group=kind.group,
                    version=kind.version,
                    namespace=namespace,
                    plural=kind.resource,
                    name=name,
                )
            elif kind.namespaced:
                delete = getattr(api, f"delete_namespaced_{kind.resource}")
                await delete(name=name, namespace=namespace)
            else:
                delete = getattr(api, f"delete_{kind.resource}")
                await delete(name=name)
        except ApiException as ex:
            if not_found_error(ex):
                return False
            raise
        return True

    # ------------------------------------------------------------------
    # Create-or-update
    # ------------------------------------------------------------------

    @staticmethod
    def controller_uid(observed: Dict) -> Optional[str]:
        """uid of the controlling owner of an observed object."""
        for ref in get_path(observed, "/metadata/ownerReferences", []):
            if ref.get("controller"):
                return ref.get("uid")
        return None

    def check_ownership(self, kind: str, name: str, observed: Dict) -> None:
        """Refuse to touch objects controlled by something else."""
        if not self.owner_reference:
            return
        for ref in get_path(observed, "/metadata/ownerReferences", []):
            if ref.get("controller") and ref.get("uid") != self.owner_reference["uid"]:
                raise OwnershipConflictError(
                    f"{kind} `{name}` is controlled by "
                    f"{ref.get('kind')}/{ref.get('name')}; refusing to modify it."
                )

    def prepare_patch(
        self, kind: ResourceKind, desired: Dict, observed: Dict, paths: Tuple[str, ...]
    ) -> List[Dict]:
        """Prepare a JSON patch for an existing object.

        Only operator owned paths are written. Labels and annotations are merged
        so that keys set by other controllers survive.
        """
        patch = []
        for path in paths:
            value = get_path(desired, path)
            if value is not None:
                patch.append({"op": "add", "path": path, "value": value})
            elif get_path(observed, path) is not None:
                patch.append({"op": "remove", "path": path})

        patch.append(
            {
                "op": "add",
                "path": "/metadata/labels",
                "value": merge_dicts(
                    get_path(observed, "/metadata/labels"),
                    get_path(desired, "/metadata/labels"),
                ),
            }
        )
        patch.append(
            {
                "op": "add",
                "path": "/metadata/annotations",
                "value": merge_dicts(
                    get_path(observed, "/metadata/annotations"),
                    get_path(desired, "/metadata/annotations"),
                ),
            }
        )

        refs = list(get_path(observed, "/metadata/ownerReferences", []))
        if self.owner_reference and not any(
            ref.get("uid") == self.owner_reference["uid"] for ref in refs
        ):
            patch.append(
                {
                    "op": "add",
                    "path": "/metadata/ownerReferences",
                    "value": refs + [self.owner_reference],
                }
            )
        return patch

    async def apply(
        self, manifest: Any, component: str = None, patch_paths: Tuple[str, ...] = None
    ) -> bool:
        """Create the object if it is missing, patch it if its fingerprint changed.

        Args:
            manifest: desired object, carrying its fingerprint annotation.
            component: component label used for instrumentation.
            patch_paths: overrides the paths patched for this kind.

        Returns:
            True if the cluster was modified.
        """
        desired = serialize(manifest)
        kind = KINDS[desired["kind"]]
        name = desired["metadata"]["name"]
        namespace = self.namespace if kind.namespaced else None
        component = component or self.name

        observed = await self.fetch(kind, name, namespace)
        if observed is None:
            if self.owner_reference:
                desired["metadata"]["ownerReferences"] = [self.owner_reference]
            await self._instrumented(
                self.create(kind, namespace, desired), component, name, kind, "create"
            )
            self.logger.info(f"Created {kind.kind} `{name}`.")
            return True

        self.check_ownership(kind.kind, name, observed)

        actual_hash = get_path(observed, "/metadata/annotations", {}).get(
            self.HASH_ANNOTATION
        )
        desired_hash = get_path(desired, "/metadata/annotations", {}).get(
            self.HASH_ANNOTATION
        ) or self.compute_hash(desired)
        if actual_hash == desired_hash:
            return False

        self.sensor.on_resource_drift_detected(
            self.name, component, name, self.namespace, kind.kind, [self.HASH_ANNOTATION]
        )
        paths = kind.patch_paths if patch_paths is None else patch_paths
        await self._instrumented(
            self.patch(
                kind, name, namespace, self.prepare_patch(kind, desired, observed, paths)
            ),
            component,
            name,
            kind,
            "patch",
        )
        self.logger.info(
            f"Patched {kind.kind} `{name}` (fingerprint {actual_hash} -> {desired_hash})."
        )
        return True

    async def _instrumented(self, call, component, name, kind, operation):
        sensor_state = self.sensor.on_resource_sync_start(
            self.name, component, name, self.namespace, kind.kind
        )
        success, error = True, None
        try:
            await call
        except Exception as e:
            success, error = False, e
            raise
        finally:
            self.sensor.on_resource_sync_complete(
                self.name,
                component,
                name,
                self.namespace,
                kind.kind,
                sensor_state,
                operation,
                success,
                error,
            )

    # ------------------------------------------------------------------
    # API handles
    # ------------------------------------------------------------------

    @cached_property
    def api_client(self) -> ApiClient:
        if self._api_client is None:
            if self.shared_api_client is not None:
                self._api_client = self.shared_api_client
            else:
                self._api_client = ApiClient()
        return self._api_client

    @cached_property
    def core_v1_api(self) -> CoreV1Api:
        if self._core_v1_api is None:
            self._core_v1_api = CoreV1Api(self.api_client)
        return self._core_v1_api

    @cached_property
    def apps_v1_api(self) -> AppsV1Api:
        if self._apps_v1_api is None:
            self._apps_v1_api = AppsV1Api(self.api_client)
        return self._apps_v1_api

    @cached_property
    def rbac_v1_api(self) -> RbacAuthorizationV1Api:
        if self._rbac_v1_api is None:
            self._rbac_v1_api = RbacAuthorizationV1Api(self.api_client)
        return self._rbac_v1_api

    @cached_property
    def policy_v1_api(self) -> PolicyV1Api:
        if self._policy_v1_api is None:
            self._policy_v1_api = PolicyV1Api(self.api_client)
        return self._policy_v1_api

    @cached_property
    def custom_objects_api(self) -> CustomObjectsApi:
        if self._custom_objects_api is None:
            self._custom_objects_api = CustomObjectsApi(self.api_client)
        return self._custom_objects_api

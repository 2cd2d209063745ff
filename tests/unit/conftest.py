"""Shared fixtures: an in-memory cluster standing in for the Kubernetes API."""

import copy
import json
import re
import pytest
from functools import partial
from typing import Any, Dict, List, Optional, Tuple
from kubernetes_asyncio.client import ApiException
from datadog_operator.resources import BaseResource
from datadog_operator.sensors import OperatorSensor

NAME = "foo"
NAMESPACE = "datadog"
OWNER_UID = "7d3f0c2e-0000-4000-8000-000000000001"

API_ATTRS = (
    "core_v1_api",
    "apps_v1_api",
    "rbac_v1_api",
    "policy_v1_api",
    "custom_objects_api",
)

#: method suffix of the typed APIs -> kind
SUFFIX_KINDS = {
    "service_account": "ServiceAccount",
    "secret": "Secret",
    "config_map": "ConfigMap",
    "service": "Service",
    "cluster_role": "ClusterRole",
    "cluster_role_binding": "ClusterRoleBinding",
    "role": "Role",
    "role_binding": "RoleBinding",
    "pod_disruption_budget": "PodDisruptionBudget",
    "deployment": "Deployment",
    "daemon_set": "DaemonSet",
}

#: custom object plural -> kind
PLURAL_KINDS = {
    "datadogagents": "DatadogAgent",
    "extendeddaemonsets": "ExtendedDaemonSet",
}

TYPED_METHOD = re.compile(r"^(read|create|patch|delete)_(namespaced_)?([a-z_]+)$")


def api_error(status: int, reason: str, body_reason: str = None) -> ApiException:
    error = ApiException(status=status, reason=reason)
    if body_reason:
        error.body = json.dumps({"reason": body_reason, "message": reason})
    return error


def _unescape(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def apply_json_patch(obj: Dict[str, Any], operations: List[Dict[str, Any]]):
    """Enough of RFC 6902 for object members: add, replace and remove."""
    for operation in operations:
        tokens = [_unescape(t) for t in operation["path"].lstrip("/").split("/")]
        parent = obj
        for token in tokens[:-1]:
            parent = parent.setdefault(token, {})
        if operation["op"] in ("add", "replace"):
            parent[tokens[-1]] = copy.deepcopy(operation["value"])
        elif operation["op"] == "remove":
            parent.pop(tokens[-1], None)
        else:
            raise ValueError(f"Unsupported JSON patch op {operation['op']}")


def apply_merge_patch(obj: Dict[str, Any], patch: Dict[str, Any]):
    """RFC 7386 merge patch."""
    for key, value in patch.items():
        if value is None:
            obj.pop(key, None)
        elif isinstance(value, dict) and isinstance(obj.get(key), dict):
            apply_merge_patch(obj[key], value)
        else:
            obj[key] = copy.deepcopy(value)


class FakeCluster:
    """In-memory stand-in for every kubernetes_asyncio API the operator uses.

    Typed calls (``read_namespaced_deployment``, ``patch_cluster_role`` ...)
    are resolved dynamically; custom objects have explicit methods. Every
    mutating call is recorded in :attr:`calls` as ``(verb, kind, name)``.
    """

    def __init__(self):
        self.objects: Dict[Tuple[str, Optional[str], str], Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self._uids = 0

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def add(self, kind: str, body: Dict[str, Any], namespace: str = NAMESPACE):
        body = copy.deepcopy(body)
        body.setdefault("kind", kind)
        metadata = body.setdefault("metadata", {})
        metadata.setdefault("namespace", namespace)
        metadata.setdefault("uid", self._next_uid())
        self.objects[(kind, metadata["namespace"], metadata["name"])] = body
        return body

    def get(self, kind: str, name: str, namespace: Optional[str] = NAMESPACE):
        return self.objects.get((kind, namespace, name))

    def names(self, kind: str) -> List[str]:
        return sorted(name for (k, _, name) in self.objects if k == kind)

    def hashes(self) -> Dict[Tuple[str, str], Optional[str]]:
        """Fingerprint annotation of every dependent object."""
        return {
            (kind, name): (obj["metadata"].get("annotations") or {}).get(
                BaseResource.HASH_ANNOTATION
            )
            for (kind, _, name), obj in self.objects.items()
            if kind != "DatadogAgent"
        }

    def set_status(self, kind: str, name: str, status: Dict[str, Any], namespace=NAMESPACE):
        self.objects[(kind, namespace, name)]["status"] = copy.deepcopy(status)

    def mutations(self, verb: str = None) -> List[Tuple[str, str, str]]:
        return [c for c in self.calls if verb is None or c[0] == verb]

    def reset_calls(self):
        self.calls = []

    def _next_uid(self) -> str:
        self._uids += 1
        return f"uid-{self._uids}"

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    def _key(self, kind, namespaced, name, namespace):
        return (kind, namespace if namespaced else None, name)

    async def _read(self, kind, namespaced, name, namespace=None, **kwargs):
        obj = self.objects.get(self._key(kind, namespaced, name, namespace))
        if obj is None:
            raise api_error(404, "Not Found", "NotFound")
        return copy.deepcopy(obj)

    async def _create(self, kind, namespaced, body, namespace=None, **kwargs):
        body = copy.deepcopy(body)
        name = body["metadata"]["name"]
        key = self._key(kind, namespaced, name, namespace)
        if key in self.objects:
            raise api_error(409, "Conflict", "AlreadyExists")
        body["metadata"]["uid"] = self._next_uid()
        body["metadata"]["resourceVersion"] = "1"
        if namespaced:
            body["metadata"]["namespace"] = namespace
        self.objects[key] = body
        self.calls.append(("create", kind, name))
        return copy.deepcopy(body)

    async def _patch(self, kind, namespaced, name, body, namespace=None, **kwargs):
        key = self._key(kind, namespaced, name, namespace)
        obj = self.objects.get(key)
        if obj is None:
            raise api_error(404, "Not Found", "NotFound")
        if isinstance(body, list):
            apply_json_patch(obj, body)
        else:
            apply_merge_patch(obj, body)
        metadata = obj["metadata"]
        metadata["resourceVersion"] = str(int(metadata.get("resourceVersion", "1")) + 1)
        self.calls.append(("patch", kind, name))
        if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
            del self.objects[key]
        return copy.deepcopy(obj)

    async def _delete(self, kind, namespaced, name, namespace=None, **kwargs):
        key = self._key(kind, namespaced, name, namespace)
        if key not in self.objects:
            raise api_error(404, "Not Found", "NotFound")
        del self.objects[key]
        self.calls.append(("delete", kind, name))

    def __getattr__(self, attr):
        match = TYPED_METHOD.match(attr)
        if not match or match.group(3) not in SUFFIX_KINDS:
            raise AttributeError(attr)
        verb, namespaced, suffix = match.groups()
        return partial(
            getattr(self, f"_{verb}"), SUFFIX_KINDS[suffix], bool(namespaced)
        )

    # ------------------------------------------------------------------
    # CustomObjectsApi
    # ------------------------------------------------------------------

    async def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        return await self._read(PLURAL_KINDS[plural], True, name, namespace)

    async def create_namespaced_custom_object(self, group, version, namespace, plural, body):
        return await self._create(PLURAL_KINDS[plural], True, body, namespace)

    async def patch_namespaced_custom_object(
        self, group, version, namespace, plural, name, body
    ):
        return await self._patch(PLURAL_KINDS[plural], True, name, body, namespace)

    async def delete_namespaced_custom_object(self, group, version, namespace, plural, name):
        return await self._delete(PLURAL_KINDS[plural], True, name, namespace)

    async def patch_namespaced_custom_object_status(
        self, group, version, namespace, plural, name, body
    ):
        kind = PLURAL_KINDS[plural]
        obj = self.objects.get((kind, namespace, name))
        if obj is None:
            raise api_error(404, "Not Found", "NotFound")
        apply_merge_patch(obj.setdefault("status", {}), body.get("status") or {})
        self.calls.append(("patch_status", kind, name))
        return copy.deepcopy(obj)


def node_agent_spec(**overrides) -> Dict[str, Any]:
    spec = {
        "image": {"name": "datadog/agent:7.50.0"},
        "config": {},
        "rbac": {"create": True},
    }
    spec.update(overrides)
    return spec


def cluster_agent_spec(**overrides) -> Dict[str, Any]:
    spec = {
        "image": {"name": "datadog/cluster-agent:7.50.0"},
        "config": {},
        "rbac": {"create": True},
    }
    spec.update(overrides)
    return spec


def cluster_checks_runner_spec(**overrides) -> Dict[str, Any]:
    spec = {
        "image": {"name": "datadog/agent:7.50.0"},
        "config": {},
        "rbac": {"create": True},
    }
    spec.update(overrides)
    return spec


def datadog_agent_body(
    spec: Dict[str, Any] = None,
    name: str = NAME,
    namespace: str = NAMESPACE,
    finalizers: List[str] = None,
    status: Dict[str, Any] = None,
) -> Dict[str, Any]:
    body = {
        "apiVersion": "datadoghq.com/v1alpha1",
        "kind": "DatadogAgent",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": OWNER_UID,
            "generation": 1,
            "labels": {},
            "finalizers": list(finalizers or []),
        },
        "spec": spec if spec is not None else {"agent": node_agent_spec()},
    }
    if status is not None:
        body["status"] = status
    return body


@pytest.fixture
def cluster(monkeypatch) -> FakeCluster:
    """Route every resource's API handles to one in-memory cluster."""
    fake = FakeCluster()
    for attr in API_ATTRS:
        monkeypatch.setattr(BaseResource, attr, property(lambda self: fake))
    monkeypatch.setattr(BaseResource, "sensor", OperatorSensor())
    return fake

import jsonpickle
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from kubernetes.client import ApiClient as _SerializingClient

# Only used for `sanitize_for_serialization`, which never touches the network.
_serializer = _SerializingClient()


def now() -> str:
    return datetime.now(timezone.utc).isoformat()


def serialize(obj: Any) -> Any:
    """Convert a kubernetes model (or a structure of models) into the
    camelCase dictionary the API server expects. ``None`` fields are dropped.

    Plain dicts pass through, so custom objects such as the
    ExtendedDaemonSet can be handled by the same code paths.
    """
    return _serializer.sanitize_for_serialization(obj)


def _named_items(items: List) -> bool:
    return bool(items) and all(isinstance(i, dict) and "name" in i for i in items)


def sort_dict_keys(d):
    """Recursively sort dictionary keys and handle nested structures.

    Lists made entirely of mappings carrying a ``name`` key (containers,
    env vars, ports, volumes, volume mounts) are sorted by name; every
    other list keeps its order.
    """
    if isinstance(d, dict):
        return {key: sort_dict_keys(value) for key, value in sorted(d.items())}
    elif isinstance(d, list):
        items = [sort_dict_keys(item) for item in d]
        if _named_items(items):
            items = sorted(items, key=lambda i: str(i["name"]))
        return items
    else:
        return d


def canonicalize_dict(data):
    """
    Returns a canonical JSON representation of a dictionary.

    Keys are sorted recursively, which ensures that the representation of
    the dictionary remains consistent even when key order varies.
    """
    return jsonpickle.dumps(sort_dict_keys(data), unpicklable=False)


def camel_to_snake(key: str) -> str:
    result = ""
    for char in key:
        if char.isupper():
            result += "_" + char.lower()
        else:
            result += char
    return result


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """Read a JSON-pointer style path (``/spec/ports``) from a dict or a model.

    Model attributes are looked up by their snake_case name.
    """
    current = data
    for part in [p for p in path.split("/") if p]:
        if current is None:
            return default
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return default
        else:
            current = getattr(current, camel_to_snake(part), None)
    return default if current is None else current


def merge_dicts(base: Optional[Dict], *others: Optional[Dict]) -> Dict:
    """Shallow merge, later mappings win."""
    merged = dict(base or {})
    for other in others:
        merged.update(other or {})
    return merged


def upsert_condition(conds, newc):
    """In-memory merge by .type. Only bump lastTransitionTime when status flips."""
    conds = list(conds or [])
    for i, c in enumerate(conds):
        if c.get("type") == newc["type"]:
            ltt = c.get("lastTransitionTime") or now()
            if c.get("status") != newc["status"]:
                ltt = now()
            merged = {**c, **newc, "lastTransitionTime": ltt}
            conds[i] = merged
            break
    else:
        conds.append({**newc, "lastTransitionTime": now()})
    return conds

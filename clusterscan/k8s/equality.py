"""Semantic comparison restricted to the fields the operator manages."""

from typing import Any, Dict

# Server bookkeeping that changes without any managed field changing.
VOLATILE_METADATA = frozenset(
    {"resourceVersion", "managedFields", "generation", "creationTimestamp", "uid", "selfLink"}
)


def project(obj: Any, shape: Any) -> Any:
    """Restrict obj to the keys present in shape, recursively."""
    if isinstance(shape, dict):
        if not isinstance(obj, dict):
            return obj
        return {key: project(obj.get(key), sub) for key, sub in shape.items()}
    if isinstance(shape, list) and isinstance(obj, list) and len(shape) == len(obj):
        return [project(o, s) for o, s in zip(obj, shape)]
    return obj


def managed_shape(desired: Dict[str, Any]) -> Dict[str, Any]:
    shape = {k: v for k, v in desired.items() if k != "status"}
    meta = shape.get("metadata")
    if isinstance(meta, dict):
        shape["metadata"] = {k: v for k, v in meta.items() if k not in VOLATILE_METADATA}
    return shape


def semantically_equal(before: Dict[str, Any], after: Dict[str, Any], desired: Dict[str, Any]) -> bool:
    """True when before and after agree on every field desired sets."""
    shape = managed_shape(desired)
    return project(before, shape) == project(after, shape)

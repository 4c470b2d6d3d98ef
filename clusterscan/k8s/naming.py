"""Deterministic, length-bounded names for per-node resources."""

import hashlib

# Leaves room for the suffixes the API server and Job controller append.
RESOURCE_NAME_MAX_LENGTH = 52

# Shortest hash still used when the parent leaves little room.
MIN_HASH_LENGTH = 8


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def node_name_or_hash(allowed_len: int, node_name: str) -> str:
    """Return node_name if it fits, otherwise a hex sha256 prefix of it."""
    if len(node_name) <= allowed_len:
        return node_name
    return _sha256(node_name)[: max(allowed_len, MIN_HASH_LENGTH)]


def node_resource_name(parent: str, suffix: str, node_name: str) -> str:
    """Name of a per-node resource, at most RESOURCE_NAME_MAX_LENGTH long.

    When the parent and suffix leave no room for MIN_HASH_LENGTH characters,
    the prefix is cut and the hash covers the full untruncated name.
    """
    base = f"{parent}{suffix}"
    allowed_len = RESOURCE_NAME_MAX_LENGTH - len(base)
    if allowed_len >= MIN_HASH_LENGTH:
        return base + node_name_or_hash(allowed_len, node_name)

    prefix = base[: RESOURCE_NAME_MAX_LENGTH - MIN_HASH_LENGTH - 1].rstrip("-")
    return f"{prefix}-{_sha256(base + node_name)[:MIN_HASH_LENGTH]}"


def schedule_minute(seed: str) -> int:
    """Stable minute-of-hour for a scan schedule derived from seed."""
    return int(_sha256(seed), 16) % 60

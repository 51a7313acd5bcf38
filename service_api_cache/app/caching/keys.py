"""
Deterministic request fingerprints and namespace names.

A cache key is the SHA-256 of the canonical JSON form of
``[client, endpoint, METHOD, version, normalized_params]``. Canonical JSON
sorts keys, uses compact separators and keeps the distinction between
``1``, ``"1"``, ``1.0`` and ``true``.
"""

import hashlib
import json
import math
import re
from typing import Any, Dict, Mapping, Optional

from shared.config import validate_identifier
from shared.errors import ValidationError

MAX_PARAM_DEPTH = 20
MAX_SUMMARY_STRING = 100
MAX_NAMESPACE_LENGTH = 63

ALLOWED_METHODS = frozenset({"HEAD", "GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"})


def canonical_method(method: str) -> str:
    """Upper-case ``method`` and reject verbs the cache does not know."""
    if not isinstance(method, str):
        raise ValidationError("HTTP method must be a string", {"method": repr(method)})
    upper = method.strip().upper()
    if upper not in ALLOWED_METHODS:
        raise ValidationError("Unsupported HTTP method", {"method": method})
    return upper


def _normalize_value(value: Any, depth: int) -> Any:
    if depth > MAX_PARAM_DEPTH:
        raise ValidationError(
            "Parameters are nested too deeply",
            {"max_depth": MAX_PARAM_DEPTH}
        )

    # Only reachable for sequence items; mappings drop None values
    if value is None:
        return None

    if isinstance(value, (bool, str, int)):
        return value

    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError("Non-finite float in parameters", {"value": repr(value)})
        return value

    if isinstance(value, Mapping):
        # Non-string keys would collide with their string forms once serialized
        bad_keys = [key for key in value if not isinstance(key, str)]
        if bad_keys:
            raise ValidationError(
                "Parameter names must be strings",
                {"keys": [repr(key) for key in bad_keys]}
            )
        normalized = {}
        for key in sorted(value):
            item = value[key]
            if item is None:
                continue
            normalized[key] = _normalize_value(item, depth + 1)
        return normalized

    if isinstance(value, (list, tuple)):
        return [_normalize_value(item, depth + 1) for item in value]

    raise ValidationError(
        "Unsupported parameter type",
        {"type": type(value).__name__}
    )


def normalize_params(params: Optional[Mapping[str, Any]], method: str = "GET") -> Dict[str, Any]:
    """Return a canonical copy of ``params``.

    ``None`` values are dropped from mappings at every level, mapping keys are
    sorted, tuples become lists. Only strings, ints, finite floats, bools,
    mappings with string keys and sequences are accepted; anything else raises
    :class:`ValidationError`. Values are never rewritten based on ``method``;
    the method is only validated.
    """
    canonical_method(method)
    if params is None:
        return {}
    if not isinstance(params, Mapping):
        raise ValidationError("Parameters must be a mapping", {"type": type(params).__name__})
    return _normalize_value(params, 1)


def canonical_json(value: Any) -> str:
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def generate_cache_key(
    client: str,
    endpoint: str,
    params: Optional[Mapping[str, Any]] = None,
    method: str = "GET",
    version: Optional[str] = None,
) -> str:
    """Derive the cache key for a logical request."""
    validate_identifier(client)
    method = canonical_method(method)
    normalized = normalize_params(params, method)

    payload = canonical_json([client, (endpoint or "").lstrip("/"), method, version, normalized])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _summarize_value(value: Any) -> Any:
    if isinstance(value, str) and len(value) > MAX_SUMMARY_STRING:
        return value[:MAX_SUMMARY_STRING] + "..."
    if isinstance(value, Mapping):
        return {str(k): _summarize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_summarize_value(v) for v in value]
    return value


def summarize_params(params: Optional[Mapping[str, Any]]) -> str:
    """Short, human-readable JSON rendering of request parameters for logs."""
    if not params:
        return "{}"
    return json.dumps(_summarize_value(params), sort_keys=True, default=str)


_UNDERSCORE_RUN = re.compile(r"_+")
NAMESPACE_HASH_LENGTH = 8


def cache_namespace(client: str, compressed: bool = False) -> str:
    """Storage namespace for a client's responses.

    Compressed and plain payloads live in separate namespaces so toggling
    compression never mixes the two encodings. When the client name has to be
    rewritten to fit (hyphens, repeated underscores, length), a short digest
    of the raw name is appended so distinct clients keep distinct namespaces.
    """
    validate_identifier(client)
    suffix = "_responses_compressed" if compressed else "_responses"
    prefix = "api_cache_"

    name = _UNDERSCORE_RUN.sub("_", client.replace("-", "_")).strip("_")
    room = MAX_NAMESPACE_LENGTH - len(prefix) - len(suffix)
    if name == client and len(name) <= room:
        return f"{prefix}{name}{suffix}"

    digest = hashlib.sha256(client.encode("utf-8")).hexdigest()[:NAMESPACE_HASH_LENGTH]
    name = name[:room - NAMESPACE_HASH_LENGTH - 1].strip("_")
    return f"{prefix}{name}_{digest}{suffix}" if name else f"{prefix}{digest}{suffix}"

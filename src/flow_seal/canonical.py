# canonical.py
# Deterministic JSON serialization — the sole input to every hash.
#
# Guarantees: object keys are sorted by code point (identical to UTF-8 byte
# order), array order is preserved, and the same value always yields the
# same bytes. Changing anything here invalidates every sealed packet.

import hashlib
import json
from typing import Any

from pydantic import BaseModel

from flow_seal.errors import CyclicStructureError


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _visit(value: Any, seen: dict[int, Any]) -> None:
    # Visited nodes stay referenced in `seen` so their ids cannot be reused mid-walk.
    marker = id(value)
    if marker in seen:
        raise CyclicStructureError(
            "Non-deterministic structure: composite node visited twice "
            f"({type(value).__name__} at id={marker})."
        )
    seen[marker] = value


def _normalize(value: Any, seen: dict[int, Any]) -> Any:
    """Copy `value` into plain JSON types, failing hard on any revisited node."""
    if isinstance(value, BaseModel):
        _visit(value, seen)
        value = value.model_dump(mode="json")

    if isinstance(value, (dict, list, tuple)):
        _visit(value, seen)

        if isinstance(value, dict):
            out: dict[str, Any] = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise TypeError(f"Canonical JSON keys must be strings, got {key!r}.")
                out[key] = _normalize(item, seen)
            return out
        return [_normalize(item, seen) for item in value]

    if value is None or isinstance(value, (str, bool, int, float)):
        return value

    raise TypeError(f"Value of type {type(value).__name__} is not canonically serializable.")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def canonical_text(value: Any, indent: int | None = 2) -> str:
    """
    Serialize `value` deterministically.

    indent=2    — pretty form with a trailing newline (manifest, metadata files)
    indent=None — compact form without newline (hash-chain payloads)
    """
    normalized = _normalize(value, {})
    if indent is None:
        return json.dumps(
            normalized,
            sort_keys=True,
            ensure_ascii=False,
            allow_nan=False,
            separators=(",", ":"),
        )
    return json.dumps(
        normalized,
        sort_keys=True,
        ensure_ascii=False,
        allow_nan=False,
        indent=indent,
    ) + "\n"


def canonical_bytes(value: Any, indent: int | None = 2) -> bytes:
    return canonical_text(value, indent=indent).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()

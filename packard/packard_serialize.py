from __future__ import annotations

import json
from typing import Any

import yaml

from packard.packard_datatypes import Number, Text, Flag, Item, Reference


# --------------------------
# Helpers
# --------------------------

def to_builtin(obj: Any) -> Any:
    """Convert runtime values (and results holding them) to plain Python data."""
    match obj:
        case Number(value=n):
            return int(n) if float(n).is_integer() else n
        case Text(value=s):
            return s
        case Flag(value=b):
            return b
        case Item():
            return None
        case Reference(name=name):
            return {"ref": name}
        case dict():
            return {k: to_builtin(v) for k, v in obj.items()}
        case list() | tuple():
            return [to_builtin(x) for x in obj]
    # ExecutionResult: avoid a runtime import cycle by duck typing
    if hasattr(obj, 'status') and hasattr(obj, 'store'):
        out = {"value": to_builtin(obj.value), "store": to_builtin(obj.store)}
        if obj.status == 'error':
            out["error"] = obj.error_message
        return out
    return obj


# --------------------------
# Public API
# --------------------------

def serialize(value: Any, *, fmt: str, pretty: bool = True) -> str:
    """
    Convert a value, a store, or an ExecutionResult into text.
    - fmt: 'json' | 'yaml'
    """
    f = (fmt or '').lower()
    built = to_builtin(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "serialize",
    "to_builtin",
]

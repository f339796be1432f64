"""
plutus_data.py - Constructor-Indexed Ledger Data

Datums and redeemers travel on the ledger as Plutus data: integers, byte
strings, lists, maps, and constructor applications (a constructor index
plus positional fields). This module models that data, serialises it to
and from the node's "detailed schema" JSON, and provides the shape
accessors decoders use. Every accessor raises RecordShapeMismatch on data
of the wrong shape so decoders can stay linear.

Detailed schema:
    int     -> {"int": 42}
    bytes   -> {"bytes": "deadbeef"}
    list    -> {"list": [...]}
    map     -> {"map": [{"k": ..., "v": ...}, ...]}
    Constr  -> {"constructor": 0, "fields": [...]}
"""

from __future__ import annotations
from dataclasses import dataclass
import json
from typing import Any, Dict, List, Optional, Tuple, Union

from .core import RecordShapeMismatch


@dataclass(frozen=True, slots=True)
class Constr:
    """Constructor application: the variant index and its positional fields."""
    index: int
    fields: Tuple[Any, ...] = ()

    def __post_init__(self):
        if isinstance(self.index, bool) or not isinstance(self.index, int) or self.index < 0:
            raise ValueError(f"Constr index must be a non-negative int, got {self.index!r}")
        object.__setattr__(self, 'fields', tuple(self.fields))


PlutusData = Union[int, bytes, List[Any], Dict[Any, Any], Constr]


# ============================================================================
# JSON (detailed schema)
# ============================================================================

def to_json(data: PlutusData) -> Dict[str, Any]:
    """Convert Plutus data to its detailed-schema JSON object."""
    if isinstance(data, bool):
        raise TypeError("bool is not Plutus data")
    if isinstance(data, int):
        return {"int": data}
    if isinstance(data, bytes):
        return {"bytes": data.hex()}
    if isinstance(data, Constr):
        return {"constructor": data.index, "fields": [to_json(f) for f in data.fields]}
    if isinstance(data, dict):
        return {"map": [{"k": to_json(k), "v": to_json(v)} for k, v in data.items()]}
    if isinstance(data, (list, tuple)):
        return {"list": [to_json(item) for item in data]}
    raise TypeError(f"{type(data).__name__} is not Plutus data")


def from_json(obj: Any) -> PlutusData:
    """
    Convert a detailed-schema JSON object back to Plutus data.

    Raises:
        RecordShapeMismatch: if obj is not well-formed detailed-schema JSON.
    """
    if not isinstance(obj, dict) or not obj:
        raise RecordShapeMismatch(f"Expected a detailed-schema object, got {obj!r}")
    if "constructor" in obj:
        index = obj["constructor"]
        raw_fields = obj.get("fields")
        if not isinstance(index, int) or isinstance(index, bool) or index < 0:
            raise RecordShapeMismatch(f"Bad constructor index {index!r}")
        if not isinstance(raw_fields, list):
            raise RecordShapeMismatch("Constructor fields must be a list")
        return Constr(index, tuple(from_json(f) for f in raw_fields))
    if len(obj) != 1:
        raise RecordShapeMismatch(f"Ambiguous detailed-schema object {obj!r}")
    (tag, payload), = obj.items()
    if tag == "int":
        if not isinstance(payload, int) or isinstance(payload, bool):
            raise RecordShapeMismatch(f"Bad int payload {payload!r}")
        return payload
    if tag == "bytes":
        try:
            return bytes.fromhex(payload)
        except (TypeError, ValueError):
            raise RecordShapeMismatch(f"Bad bytes payload {payload!r}") from None
    if tag == "list":
        if not isinstance(payload, list):
            raise RecordShapeMismatch("List payload must be a list")
        return [from_json(item) for item in payload]
    if tag == "map":
        if not isinstance(payload, list):
            raise RecordShapeMismatch("Map payload must be a list of k/v pairs")
        result = {}
        for entry in payload:
            if not isinstance(entry, dict) or set(entry) != {"k", "v"}:
                raise RecordShapeMismatch(f"Bad map entry {entry!r}")
            key = from_json(entry["k"])
            if isinstance(key, (list, dict)):
                raise RecordShapeMismatch("Map keys must be ints, bytes or constructors")
            result[key] = from_json(entry["v"])
        return result
    raise RecordShapeMismatch(f"Unknown detailed-schema tag {tag!r}")


def dumps(data: PlutusData) -> str:
    """Serialise Plutus data to a compact, key-sorted JSON string."""
    return json.dumps(to_json(data), separators=(",", ":"), sort_keys=True)


def loads(text: str) -> PlutusData:
    """Parse a JSON string produced by dumps()."""
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise RecordShapeMismatch(f"Datum is not valid JSON: {e}") from e
    return from_json(obj)


# ============================================================================
# SHAPE ACCESSORS
# ============================================================================

def as_constr(data: Any, what: str, arity: Optional[int] = None) -> Constr:
    """Return data as a Constr, optionally checking its field count."""
    if not isinstance(data, Constr):
        raise RecordShapeMismatch(f"{what}: expected a constructor, got {type(data).__name__}")
    if arity is not None and len(data.fields) != arity:
        raise RecordShapeMismatch(
            f"{what}: constructor {data.index} expects {arity} fields, got {len(data.fields)}"
        )
    return data


def as_int(data: Any, what: str) -> int:
    if isinstance(data, bool) or not isinstance(data, int):
        raise RecordShapeMismatch(f"{what}: expected an integer, got {type(data).__name__}")
    return data


def as_bytes(data: Any, what: str) -> bytes:
    if not isinstance(data, bytes):
        raise RecordShapeMismatch(f"{what}: expected bytes, got {type(data).__name__}")
    return data


def as_list(data: Any, what: str) -> List[Any]:
    if not isinstance(data, (list, tuple)):
        raise RecordShapeMismatch(f"{what}: expected a list, got {type(data).__name__}")
    return list(data)


def as_map(data: Any, what: str) -> Dict[Any, Any]:
    if not isinstance(data, dict):
        raise RecordShapeMismatch(f"{what}: expected a map, got {type(data).__name__}")
    return data

"""
Converts Python values to the R value model and back.

The mapping follows R's own data model:
  - scalars become length-one atomic vectors,
  - homogeneous lists become atomic vectors (None elements become NA),
  - string-keyed dicts become named lists,
  - everything else a list can hold goes into an unnamed list,
  - tuples and integers no R type holds exactly are rejected.
"""
from __future__ import annotations

import collections.abc
from typing import Any, Dict, Optional

from parscript.parscript_datatypes import NULL, RNull, RVector, ROpaque, RValue, ConversionError

# R stores integers as 32-bit signed values; INT_MIN is reserved for NA.
R_INT_MAX = 2**31 - 1
R_INT_MIN = -(2**31) + 1

# Order used when promoting mixed numeric sequences.
_NUMERIC_PROMOTION = {"integer": 1, "double": 2}


def _scalar_type(value: Any) -> Optional[str]:
    """Returns the R atomic type for a Python scalar, or None if it is not one."""
    match value:
        case bool():
            return "logical"
        case int():
            if R_INT_MIN <= value <= R_INT_MAX:
                return "integer"
            # Outside R's integer range only doubles remain, and they must hold the value exactly.
            try:
                exact = float(value) == value
            except OverflowError:
                exact = False
            if not exact:
                raise ConversionError(f"Integer {value} cannot be represented exactly in R", value)
            return "double"
        case float():
            return "double"
        case str():
            return "character"
    return None


def _atomic_cell(rtype: str, value: Any) -> Any:
    if value is None:
        return None
    if rtype == "double":
        return float(value)
    return value


def _common_type(items) -> Optional[str]:
    """The single atomic type all items share, or None when they need a list."""
    kinds = set()
    for item in items:
        if item is None:
            continue
        kind = _scalar_type(item)
        if kind is None:
            return None
        kinds.add(kind)
    if not kinds:
        return "logical"
    if len(kinds) == 1:
        return kinds.pop()
    if kinds <= set(_NUMERIC_PROMOTION):
        return "double"
    return None


def to_r(value: Any) -> RValue:
    """Converts a Python value into an RValue, raising ConversionError if impossible."""
    if value is None:
        return NULL
    if isinstance(value, RValue):
        return value

    kind = _scalar_type(value)
    if kind is not None:
        return RVector(kind, [_atomic_cell(kind, value)])

    if isinstance(value, collections.abc.Mapping):
        names = []
        items = []
        for key, item in value.items():
            if not isinstance(key, str):
                raise ConversionError(
                    f"Cannot convert mapping with {type(key).__name__} key {key!r} to R: keys must be str",
                    value)
            names.append(key)
            items.append(to_r(item))
        return RVector("list", items, names=names)

    # Tuples are rejected: R has no tuple, and they would come back as lists.
    if isinstance(value, list):
        if len(value) == 0:
            return RVector("logical", [])
        # A single element would collapse into a scalar on the way back.
        common = _common_type(value) if len(value) > 1 else None
        if common is not None:
            return RVector(common, [_atomic_cell(common, v) for v in value])
        return RVector("list", [to_r(v) for v in value])

    raise ConversionError(f"Cannot convert value of type {type(value).__name__} to R", value)


def _names_as_keys(names):
    # Unnamed slots of a partially named vector are keyed by 1-based position.
    return [name if name else str(i) for i, name in enumerate(names, start=1)]


def to_python(rvalue: RValue) -> Any:
    """Converts an RValue into plain Python data."""
    match rvalue:
        case RNull():
            return None
        case ROpaque():
            raise ConversionError(f"Cannot convert R {rvalue.rtype} to a Python value", rvalue)
        case RVector(rtype="list"):
            items = [to_python(v) for v in rvalue.values]
            if rvalue.is_named:
                return dict(zip(_names_as_keys(rvalue.names), items))
            return items
        case RVector():
            if rvalue.is_named:
                return dict(zip(_names_as_keys(rvalue.names), rvalue.values))
            if len(rvalue) == 1:
                return rvalue.values[0]
            return list(rvalue.values)
    raise ConversionError(f"Not an R value: {type(rvalue).__name__}", rvalue)


def as_dict(rvalue: RValue) -> Dict[str, Any]:
    """Converts a named R value into a dict; NULL gives an empty dict."""
    if isinstance(rvalue, RNull):
        return {}
    if isinstance(rvalue, RVector) and rvalue.is_named:
        return to_python(rvalue)
    raise ConversionError(f"Expected a named R list, got {rvalue!r}", rvalue)


__all__ = [
    "to_r",
    "to_python",
    "as_dict",
]

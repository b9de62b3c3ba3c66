"""Query parameter encoding.

Each operation declares a ``ParamSpec`` per query field. Encoding is
one-directional and deterministic: the same value always yields the same
wire string. Percent-encoding is applied later, once, when the request
builder assembles the query string.
"""

import json
from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import Any


class ValueType(StrEnum):
    """Python-side type of a parameter value."""

    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    JSON = "json"
    KEY_LIST = "key_list"


class OmitRule(StrEnum):
    """When a parameter is left out of the query string."""

    IF_NONE = "if_none"
    IF_FALSE = "if_false"
    IF_NEGATIVE = "if_negative"
    NEVER = "never"


class WireEncoding(StrEnum):
    """How a present value is turned into text."""

    RAW = "raw"
    JSON = "json"


@dataclass(frozen=True)
class ParamSpec:
    """Encoding policy for a single query parameter."""

    wire_name: str
    value_type: ValueType
    omit: OmitRule = OmitRule.IF_NONE
    encoding: WireEncoding = WireEncoding.RAW


def encode_json(value: Any) -> str:
    """Compact, non-ASCII-preserving JSON text.

    Control characters are escaped by the encoder, everything else is kept
    as-is so that percent-encoding produces UTF-8 escapes.
    """
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def encode_param(spec: ParamSpec, value: Any) -> tuple[str, str] | None:
    """Encode a value per its spec. Returns None when the parameter is omitted."""
    if _omitted(spec, value):
        return None
    if spec.encoding is WireEncoding.JSON:
        return spec.wire_name, encode_json(value)
    return spec.wire_name, _raw_text(spec, value)


def _omitted(spec: ParamSpec, value: Any) -> bool:
    if value is None:
        return spec.omit is not OmitRule.NEVER
    if spec.omit is OmitRule.IF_FALSE:
        return value is False
    if spec.omit is OmitRule.IF_NEGATIVE:
        return value < 0
    return False


def _raw_text(spec: ParamSpec, value: Any) -> str:
    if value is None:
        return "null"
    if spec.value_type is ValueType.BOOLEAN:
        return "true" if value else "false"
    if spec.value_type is ValueType.INTEGER:
        return str(int(value))
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)

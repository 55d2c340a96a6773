"""
Runtime value slots for schema-less decoding.

A result cursor reports a ClickHouse type string per column
(e.g. ``Nullable(Array(Int32))``). `parse_type` turns that string into a
`Slot`, and `Slot.read` checks a driver value against the slot and converts it
to a plain Python value. A value whose Python type does not fit the slot is a
`DecodeError`.
"""

import datetime
import decimal
import ipaddress
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple

from .errors import DecodeError


class ValueKind(Enum):
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    BOOL = "bool"
    TIME = "time"
    NULL = "null"
    ARRAY = "array"
    TUPLE = "tuple"
    MAP = "map"
    OPAQUE = "opaque"


_INTEGER_TYPES = {
    "Int8", "Int16", "Int32", "Int64", "Int128", "Int256",
    "UInt8", "UInt16", "UInt32", "UInt64", "UInt128", "UInt256",
}
_FLOAT_TYPES = {"Float32", "Float64", "BFloat16"}
_STRING_TYPES = {"String", "FixedString", "Enum8", "Enum16", "Enum", "UUID", "IPv4", "IPv6"}
_TIME_TYPES = {"Date", "Date32", "DateTime", "DateTime32", "DateTime64", "Time", "Time64"}
_BOOL_TYPES = {"Bool", "Boolean"}
# no scalar mapping; the driver's value is passed through
_OPAQUE_TYPES = {
    "JSON", "Object", "Variant", "Dynamic", "AggregateFunction",
    "Point", "Ring", "Polygon", "MultiPolygon", "LineString", "MultiLineString",
}

_ACCEPTED = {
    ValueKind.FLOAT: (float, decimal.Decimal),
    ValueKind.STRING: (str, bytes, uuid.UUID, ipaddress.IPv4Address, ipaddress.IPv6Address),
    ValueKind.TIME: (datetime.date, datetime.time, datetime.timedelta),
}


@dataclass(frozen=True)
class Slot:
    kind: ValueKind
    type_name: str
    nullable: bool = False
    elements: Tuple["Slot", ...] = ()
    names: Tuple[str, ...] = ()

    def read(self, value: Any, column: str = "") -> Any:
        if value is None:
            if self.nullable or self.kind in (ValueKind.NULL, ValueKind.OPAQUE):
                return None
            raise self._mismatch(value, column)

        kind = self.kind
        if kind is ValueKind.OPAQUE:
            return value
        if kind is ValueKind.NULL:
            raise self._mismatch(value, column)
        if kind is ValueKind.BOOL:
            if isinstance(value, bool):
                return value
            raise self._mismatch(value, column)
        if kind is ValueKind.INTEGER:
            if isinstance(value, int) and not isinstance(value, bool):
                return value
            raise self._mismatch(value, column)
        if kind is ValueKind.FLOAT or kind is ValueKind.TIME:
            if isinstance(value, _ACCEPTED[kind]):
                return value
            raise self._mismatch(value, column)
        if kind is ValueKind.STRING:
            if isinstance(value, str):
                return value
            if isinstance(value, bytes):
                # non UTF-8 payloads stay raw bytes
                try:
                    return value.decode("utf-8")
                except UnicodeDecodeError:
                    return value
            if isinstance(value, _ACCEPTED[kind]):
                return str(value)
            raise self._mismatch(value, column)
        if kind is ValueKind.ARRAY:
            if not isinstance(value, (list, tuple)):
                raise self._mismatch(value, column)
            element = self.elements[0]
            return [element.read(item, column) for item in value]
        if kind is ValueKind.TUPLE:
            return self._read_tuple(value, column)
        if kind is ValueKind.MAP:
            if not isinstance(value, dict):
                raise self._mismatch(value, column)
            key_slot, value_slot = self.elements
            return {
                key_slot.read(k, column): value_slot.read(v, column) for k, v in value.items()
            }
        raise self._mismatch(value, column)

    def _read_tuple(self, value: Any, column: str) -> Any:
        # named tuples can come back as dicts from the HTTP driver
        if isinstance(value, dict) and self.names:
            if len(value) != len(self.elements):
                raise self._mismatch(value, column)
            return {
                name: slot.read(value.get(name), column)
                for name, slot in zip(self.names, self.elements)
            }
        if not isinstance(value, (list, tuple)) or len(value) != len(self.elements):
            raise self._mismatch(value, column)
        return tuple(slot.read(item, column) for slot, item in zip(self.elements, value))

    def _mismatch(self, value: Any, column: str) -> DecodeError:
        return DecodeError(
            "column %s: cannot read %s value %r into %s"
            % (column or "?", type(value).__name__, value, self.type_name)
        )


def parse_type(type_name: str) -> Slot:
    """
    Build the slot for a ClickHouse type string as reported by the server.
    """
    text = (type_name or "").strip()
    if not text:
        raise DecodeError("empty column type")
    base, args = _split_type(text)

    if base == "Nullable":
        inner = parse_type(_single_arg(text, args))
        return Slot(inner.kind, text, True, inner.elements, inner.names)
    if base == "LowCardinality":
        inner = parse_type(_single_arg(text, args))
        return Slot(inner.kind, text, inner.nullable, inner.elements, inner.names)
    if base == "SimpleAggregateFunction":
        if len(args) != 2:
            raise DecodeError("malformed type: %s" % text)
        inner = parse_type(args[1])
        return Slot(inner.kind, text, inner.nullable, inner.elements, inner.names)
    if base == "Array":
        return Slot(ValueKind.ARRAY, text, elements=(parse_type(_single_arg(text, args)),))
    if base in ("Tuple", "Nested"):
        names, elements = _named_elements(text, args)
        if base == "Nested":
            row = Slot(ValueKind.TUPLE, text, elements=elements, names=names)
            return Slot(ValueKind.ARRAY, text, elements=(row,))
        return Slot(ValueKind.TUPLE, text, elements=elements, names=names)
    if base == "Map":
        if len(args) != 2:
            raise DecodeError("malformed type: %s" % text)
        return Slot(ValueKind.MAP, text, elements=(parse_type(args[0]), parse_type(args[1])))

    if base == "Nothing":
        return Slot(ValueKind.NULL, text, nullable=True)
    if base in _INTEGER_TYPES or base.startswith("Interval"):
        return Slot(ValueKind.INTEGER, text)
    if base in _FLOAT_TYPES or base.startswith("Decimal"):
        return Slot(ValueKind.FLOAT, text)
    if base in _BOOL_TYPES:
        return Slot(ValueKind.BOOL, text)
    if base in _TIME_TYPES:
        return Slot(ValueKind.TIME, text)
    if base in _STRING_TYPES:
        return Slot(ValueKind.STRING, text)
    if base in _OPAQUE_TYPES:
        return Slot(ValueKind.OPAQUE, text, nullable=True)
    raise DecodeError("unsupported column type: %s" % text)


def allocate_slots(columns: List[str], type_names: List[str]) -> List[Slot]:
    if len(columns) != len(type_names):
        raise DecodeError(
            "cursor reported %d columns but %d types" % (len(columns), len(type_names))
        )
    return [parse_type(type_name) for type_name in type_names]


def scan_row(slots: List[Slot], columns: List[str], raw: Any) -> List[Any]:
    """
    Read one cursor row through its slots. Either every column is read or
    DecodeError is raised; callers never see a partially read row.
    """
    if not isinstance(raw, (list, tuple)) or len(raw) != len(slots):
        width = len(raw) if isinstance(raw, (list, tuple)) else "?"
        raise DecodeError("row has %s values, expected %d" % (width, len(slots)))
    return [slot.read(value, column) for slot, column, value in zip(slots, columns, raw)]


def _split_type(text: str) -> Tuple[str, List[str]]:
    if "(" not in text:
        return text, []
    if not text.endswith(")"):
        raise DecodeError("malformed type: %s" % text)
    base, _, rest = text.partition("(")
    return base.strip(), split_args(rest[:-1])


def split_args(text: str) -> List[str]:
    """
    Split a type argument list on top-level commas, honouring nested
    parentheses and quoted enum labels.
    """
    parts: List[str] = []
    depth = 0
    quote: Optional[str] = None
    current: List[str] = []
    escaped = False
    for ch in text:
        if quote:
            current.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ("'", "`"):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise DecodeError("unbalanced parentheses in type arguments: %s" % text)
        elif ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    if quote or depth:
        raise DecodeError("unbalanced type arguments: %s" % text)
    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    return parts


def _single_arg(text: str, args: List[str]) -> str:
    if len(args) != 1:
        raise DecodeError("malformed type: %s" % text)
    return args[0]


def _named_elements(text: str, args: List[str]) -> Tuple[Tuple[str, ...], Tuple[Slot, ...]]:
    if not args:
        raise DecodeError("malformed type: %s" % text)
    names: List[str] = []
    elements: List[Slot] = []
    for arg in args:
        name, element = _split_named(arg)
        names.append(name)
        elements.append(parse_type(element))
    # unnamed tuple: Tuple(UInt8, String)
    if not all(names):
        return (), tuple(elements)
    return tuple(names), tuple(elements)


def _split_named(arg: str) -> Tuple[str, str]:
    """`a Nullable(String)` -> ("a", "Nullable(String)"); `String` -> ("", "String")."""
    head, sep, tail = arg.partition(" ")
    if not sep or "(" in head:
        return "", arg
    return head.strip("`\""), tail.strip()

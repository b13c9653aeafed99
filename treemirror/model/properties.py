"""Typed property values carried by synchronized nodes."""

import json
from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Vector3:
    """A three-component vector (position, size, velocity...)."""

    x: float
    y: float
    z: float

    def to_wire(self) -> dict[str, float]:
        return {"X": self.x, "Y": self.y, "Z": self.z}

    def format(self) -> str:
        return f"{_num(self.x)}, {_num(self.y)}, {_num(self.z)}"


@dataclass(frozen=True)
class Color3:
    """An RGB color with components in the 0..1 range."""

    r: float
    g: float
    b: float

    def to_wire(self) -> dict[str, float]:
        return {"R": self.r, "G": self.g, "B": self.b}

    def format(self) -> str:
        return ", ".join(str(round(c * 255)) for c in (self.r, self.g, self.b))


PropertyValue = Union[
    None, bool, int, float, str, Vector3, Color3, list, dict[str, Any]
]

_VECTOR_KEYS = frozenset(("X", "Y", "Z"))
_COLOR_KEYS = frozenset(("R", "G", "B"))


def _num(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def decode_value(value: Any) -> PropertyValue:
    """Turn a wire value into its typed form.

    Records with exactly the X/Y/Z or R/G/B keys become Vector3/Color3;
    everything else is kept as is (lists and records are decoded
    element-wise).
    """
    if isinstance(value, (Vector3, Color3)):
        return value
    if isinstance(value, dict):
        keys = frozenset(value)
        if keys == _VECTOR_KEYS and all(_is_number(v) for v in value.values()):
            return Vector3(value["X"], value["Y"], value["Z"])
        if keys == _COLOR_KEYS and all(_is_number(v) for v in value.values()):
            return Color3(value["R"], value["G"], value["B"])
        return {str(k): decode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [decode_value(v) for v in value]
    return value


def encode_value(value: PropertyValue) -> Any:
    """Turn a typed value into its JSON-compatible wire form."""
    if isinstance(value, (Vector3, Color3)):
        return value.to_wire()
    if isinstance(value, dict):
        return {str(k): encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_properties(properties: dict[str, Any] | None) -> dict[str, PropertyValue]:
    if not properties:
        return {}
    return {str(k): decode_value(v) for k, v in properties.items()}


def encode_properties(properties: dict[str, PropertyValue]) -> dict[str, Any]:
    return {k: encode_value(v) for k, v in properties.items()}


def format_value(value: PropertyValue) -> str:
    """Format a property value for display."""
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, (int, float)):
        return _num(value)
    if isinstance(value, (Vector3, Color3)):
        return value.format()
    if isinstance(value, (list, tuple)):
        return f"[{len(value)} items]"
    return json.dumps(encode_value(value), sort_keys=True)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)

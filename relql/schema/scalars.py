"""Shared scalar, enum and object types used by every generated schema."""

from enum import Enum
from typing import Any, NewType, Optional
import json
import logging

import strawberry
from graphql import StringValueNode, value_from_ast_untyped

logger = logging.getLogger(__name__)


def parse_json_value(value: Any) -> Any:
    """Parse serialized JSON text; structured values and malformed text pass through."""
    if isinstance(value, (bytes, bytearray)):
        value = value.decode('utf-8', errors='replace')
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            logger.debug(f"Keeping malformed JSON value as raw string: {value[:50]!r}")
            return value
    return value


def parse_json_literal(value_node: Any, variables: Optional[dict] = None) -> Any:
    if isinstance(value_node, StringValueNode):
        return parse_json_value(value_node.value)
    return value_from_ast_untyped(value_node, variables)


def parse_json_string_list(value: Any) -> list:
    """Decode a JSON text column holding an array; anything else becomes []."""
    if value is None:
        return []
    parsed = parse_json_value(value)
    if isinstance(parsed, list):
        return [item if item is None or isinstance(item, str) else json.dumps(item) for item in parsed]
    return []


JSON = strawberry.scalar(
    NewType("JSON", object),
    name="JSON",
    description="JSON custom scalar type",
    serialize=parse_json_value,
    parse_value=parse_json_value,
    parse_literal=parse_json_literal,
)


@strawberry.type(name="GeometryObject", description="Geometry point XY")
class GeometryObject:
    x: Optional[float] = None
    y: Optional[float] = None


@strawberry.input(name="GeometryObjectInput", description="Geometry point XY")
class GeometryObjectInput:
    x: Optional[float] = None
    y: Optional[float] = None


def to_geometry_object(value: Any) -> Optional[GeometryObject]:
    """Build a GeometryObject from a stored struct, mapping or (x, y) pair."""
    if value is None:
        return None
    if isinstance(value, dict):
        return GeometryObject(x=value.get('x'), y=value.get('y'))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return GeometryObject(x=value[0], y=value[1])
    return GeometryObject(x=getattr(value, 'x', None), y=getattr(value, 'y', None))


def from_geometry_input(value: Any) -> Optional[dict]:
    if value is None:
        return None
    if isinstance(value, dict):
        return {'x': value.get('x'), 'y': value.get('y')}
    return {'x': value.x, 'y': value.y}


OrderDirection = strawberry.enum(
    Enum("OrderDirection", {"ASC": "ASC", "DESC": "DESC"})
)

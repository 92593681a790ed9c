"""Registry of generated GraphQL enum types, one per enum-valued column."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Type
import logging
import re
import threading

import strawberry

from ..exceptions import EnumNameCollisionError
from .model import ColumnDescriptor
from .naming import to_field_name, to_pascal_case

logger = logging.getLogger(__name__)

_VALID_VALUE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_RESERVED_VALUE_NAMES = {"true", "false", "null"}


def enum_type_name(column: ColumnDescriptor) -> str:
    """``<Table><Column>Enum`` for a column."""
    return f"{to_pascal_case(column.table)}{to_pascal_case(to_field_name(column.name))}Enum"


def enum_value_names(column: ColumnDescriptor) -> Dict[str, str]:
    """Map GraphQL value names to the column's literals.

    Literals that are not valid GraphQL names are replaced by ``Option<index>``,
    the index being the literal's position in the column definition.
    """
    names: Dict[str, str] = {}
    for index, literal in enumerate(column.enum_values):
        if _VALID_VALUE_NAME.match(literal) and literal not in _RESERVED_VALUE_NAMES:
            name = literal
        else:
            name = f"Option{index}"
        if name in names:
            raise EnumNameCollisionError(
                column.table, column.name, name, [names[name], literal]
            )
        names[name] = literal
    return names


@dataclass(frozen=True)
class GeneratedEnum:
    """A generated enum type and its name/literal lookup tables."""
    type: Type[Enum]
    literals: Dict[str, str]

    @property
    def names(self) -> Dict[str, str]:
        return {literal: name for name, literal in self.literals.items()}

    def to_literal(self, value):
        """Convert an enum member or value name to the stored literal."""
        if value is None:
            return None
        if isinstance(value, Enum):
            return self.literals.get(value.name, value.value)
        return self.literals.get(value, value)


class EnumRegistry:
    """Identity cache of generated enum types keyed by ``(table, column)``.

    The first caller to miss creates the type while holding the lock, so a
    column never gets two distinct enum objects.
    """

    def __init__(self):
        self._enums: Dict[Tuple[str, str], GeneratedEnum] = {}
        self._lock = threading.Lock()

    def get(self, column: ColumnDescriptor) -> Optional[GeneratedEnum]:
        return self._enums.get(column.key)

    def get_or_create(self, column: ColumnDescriptor) -> GeneratedEnum:
        """Return the enum for a column, creating it on first reference."""
        generated = self._enums.get(column.key)
        if generated is not None:
            return generated

        with self._lock:
            generated = self._enums.get(column.key)
            if generated is None:
                generated = self._create(column)
                self._enums[column.key] = generated
        return generated

    def _create(self, column: ColumnDescriptor) -> GeneratedEnum:
        name = enum_type_name(column)
        literals = enum_value_names(column)
        members = {
            value_name: strawberry.enum_value(literal, description=f"Value: {literal}")
            for value_name, literal in literals.items()
        }
        enum_type = strawberry.enum(Enum(name, members), name=name)
        logger.debug(f"Generated enum {name} with {len(members)} values for {column.table}.{column.name}")
        return GeneratedEnum(type=enum_type, literals=literals)

    def clear(self) -> None:
        with self._lock:
            self._enums.clear()

    def __len__(self) -> int:
        return len(self._enums)

    def __contains__(self, column: ColumnDescriptor) -> bool:
        return column.key in self._enums


# Process-wide registry used when a mapper is not given its own
default_registry = EnumRegistry()

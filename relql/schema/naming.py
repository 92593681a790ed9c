"""Deterministic GraphQL and Python names derived from table and column names."""

import keyword
import re

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_]")
_WORD_SPLIT = re.compile(r"[^A-Za-z0-9]+")


def to_pascal_case(name: str) -> str:
    """Convert snake_case (or camelCase) to PascalCase, keeping inner capitals."""
    return ''.join(word[:1].upper() + word[1:] for word in _WORD_SPLIT.split(name) if word)


def to_camel_case(name: str) -> str:
    """Convert snake_case to camelCase."""
    pascal = to_pascal_case(name)
    return pascal[:1].lower() + pascal[1:]


def to_field_name(column_name: str) -> str:
    """Convert a column name to a valid GraphQL field name."""
    field_name = _INVALID_NAME_CHARS.sub('_', column_name)

    # Handle names that start with numbers
    if not field_name or field_name[0].isdigit():
        field_name = f"field_{field_name}"

    # Double underscore prefix is reserved for introspection
    if field_name.startswith('__'):
        field_name = f"field{field_name}"

    return field_name


def to_python_name(field_name: str) -> str:
    """Attribute name used on the generated Python classes."""
    if keyword.iskeyword(field_name):
        return f"{field_name}_"
    return field_name

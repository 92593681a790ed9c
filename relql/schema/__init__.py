"""Schema synthesis, type mapping and introspection."""

from .enums import EnumRegistry, GeneratedEnum, default_registry, enum_type_name
from .introspection import DuckDBIntrospector
from .model import ColumnDescriptor, RelationEdge, TableModel
from .scalars import JSON, GeometryObject, GeometryObjectInput, OrderDirection
from .synthesis import SchemaSynthesizer, SynthesizedSchema, SynthesizedTable
from .types import ColumnOverride, MappedColumn, TypeMapper, map_column

__all__ = [
    "ColumnDescriptor",
    "ColumnOverride",
    "DuckDBIntrospector",
    "EnumRegistry",
    "GeneratedEnum",
    "GeometryObject",
    "GeometryObjectInput",
    "JSON",
    "MappedColumn",
    "OrderDirection",
    "RelationEdge",
    "SchemaSynthesizer",
    "SynthesizedSchema",
    "SynthesizedTable",
    "TableModel",
    "TypeMapper",
    "default_registry",
    "enum_type_name",
    "map_column",
]

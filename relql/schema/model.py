"""Table, column and relation metadata consumed by schema synthesis."""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


# Column kinds understood by the type mapper
BOOLEAN = "boolean"
STRING = "string"
NUMBER = "number"
BIGINT = "bigint"
DATE = "date"
JSON_KIND = "json"
BUFFER = "buffer"
ARRAY = "array"
CUSTOM = "custom"

COLUMN_KINDS = (BOOLEAN, STRING, NUMBER, BIGINT, DATE, JSON_KIND, BUFFER, ARRAY, CUSTOM)

ONE = "one"
MANY = "many"


@dataclass(frozen=True)
class ColumnDescriptor:
    """Static metadata describing one table column."""
    table: str
    name: str
    kind: str
    native_type: str = ""
    not_null: bool = False
    enum_values: Tuple[str, ...] = ()
    has_default: bool = False
    has_default_fn: bool = False
    element: Optional["ColumnDescriptor"] = None
    is_primary_key: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        """Identity of the column within the model."""
        return (self.table, self.name)


@dataclass(frozen=True)
class RelationEdge:
    """A directed one-to-one or one-to-many association between two tables.

    ``source_columns`` live on ``table`` and match ``target_columns`` on
    ``target`` position by position.
    """
    table: str
    target: str
    cardinality: str
    field_name: str
    source_columns: Tuple[str, ...] = ()
    target_columns: Tuple[str, ...] = ()

    @property
    def many(self) -> bool:
        return self.cardinality == MANY


@dataclass
class TableModel:
    """Columns and outgoing relations of one table."""
    name: str
    columns: List[ColumnDescriptor]
    primary_keys: List[str] = field(default_factory=list)
    relations: List[RelationEdge] = field(default_factory=list)

    def column(self, name: str) -> Optional[ColumnDescriptor]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

"""Database introspection for DuckDB schema discovery."""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple
import logging
import re

import duckdb

from . import model
from .model import ColumnDescriptor, RelationEdge, TableModel

logger = logging.getLogger(__name__)


BOOLEAN_TYPES = {'BOOLEAN', 'BOOL', 'LOGICAL'}
STRING_TYPES = {'VARCHAR', 'TEXT', 'STRING', 'CHAR', 'BPCHAR', 'UUID', 'NVARCHAR'}
INTEGER_TYPES = {'TINYINT', 'SMALLINT', 'INTEGER', 'INT', 'UTINYINT', 'USMALLINT'}
FLOAT_TYPES = {'FLOAT', 'REAL', 'DOUBLE', 'DECIMAL', 'NUMERIC'}
BIGINT_TYPES = {'BIGINT', 'UBIGINT', 'HUGEINT', 'UHUGEINT', 'UINTEGER', 'INT8', 'LONG'}
DATE_TYPES = {
    'DATE', 'TIME', 'TIMETZ', 'TIME WITH TIME ZONE',
    'TIMESTAMP', 'TIMESTAMPTZ', 'DATETIME', 'TIMESTAMP WITH TIME ZONE',
    'TIMESTAMP WITHOUT TIME ZONE', 'TIMESTAMP_S', 'TIMESTAMP_MS', 'TIMESTAMP_NS',
    'INTERVAL',
}
BUFFER_TYPES = {'BLOB', 'BYTEA', 'BINARY', 'VARBINARY'}
STRUCTURED_JSON_TYPES = {'STRUCT', 'MAP'}
POINT_TYPES = {'POINT_2D'}

_ENUM_LITERAL = re.compile(r"'((?:[^']|'')*)'")
_FIXED_ARRAY = re.compile(r"^(.*)\[(\d*)\]$", re.DOTALL)
_POINT_STRUCT = re.compile(r"^STRUCT\(\s*\"?x\"?\s+DOUBLE\s*,\s*\"?y\"?\s+DOUBLE\s*\)$", re.IGNORECASE)
_FOREIGN_KEY = re.compile(
    r"FOREIGN\s+KEY\s*\(([^)]*)\)\s*REFERENCES\s+(\"(?:[^\"]|\"\")+\"|[^\s(]+)\s*\(([^)]*)\)",
    re.IGNORECASE,
)


def parse_enum_literals(data_type: str) -> Tuple[str, ...]:
    """Extract the literals of an ``ENUM('a', 'b')`` type string."""
    body = data_type[data_type.index('(') + 1:data_type.rindex(')')]
    return tuple(match.replace("''", "'") for match in _ENUM_LITERAL.findall(body))


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _split_identifiers(text: str) -> Tuple[str, ...]:
    return tuple(part.strip().strip('"') for part in text.split(',') if part.strip())


def add_relations(models: List[TableModel], edges: Iterable[RelationEdge]) -> None:
    """Append declared relation edges to their source tables."""
    by_name = {table.name: table for table in models}
    for edge in edges:
        if edge.table not in by_name:
            logger.warning(f"Ignoring relation {edge.field_name} declared on unknown table {edge.table}")
            continue
        by_name[edge.table].relations.append(edge)


def classify_duckdb_type(
    table: str,
    name: str,
    data_type: str,
    not_null: bool = False,
    has_default: bool = False,
    is_primary_key: bool = False,
    enum_types: Optional[Dict[str, Tuple[str, ...]]] = None,
) -> ColumnDescriptor:
    """Build a column descriptor from a DuckDB type string."""
    type_text = data_type.strip()
    upper = type_text.upper()
    common = dict(
        table=table,
        name=name,
        not_null=not_null,
        has_default=has_default,
        is_primary_key=is_primary_key,
    )

    if upper.startswith('ENUM('):
        return ColumnDescriptor(kind=model.STRING, native_type='ENUM',
                                enum_values=parse_enum_literals(type_text), **common)

    if enum_types and type_text in enum_types:
        return ColumnDescriptor(kind=model.STRING, native_type='ENUM',
                                enum_values=enum_types[type_text], **common)

    array_match = _FIXED_ARRAY.match(type_text)
    if array_match:
        element_type, size = array_match.group(1), array_match.group(2)
        element = classify_duckdb_type(table, name, element_type, not_null=True, enum_types=enum_types)
        if size and element.kind == model.NUMBER and element.native_type in FLOAT_TYPES:
            return ColumnDescriptor(kind=model.ARRAY, native_type='VECTOR', element=element, **common)
        return ColumnDescriptor(kind=model.ARRAY, native_type='LIST', element=element, **common)

    if _POINT_STRUCT.match(type_text):
        return ColumnDescriptor(kind=model.JSON_KIND, native_type='POINT_2D', **common)

    base_type = upper.split('(')[0].strip()

    if base_type in BOOLEAN_TYPES:
        kind = model.BOOLEAN
    elif base_type in STRING_TYPES:
        kind = model.STRING
    elif base_type in INTEGER_TYPES or base_type in FLOAT_TYPES:
        kind = model.NUMBER
    elif base_type in BIGINT_TYPES:
        kind = model.BIGINT
    elif base_type in DATE_TYPES:
        kind = model.DATE
    elif base_type in BUFFER_TYPES:
        kind = model.BUFFER
    elif base_type == 'JSON' or base_type in STRUCTURED_JSON_TYPES or base_type in POINT_TYPES:
        kind = model.JSON_KIND
    else:
        kind = model.CUSTOM

    return ColumnDescriptor(kind=kind, native_type=base_type, **common)


class DuckDBIntrospector:
    """Introspects DuckDB database schema."""

    def __init__(self, connection: duckdb.DuckDBPyConnection, schema: str = 'main'):
        self.connection = connection
        self.schema = schema

    def get_tables(self) -> List[str]:
        """Get all table names in the database."""
        result = self.connection.execute(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = ?
                AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            [self.schema]
        ).fetchall()
        return [row[0] for row in result]

    def get_table_model(self, table_name: str, enum_types: Optional[Dict[str, Tuple[str, ...]]] = None) -> TableModel:
        """Get columns and primary keys of a table (relations are added by get_models)."""
        if enum_types is None:
            enum_types = self._get_enum_types()
        primary_keys = self._get_primary_keys(table_name)

        result = self.connection.execute(
            """
            SELECT
                column_name,
                data_type,
                is_nullable,
                column_default
            FROM information_schema.columns
            WHERE table_schema = ?
                AND table_name = ?
            ORDER BY ordinal_position
            """,
            [self.schema, table_name]
        ).fetchall()

        columns = [
            classify_duckdb_type(
                table_name,
                row[0],
                row[1],
                not_null=row[2] == 'NO' or row[0] in primary_keys,
                has_default=row[3] is not None,
                is_primary_key=row[0] in primary_keys,
                enum_types=enum_types,
            )
            for row in result
        ]

        return TableModel(name=table_name, columns=columns, primary_keys=primary_keys)

    def get_models(self, extra_relations: Iterable[RelationEdge] = ()) -> List[TableModel]:
        """Get table models for every table, with relations derived from foreign keys."""
        enum_types = self._get_enum_types()
        models = [self.get_table_model(name, enum_types) for name in self.get_tables()]
        by_name = {table.name: table for table in models}

        for edge in self.derive_relations(models, self.get_foreign_keys()):
            by_name[edge.table].relations.append(edge)

        add_relations(models, extra_relations)

        logger.debug(f"Introspected {len(models)} tables from schema '{self.schema}'")
        return models

    def get_foreign_keys(self) -> List[Tuple[str, Tuple[str, ...], str, Tuple[str, ...]]]:
        """Get ``(table, columns, referenced_table, referenced_columns)`` tuples."""
        result = self.connection.execute(
            """
            SELECT table_name, constraint_text
            FROM duckdb_constraints()
            WHERE schema_name = ?
                AND constraint_type = 'FOREIGN KEY'
            ORDER BY table_name, constraint_index
            """,
            [self.schema]
        ).fetchall()

        foreign_keys = []
        for table_name, constraint_text in result:
            match = _FOREIGN_KEY.search(constraint_text or '')
            if not match:
                continue
            referenced = match.group(2)
            if not referenced.startswith('"'):
                referenced = referenced.split('.')[-1]
            referenced = referenced.strip('"').replace('""', '"')
            foreign_keys.append((
                table_name,
                _split_identifiers(match.group(1)),
                referenced,
                _split_identifiers(match.group(3)),
            ))
        return foreign_keys

    @staticmethod
    def derive_relations(
        models: List[TableModel],
        foreign_keys: List[Tuple[str, Tuple[str, ...], str, Tuple[str, ...]]],
    ) -> List[RelationEdge]:
        """Turn each foreign key into a ``one`` edge and its inverse ``many`` edge."""
        by_name = {table.name: table for table in models}
        pair_counts: Dict[Tuple[str, str], int] = defaultdict(int)
        for table, _, referenced, _ in foreign_keys:
            pair_counts[(table, referenced)] += 1

        taken: Dict[str, set] = {
            table.name: {col.name for col in table.columns} for table in models
        }
        edges = []

        def claim(table: str, preferred: str, fallback: str) -> str:
            name = preferred if preferred not in taken[table] else fallback
            taken[table].add(name)
            return name

        for table, columns, referenced, referenced_columns in foreign_keys:
            if table not in by_name or referenced not in by_name:
                continue
            suffix = '_'.join(columns)
            ambiguous = pair_counts[(table, referenced)] > 1

            one_name = referenced
            if len(columns) == 1:
                stripped = re.sub(r'(_id|Id|_ID)$', '', columns[0])
                if stripped and stripped != columns[0]:
                    one_name = stripped
            edges.append(RelationEdge(
                table=table,
                target=referenced,
                cardinality=model.ONE,
                field_name=claim(table, one_name, f"{referenced}_by_{suffix}"),
                source_columns=columns,
                target_columns=referenced_columns,
            ))

            many_name = f"{table}_by_{suffix}" if ambiguous else table
            edges.append(RelationEdge(
                table=referenced,
                target=table,
                cardinality=model.MANY,
                field_name=claim(referenced, many_name, f"{table}_by_{suffix}_list"),
                source_columns=referenced_columns,
                target_columns=columns,
            ))

        return edges

    def _get_primary_keys(self, table_name: str) -> List[str]:
        """Get primary key columns of a table in the introspected schema."""
        result = self.connection.execute(
            """
            SELECT constraint_column_names
            FROM duckdb_constraints()
            WHERE schema_name = ?
                AND table_name = ?
                AND constraint_type = 'PRIMARY KEY'
            """,
            [self.schema, table_name]
        ).fetchall()
        return [column for (columns,) in result for column in columns]

    def _get_enum_types(self) -> Dict[str, Tuple[str, ...]]:
        """Get the literals of every user-defined ENUM type of the schema.

        Keys are the bare and the schema qualified type names. DuckDB's
        built-in parameterless ``enum`` type is internal and skipped.
        """
        result = self.connection.execute(
            """
            SELECT DISTINCT type_name
            FROM duckdb_types()
            WHERE logical_type = 'ENUM'
                AND NOT internal
                AND schema_name = ?
                AND database_name = current_database()
            ORDER BY type_name
            """,
            [self.schema]
        ).fetchall()

        enum_types = {}
        for (type_name,) in result:
            qualified = f"{_quote(self.schema)}.{_quote(type_name)}"
            values = self.connection.execute(f"SELECT enum_range(NULL::{qualified})").fetchone()[0]
            enum_types[type_name] = tuple(values)
            enum_types[f"{self.schema}.{type_name}"] = tuple(values)
        return enum_types

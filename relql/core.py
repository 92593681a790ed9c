"""Core RelQL implementation."""

from typing import Annotated, Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple
from contextlib import contextmanager
import asyncio
import duckdb
import strawberry
from strawberry.fastapi import GraphQLRouter
from strawberry.schema.config import StrawberryConfig
from strawberry.types import Info
from fastapi import FastAPI
import uvicorn
import logging
import uuid

from .schema import ColumnOverride, DuckDBIntrospector, EnumRegistry, RelationEdge, TableModel, TypeMapper
from .schema.introspection import add_relations
from .schema.naming import to_camel_case, to_field_name
from .schema.synthesis import SchemaSynthesizer, SynthesizedSchema, SynthesizedTable, attach_relations
from .selection import FieldSelection, Selection, build_selection, extract_columns
from .execution import SQLTranslator, QueryExecutor
from .exceptions import RelQLError, SchemaError, QueryError, ValidationError
from .validation import create_depth_limit_extension

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class RelQL:
    """Main RelQL class: synthesizes a GraphQL API over the tables of a DuckDB database."""

    def __init__(self,
                 connection: duckdb.DuckDBPyConnection,
                 *,
                 tables: Optional[Sequence[TableModel]] = None,
                 relations: Iterable[RelationEdge] = (),
                 relations_depth_limit: Optional[int] = 3,
                 column_overrides: Optional[Mapping[str, Mapping[str, ColumnOverride]]] = None,
                 json_array_columns: Optional[Mapping[str, Any]] = None,
                 infer_json_arrays: bool = True,
                 mutations: bool = True,
                 schema: str = 'main',
                 max_workers: int = 4,
                 max_retries: int = 3,
                 retry_delay: float = 0.1,
                 retry_backoff: float = 2.0,
                 log_queries: bool = False,
                 log_slow_queries: bool = True,
                 slow_query_ms: int = 1000,
                 max_query_depth: Optional[int] = None):
        """
        Initialize RelQL with a DuckDB connection.

        Args:
            connection: DuckDB database connection
            tables: Table models to expose instead of introspecting the database
            relations: Extra relation edges added to the introspected ones
            relations_depth_limit: Levels of nested relation types (None for
                every path that does not revisit a table)
            column_overrides: ``{table: {column: ColumnOverride}}`` explicit types
            json_array_columns: ``{table: [columns]}`` or ``{table: {column: bool}}``
                marking JSON text columns that hold string arrays
            infer_json_arrays: Guess string arrays from JSON column names
            mutations: Whether to generate insert, update and delete mutations
            schema: Database schema to introspect
            max_workers: Maximum number of worker threads for query execution
            max_retries: Maximum number of retry attempts for failed queries
            retry_delay: Initial delay between retries in seconds
            retry_backoff: Multiplier for exponential backoff
            log_queries: Whether to log all SQL queries at DEBUG level
            log_slow_queries: Whether to log slow queries at WARNING level
            slow_query_ms: Threshold in milliseconds for slow query logging
            max_query_depth: Maximum allowed query depth (None for unlimited)
        """
        self.connection = connection
        self.introspector = DuckDBIntrospector(connection, schema=schema)
        self.enum_registry = EnumRegistry()
        self.type_mapper = TypeMapper(
            registry=self.enum_registry,
            overrides=column_overrides,
            json_array_columns=json_array_columns,
            infer_json_arrays=infer_json_arrays,
        )

        self.executor = QueryExecutor(
            connection,
            max_workers=max_workers,
            max_retries=max_retries,
            retry_delay=retry_delay,
            retry_backoff=retry_backoff,
            log_queries=log_queries,
            log_slow_queries=log_slow_queries,
            slow_query_ms=slow_query_ms,
        )
        self.translator = SQLTranslator()
        self.max_query_depth = max_query_depth
        self.relations_depth_limit = relations_depth_limit
        self.mutations = mutations

        self._tables = list(tables) if tables is not None else None
        self._relations = list(relations)

        self._schema: Optional[strawberry.Schema] = None
        self._synthesized: Optional[SynthesizedSchema] = None
        self._build_schema()

    def _load_models(self) -> List[TableModel]:
        if self._tables is None:
            return self.introspector.get_models(self._relations)

        models = [
            TableModel(
                name=table.name,
                columns=list(table.columns),
                primary_keys=list(table.primary_keys),
                relations=list(table.relations),
            )
            for table in self._tables
        ]
        add_relations(models, self._relations)
        return models

    def _build_schema(self) -> None:
        """Build GraphQL schema from the table models."""
        models = self._load_models()
        if not models:
            raise SchemaError(
                "No tables found to build a schema from",
                suggestions=["Create at least one table or pass tables=[...]"],
            )

        self._synthesized = SchemaSynthesizer(
            models,
            type_mapper=self.type_mapper,
            relations_depth_limit=self.relations_depth_limit,
        ).build()

        query_fields: Dict[str, Any] = {}
        mutation_fields: Dict[str, Any] = {}

        for table in self._synthesized.tables.values():
            list_field_name = to_field_name(to_camel_case(table.name))
            self._add_root_field(query_fields, list_field_name, self._create_list_resolver(table, list_field_name))
            self._add_root_field(query_fields, f"{list_field_name}Single",
                                 self._create_single_resolver(table, f"{list_field_name}Single"))

            if self.mutations:
                type_name = table.type_name
                self._add_root_field(mutation_fields, f"insertInto{type_name}",
                                     self._create_insert_resolver(table, f"insertInto{type_name}"))
                self._add_root_field(mutation_fields, f"insertInto{type_name}Single",
                                     self._create_insert_single_resolver(table, f"insertInto{type_name}Single"))
                self._add_root_field(mutation_fields, f"update{type_name}",
                                     self._create_update_resolver(table, f"update{type_name}"))
                self._add_root_field(mutation_fields, f"deleteFrom{type_name}",
                                     self._create_delete_resolver(table, f"deleteFrom{type_name}"))

        Query = strawberry.type(type("Query", (), query_fields))
        Mutation = strawberry.type(type("Mutation", (), mutation_fields)) if mutation_fields else None

        extensions = []
        if self.max_query_depth is not None:
            extensions.append(create_depth_limit_extension(self.max_query_depth))

        self._schema = strawberry.Schema(
            query=Query,
            mutation=Mutation,
            types=self._synthesized.object_types(),
            extensions=extensions,
            config=StrawberryConfig(auto_camel_case=False),
        )
        logger.info(
            f"Built GraphQL schema with {len(query_fields)} query fields "
            f"and {len(mutation_fields)} mutation fields"
        )

    @staticmethod
    def _add_root_field(fields: Dict[str, Any], name: str, field: Any) -> None:
        if name in fields:
            raise SchemaError(
                f"Root field '{name}' is generated for more than one table",
                suggestions=["Rename one of the tables or expose a subset with tables=[...]"],
            )
        fields[name] = field

    @contextmanager
    def _resolving(self, table: SynthesizedTable, operation: str, failure: str) -> Iterator[str]:
        """Yield a correlation id; wrap unexpected errors of the block into a QueryError."""
        correlation_id = str(uuid.uuid4())
        try:
            yield correlation_id
        except RelQLError:
            raise
        except Exception as e:
            logger.error(f"[{correlation_id}] Error in {operation} resolver for {table.name}: {e}")
            raise QueryError(
                failure,
                table_name=table.name,
                operation=operation,
                correlation_id=correlation_id,
                context={"original_error": str(e)}
            ) from e

    def _create_list_resolver(self, table: SynthesizedTable, field_name: str) -> Any:
        """Create a resolver for fetching a list of rows."""
        type_name = f"{table.type_name}SelectItem"
        select_type = table.select_item
        filter_type = table.filter
        order_by_type = table.order_by

        async def resolver(
            root: Any,
            info: Info,
            where: Optional[filter_type] = None,
            order_by: Optional[order_by_type] = None,
            limit: Optional[int] = None,
            offset: Optional[int] = None,
        ) -> List[select_type]:
            with self._resolving(table, "list", f"Failed to fetch {table.name} records") as correlation_id:
                self._validate_window(limit, offset)
                rows = await self._select(
                    type_name,
                    self._root_selection(info, type_name),
                    where=table.where_from_input(where),
                    order_by=table.order_from_input(order_by),
                    limit=limit,
                    offset=offset,
                    context=self._context(correlation_id, table, "list"),
                )
                return [instance for _, instance in rows]

        return strawberry.field(resolver=resolver, name=field_name,
                                description=f"Fetch a list of {table.name} records")

    def _create_single_resolver(self, table: SynthesizedTable, field_name: str) -> Any:
        """Create a resolver for fetching the first matching row."""
        type_name = f"{table.type_name}SelectItem"
        select_type = table.select_item
        filter_type = table.filter
        order_by_type = table.order_by

        async def resolver(
            root: Any,
            info: Info,
            where: Optional[filter_type] = None,
            order_by: Optional[order_by_type] = None,
            offset: Optional[int] = None,
        ) -> Optional[select_type]:
            with self._resolving(table, "single", f"Failed to fetch {table.name} record") as correlation_id:
                self._validate_window(None, offset)
                rows = await self._select(
                    type_name,
                    self._root_selection(info, type_name),
                    where=table.where_from_input(where),
                    order_by=table.order_from_input(order_by),
                    limit=1,
                    offset=offset,
                    context=self._context(correlation_id, table, "single"),
                )
                return rows[0][1] if rows else None

        return strawberry.field(resolver=resolver, name=field_name,
                                description=f"Fetch a single {table.name} record")

    def _create_insert_resolver(self, table: SynthesizedTable, field_name: str) -> Any:
        """Create a resolver inserting several rows in one transaction."""
        item_type = table.item
        insert_type = table.insert_input

        async def resolver(root: Any, info: Info, values: List[insert_type]) -> List[item_type]:
            with self._resolving(table, "insert", f"Failed to insert {table.name} records") as correlation_id:
                if not values:
                    raise ValidationError(
                        f"No values given to insert into {table.name}",
                        field_name="values",
                        correlation_id=correlation_id,
                    )
                returning = self._returning_columns(info, table)
                queries = [
                    self.translator.translate_insert(table.name, table.values_from_input(value), returning)
                    for value in values
                ]
                results = await self.executor.execute_transaction(
                    queries, self._context(correlation_id, table, "insert")
                )
                return [self._hydrate(table, table.item, row) for result in results for row in result.rows]

        return strawberry.field(resolver=resolver, name=field_name,
                                description=f"Insert {table.name} records")

    def _create_insert_single_resolver(self, table: SynthesizedTable, field_name: str) -> Any:
        item_type = table.item
        insert_type = table.insert_input

        async def resolver(root: Any, info: Info, values: insert_type) -> Optional[item_type]:
            with self._resolving(table, "insert", f"Failed to insert {table.name} record") as correlation_id:
                sql, params = self.translator.translate_insert(
                    table.name, table.values_from_input(values), self._returning_columns(info, table)
                )
                result = await self.executor.execute_query(
                    sql, params, self._context(correlation_id, table, "insert")
                )
                return self._hydrate(table, table.item, result.rows[0]) if result.rows else None

        return strawberry.field(resolver=resolver, name=field_name,
                                description=f"Insert one {table.name} record")

    def _create_update_resolver(self, table: SynthesizedTable, field_name: str) -> Any:
        """Create a resolver updating the rows matching a filter."""
        item_type = table.item
        update_type = table.update_input
        filter_type = table.filter

        async def resolver(
            root: Any,
            info: Info,
            values: Annotated[update_type, strawberry.argument(name="set")],
            where: Optional[filter_type] = None,
        ) -> List[item_type]:
            with self._resolving(table, "update", f"Failed to update {table.name} records") as correlation_id:
                sql, params = self.translator.translate_update(
                    table.name,
                    table.values_from_input(values, update=True),
                    table.where_from_input(where),
                    self._returning_columns(info, table),
                )
                result = await self.executor.execute_query(
                    sql, params, self._context(correlation_id, table, "update")
                )
                return [self._hydrate(table, table.item, row) for row in result.rows]

        return strawberry.field(resolver=resolver, name=field_name,
                                description=f"Update {table.name} records matching a filter")

    def _create_delete_resolver(self, table: SynthesizedTable, field_name: str) -> Any:
        item_type = table.item
        filter_type = table.filter

        async def resolver(root: Any, info: Info, where: Optional[filter_type] = None) -> List[item_type]:
            with self._resolving(table, "delete", f"Failed to delete {table.name} records") as correlation_id:
                sql, params = self.translator.translate_delete(
                    table.name,
                    table.where_from_input(where),
                    self._returning_columns(info, table),
                )
                result = await self.executor.execute_query(
                    sql, params, self._context(correlation_id, table, "delete")
                )
                return [self._hydrate(table, table.item, row) for row in result.rows]

        return strawberry.field(resolver=resolver, name=field_name,
                                description=f"Delete {table.name} records matching a filter")

    def _root_selection(self, info: Info, type_name: str) -> Optional[Selection]:
        return build_selection(
            info.selected_fields[0].selections,
            type_name,
            self._synthesized.relation_type_name,
        )

    def _returning_columns(self, info: Info, table: SynthesizedTable) -> List[str]:
        type_name = f"{table.type_name}Item"
        extracted = extract_columns(
            self._root_selection(info, type_name),
            self._synthesized.selection_target(type_name),
        )
        return self._ordered_columns(table, extracted.columns)

    @staticmethod
    def _ordered_columns(table: SynthesizedTable, columns: Iterable[str]) -> List[str]:
        """Columns in table order, defaulting to the primary key (or first column)."""
        wanted = set(columns) or set(table.default_columns())
        return [column.name for column in table.model.columns if column.name in wanted]

    @staticmethod
    def _context(correlation_id: str, table: SynthesizedTable, operation: str) -> Dict[str, Any]:
        return {"correlation_id": correlation_id, "table": table.name, "operation": operation}

    @staticmethod
    def _validate_window(limit: Optional[int], offset: Optional[int]) -> None:
        for name, value in (("limit", limit), ("offset", offset)):
            if value is not None and value < 0:
                raise ValidationError(
                    f"'{name}' must not be negative",
                    field_name=name,
                    expected_type="non-negative Int",
                    actual_value=value,
                )

    async def _select(
        self,
        type_name: str,
        selection: Optional[Selection],
        where: Optional[Dict[str, Dict[str, Any]]] = None,
        order_by: Optional[Dict[str, str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        keys: Optional[Tuple[Sequence[str], Sequence[tuple]]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> List[Tuple[Row, Any]]:
        """Fetch the rows of one type level, their relations, and hydrate them.

        Returns ``(row, instance)`` pairs; the raw row keeps join key values
        for the caller grouping child rows under their parents.
        """
        synthesized = self._synthesized
        table = synthesized.table_for_type(type_name)
        extracted = extract_columns(selection, synthesized.selection_target(type_name))

        columns = set(extracted.columns)
        for selected in extracted.relations.values():
            columns.update(synthesized.relation_edge(type_name, selected.name).source_columns)
        if keys is not None:
            if not keys[1]:
                return []
            columns.update(keys[0])

        sql, params = self.translator.translate_query(
            table_name=table.name,
            selections=self._ordered_columns(table, columns),
            where=where,
            order_by=order_by,
            limit=limit,
            offset=offset,
            keys=keys,
        )
        result = await self.executor.execute_query(sql, params, context)

        relations = await self._load_relations(type_name, result.rows, extracted.relations, context)
        object_type = synthesized.types[type_name]
        return [
            (row, attach_relations(self._hydrate(table, object_type, row), row_relations))
            for row, row_relations in zip(result.rows, relations)
        ]

    async def _load_relations(
        self,
        type_name: str,
        rows: List[Row],
        relations: Dict[str, FieldSelection],
        context: Optional[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        """Load each requested relation of ``rows`` with one batched query per response key.

        Aliases of the same relation are fetched separately, each with its own
        arguments, and stored under their alias.
        """
        loaded: List[Dict[str, Any]] = [{} for _ in rows]
        if not rows or not relations:
            return loaded

        response_keys = list(relations)
        children = await asyncio.gather(*[
            self._load_relation(type_name, relations[key].name, relations[key], rows, context)
            for key in response_keys
        ])
        for key, values in zip(response_keys, children):
            for row_relations, value in zip(loaded, values):
                row_relations[key] = value
        return loaded

    async def _load_relation(
        self,
        type_name: str,
        field_name: str,
        selected: FieldSelection,
        rows: List[Row],
        context: Optional[Dict[str, Any]],
    ) -> List[Any]:
        synthesized = self._synthesized
        edge = synthesized.relation_edge(type_name, field_name)
        child_type = synthesized.relation_type_name(type_name, field_name)
        child_table = synthesized.table_for_type(child_type)
        arguments = selected.arguments or {}

        parent_keys = [tuple(row.get(column) for column in edge.source_columns) for row in rows]
        unique_keys = list(dict.fromkeys(key for key in parent_keys if None not in key))

        children = await self._select(
            child_type,
            selected.selection,
            where=child_table.where_from_arguments(arguments.get("where")),
            order_by=child_table.order_from_arguments(arguments.get("order_by")) if edge.many else None,
            keys=(edge.target_columns, unique_keys),
            context=context,
        )

        grouped: Dict[tuple, List[Any]] = {}
        for child_row, instance in children:
            key = tuple(child_row.get(column) for column in edge.target_columns)
            grouped.setdefault(key, []).append(instance)

        if not edge.many:
            return [grouped.get(key, [None])[0] for key in parent_keys]

        limit = self._int_argument(arguments.get("limit"))
        offset = self._int_argument(arguments.get("offset")) or 0
        self._validate_window(limit, offset)
        end = None if limit is None else offset + limit
        return [grouped.get(key, [])[offset:end] for key in parent_keys]

    @staticmethod
    def _int_argument(value: Any) -> Optional[int]:
        return None if value is None else int(value)

    @staticmethod
    def _hydrate(table: SynthesizedTable, object_type: Any, row: Row) -> Any:
        """Build an instance of a generated type from a database row."""
        values = {}
        for field_name, mapped in table.columns.items():
            column = mapped.column.name
            if column in row:
                values[table.python_names[field_name]] = mapped.to_output(row[column])
        return object_type(**values)

    def serve(
        self,
        host: str = "0.0.0.0",
        port: int = 8000,
        path: str = "/graphql",
        debug: bool = True
    ) -> None:
        """Start the GraphQL server."""
        app = FastAPI(title="RelQL GraphQL API")

        graphql_app = GraphQLRouter(self._schema, path=path)
        app.include_router(graphql_app, prefix="")

        @app.get("/health")
        async def health():
            return {"status": "healthy"}

        logger.info(f"RelQL server starting at http://{host}:{port}{path}")
        logger.info(f"GraphQL playground available at http://{host}:{port}{path}")

        uvicorn.run(app, host=host, port=port, log_level="info" if debug else "warning")

    def get_schema(self) -> strawberry.Schema:
        """Get the generated GraphQL schema."""
        return self._schema

    @property
    def synthesized(self) -> SynthesizedSchema:
        """Generated types and name mappings of the current schema."""
        return self._synthesized

    def rebuild(self) -> strawberry.Schema:
        """Re-introspect the database and rebuild the schema, e.g. after DDL changes."""
        self.enum_registry.clear()
        self._build_schema()
        return self._schema

    def get_stats(self) -> Dict[str, Any]:
        """Get query execution statistics."""
        return self.executor.get_stats()

    def reset_stats(self) -> None:
        """Reset query execution statistics."""
        self.executor.reset_stats()

    def close(self) -> None:
        """Release the worker threads and pooled connections."""
        if getattr(self, 'executor', None) is not None:
            self.executor.close()
            self.executor = None

    def __del__(self):
        """Cleanup resources."""
        self.close()

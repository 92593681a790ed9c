"""Structured filters to SQL translation."""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from dataclasses import dataclass, field
from sqlglot import exp

from ..exceptions import FilterError


COMPARISONS = {
    'eq': exp.EQ,
    'ne': exp.NEQ,
    'gt': exp.GT,
    'gte': exp.GTE,
    'lt': exp.LT,
    'lte': exp.LTE,
    'like': exp.Like,
    'ilike': exp.ILike,
}

OPERATORS = set(COMPARISONS) | {'in', 'not_in', 'is_null'}

DIALECT = "duckdb"


@dataclass
class QueryContext:
    """Context for building SQL queries.

    Parameters are positional; ``params`` is filled in the order the
    placeholders appear in the generated statement.
    """
    table_name: str
    selections: List[str] = field(default_factory=list)
    conditions: List[exp.Expression] = field(default_factory=list)
    order_by: List[Tuple[str, str]] = field(default_factory=list)
    limit: Optional[int] = None
    offset: Optional[int] = None
    params: List[Any] = field(default_factory=list)

    def bind(self, value: Any) -> exp.Placeholder:
        self.params.append(value)
        return exp.Placeholder()


class SQLTranslator:
    """Translates structured filters, orderings and row values to DuckDB SQL.

    A filter is ``{column: {operator: value}}``; conditions on different
    columns, and different operators on one column, are combined with AND.
    """

    def translate_query(
        self,
        table_name: str,
        selections: Sequence[str],
        where: Optional[Mapping[str, Mapping[str, Any]]] = None,
        order_by: Optional[Mapping[str, str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        keys: Optional[Tuple[Sequence[str], Sequence[Sequence[Any]]]] = None,
    ) -> Tuple[str, List[Any]]:
        """Translate a SELECT.

        Args:
            keys: ``(columns, values)`` restricting the rows to the given key
                tuples, used for batched relation loading
        """
        context = QueryContext(
            table_name=table_name,
            selections=list(selections),
            limit=limit,
            offset=offset,
        )

        if where:
            self._build_where_conditions(where, context)
        if keys is not None:
            context.conditions.append(self._build_key_condition(keys[0], keys[1], context))
        if order_by:
            for column, direction in order_by.items():
                context.order_by.append((column, direction))

        return self._build_sql(context), context.params

    def translate_insert(
        self,
        table_name: str,
        values: Mapping[str, Any],
        returning: Sequence[str],
    ) -> Tuple[str, List[Any]]:
        """Translate a single-row INSERT ... RETURNING."""
        context = QueryContext(table_name=table_name)
        table = exp.table_(table_name, quoted=True)
        if values:
            row = exp.Tuple(expressions=[context.bind(value) for value in values.values()])
            statement = exp.insert(
                exp.Values(expressions=[row]),
                table,
                columns=[exp.to_identifier(column, quoted=True) for column in values],
            )
        else:
            statement = exp.Insert(this=table, default=True)
        return self._render(statement, returning), context.params

    def translate_update(
        self,
        table_name: str,
        values: Mapping[str, Any],
        where: Optional[Mapping[str, Mapping[str, Any]]],
        returning: Sequence[str],
    ) -> Tuple[str, List[Any]]:
        """Translate an UPDATE ... RETURNING."""
        if not values:
            raise FilterError(
                "Update requires at least one column value",
                table_name=table_name,
                operation="update",
                suggestions=["Provide at least one field in 'set'"],
            )
        # SET values are bound before the WHERE values
        context = QueryContext(table_name=table_name)
        assignments = [
            exp.EQ(this=exp.column(column, quoted=True), expression=context.bind(value))
            for column, value in values.items()
        ]
        self._build_where_conditions(where or {}, context)

        statement = exp.update(
            exp.table_(table_name, quoted=True),
            where=exp.Where(this=exp.and_(*context.conditions)) if context.conditions else None,
        )
        statement.set("expressions", assignments)
        return self._render(statement, returning), context.params

    def translate_delete(
        self,
        table_name: str,
        where: Optional[Mapping[str, Mapping[str, Any]]],
        returning: Sequence[str],
    ) -> Tuple[str, List[Any]]:
        """Translate a DELETE ... RETURNING."""
        context = QueryContext(table_name=table_name)
        self._build_where_conditions(where or {}, context)

        statement = exp.delete(exp.table_(table_name, quoted=True))
        if context.conditions:
            statement = statement.where(exp.and_(*context.conditions), copy=False)
        return self._render(statement, returning), context.params

    @staticmethod
    def _render(statement: exp.Expression, returning: Sequence[str]) -> str:
        """Render a DML statement with its RETURNING columns on one line."""
        if returning:
            statement = statement.returning(
                exp.Returning(expressions=[exp.column(column, quoted=True) for column in returning]),
                copy=False,
            )
        return statement.sql(dialect=DIALECT)

    def _build_where_conditions(self, where: Mapping[str, Mapping[str, Any]], context: QueryContext) -> None:
        """Build WHERE conditions from a structured filter."""
        for column, operators in where.items():
            if not isinstance(operators, Mapping):
                raise FilterError(
                    f"Invalid filter for column '{column}'",
                    table_name=context.table_name or None,
                    suggestions=["Filters map each column to {operator: value}"],
                )
            for operator, value in operators.items():
                condition = self._build_field_condition(column, operator, value, context)
                if condition is not None:
                    context.conditions.append(condition)

    def _build_field_condition(
        self, column: str, operator: str, value: Any, context: QueryContext
    ) -> Optional[exp.Expression]:
        """Build a condition for a specific column."""
        if operator not in OPERATORS:
            raise FilterError(
                f"Unknown filter operator '{operator}' on column '{column}'",
                table_name=context.table_name or None,
                suggestions=[f"Use one of: {', '.join(sorted(OPERATORS))}"],
            )

        target = exp.column(column, quoted=True)

        if operator == 'is_null':
            if value is None:
                return None
            condition = exp.Is(this=target, expression=exp.Null())
            return condition if value else exp.Not(this=condition)

        # A null comparison value means "no condition"
        if value is None:
            return None

        if operator in ('in', 'not_in'):
            values = list(value) if isinstance(value, (list, tuple, set)) else [value]
            if not values:
                return exp.false() if operator == 'in' else exp.true()
            condition = exp.In(this=target, expressions=[context.bind(v) for v in values])
            return condition if operator == 'in' else exp.Not(this=condition)

        return COMPARISONS[operator](this=target, expression=context.bind(value))

    @staticmethod
    def _build_key_condition(
        columns: Sequence[str], values: Sequence[Sequence[Any]], context: QueryContext
    ) -> exp.Expression:
        if not values:
            return exp.false()
        if len(columns) == 1:
            target = exp.column(columns[0], quoted=True)
            return exp.In(this=target, expressions=[context.bind(key[0]) for key in values])
        return exp.or_(*[
            exp.and_(*[
                exp.EQ(this=exp.column(column, quoted=True), expression=context.bind(value))
                for column, value in zip(columns, key)
            ])
            for key in values
        ])

    def _build_sql(self, context: QueryContext) -> str:
        """Build SQL query from context using sqlglot."""
        query = exp.select(*[
            exp.column(column, quoted=True) for column in context.selections
        ] or ["*"])

        query = query.from_(exp.table_(context.table_name, quoted=True))

        if context.conditions:
            query = query.where(exp.and_(*context.conditions))

        for column, direction in context.order_by:
            query = query.order_by(
                exp.Ordered(this=exp.column(column, quoted=True), desc=str(direction).upper() == 'DESC')
            )

        if context.limit is not None:
            query = query.limit(context.limit)

        if context.offset is not None:
            query = query.offset(context.offset)

        return query.sql(dialect=DIALECT, pretty=True)

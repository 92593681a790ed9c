"""Synthesis of GraphQL interfaces, object types and inputs from table models.

For every table ``T`` (type base ``Pascal(T)``) the synthesizer emits

* ``<T>Fields``     interface carrying one field per column
* ``<T>SelectItem`` the interface plus one field per relation edge
* ``<T>Item``       the interface only, used for mutation results
* ``<T>...Relation`` one type per relation path, implementing the target's
  interface and carrying the target's relations until the depth limit
* ``<T>Filter``, ``<T>OrderBy``, ``<T>InsertInput`` and ``<T>UpdateInput``

Object types subclass their interface, so scalar fields are declared once and
inherited verbatim. Types are planned by name first and materialized
afterwards, leaves first, so relation cycles in the metadata never recurse.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Type
import logging

import strawberry
from strawberry import UNSET
from strawberry.types import Info

from ..exceptions import SchemaError
from ..selection import SelectionTarget
from . import model
from .model import RelationEdge, TableModel
from .naming import to_field_name, to_pascal_case, to_python_name
from .scalars import OrderDirection
from .types import MappedColumn, TypeMapper

logger = logging.getLogger(__name__)


RELATIONS_ATTR = '_relql_relations'

COMPARABLE_OPERATORS = ('eq', 'ne', 'gt', 'gte', 'lt', 'lte', 'in', 'not_in', 'is_null')
STRING_OPERATORS = ('eq', 'ne', 'like', 'ilike', 'in', 'not_in', 'is_null')
EQUALITY_OPERATORS = ('eq', 'ne', 'in', 'not_in', 'is_null')
BOOLEAN_OPERATORS = ('eq', 'ne', 'is_null')
NULL_OPERATORS = ('is_null',)
LIST_OPERATORS = {'in', 'not_in'}


def attach_relations(instance: Any, relations: Dict[str, Any]) -> Any:
    """Store prefetched relation payloads on a hydrated instance."""
    setattr(instance, RELATIONS_ATTR, relations)
    return instance


def related(root: Any, response_key: str) -> Any:
    """Prefetched payload of the relation selected under ``response_key`` (alias or name)."""
    return getattr(root, RELATIONS_ATTR, {}).get(response_key)


def coerce_literal(mapped: MappedColumn, value: Any) -> Any:
    """Nested selection arguments written inline arrive as their literal text."""
    if isinstance(value, str):
        if mapped.base is int:
            return int(value)
        if mapped.base is float:
            return float(value)
    return value


def filter_operators(mapped: MappedColumn) -> Tuple[str, ...]:
    """Operators offered by ``<T>Filter`` for a column, by column kind."""
    kind = mapped.kind
    if kind in (model.NUMBER, model.BIGINT, model.DATE):
        return COMPARABLE_OPERATORS
    if kind == model.STRING:
        return EQUALITY_OPERATORS if mapped.column.enum_values else STRING_OPERATORS
    if kind == model.BOOLEAN:
        return BOOLEAN_OPERATORS
    return NULL_OPERATORS


@dataclass(frozen=True)
class FilterField:
    """One field of a ``<T>Filter`` input."""
    graphql_name: str
    python_name: str
    column: str
    operator: str
    mapped: MappedColumn


@dataclass(frozen=True)
class InputField:
    """One field of an insert/update input, or of an order by input."""
    graphql_name: str
    python_name: str
    column: str
    mapped: MappedColumn


@dataclass
class TypePlan:
    """A named object type to materialize; ``relations`` maps field name to (edge, child type name)."""
    name: str
    table: str
    relations: Dict[str, Tuple[RelationEdge, str]] = field(default_factory=dict)
    description: Optional[str] = None


@dataclass
class SynthesizedTable:
    """Generated types and name mappings of one table."""
    model: TableModel
    type_name: str
    interface: Type
    item: Type
    select_item: Optional[Type] = None
    filter: Optional[Type] = None
    order_by: Optional[Type] = None
    insert_input: Optional[Type] = None
    update_input: Optional[Type] = None
    columns: Dict[str, MappedColumn] = field(default_factory=dict)
    python_names: Dict[str, str] = field(default_factory=dict)
    filter_fields: Dict[str, FilterField] = field(default_factory=dict)
    order_fields: Dict[str, InputField] = field(default_factory=dict)
    insert_fields: Dict[str, InputField] = field(default_factory=dict)
    update_fields: Dict[str, InputField] = field(default_factory=dict)
    type_names: FrozenSet[str] = frozenset()

    @property
    def name(self) -> str:
        return self.model.name

    @property
    def interface_name(self) -> str:
        return f"{self.type_name}Fields"

    @property
    def field_columns(self) -> Dict[str, str]:
        """GraphQL field name to column name."""
        return {name: mapped.column.name for name, mapped in self.columns.items()}

    @property
    def column_fields(self) -> Dict[str, str]:
        """Column name to GraphQL field name."""
        return {mapped.column.name: name for name, mapped in self.columns.items()}

    def default_columns(self) -> List[str]:
        """Columns fetched when a selection names none."""
        return list(self.model.primary_keys) or [self.model.columns[0].name]

    def where_from_input(self, where: Any) -> Dict[str, Dict[str, Any]]:
        """Convert a ``<T>Filter`` instance to ``{column: {operator: value}}``."""
        if where is None:
            return {}
        values = {
            entry.graphql_name: getattr(where, entry.python_name, None)
            for entry in self.filter_fields.values()
        }
        return self.where_from_arguments(values)

    def where_from_arguments(self, where: Optional[Mapping[str, Any]]) -> Dict[str, Dict[str, Any]]:
        """Convert raw filter arguments keyed by GraphQL name."""
        conditions: Dict[str, Dict[str, Any]] = {}
        for name, value in (where or {}).items():
            entry = self.filter_fields.get(name)
            if entry is None or value is None or value is UNSET:
                continue
            if entry.operator in LIST_OPERATORS:
                value = [entry.mapped.to_input(coerce_literal(entry.mapped, item)) for item in value]
            elif entry.operator != 'is_null':
                value = entry.mapped.to_input(coerce_literal(entry.mapped, value))
            conditions.setdefault(entry.column, {})[entry.operator] = value
        return conditions

    def order_from_input(self, order_by: Any) -> Dict[str, str]:
        if order_by is None:
            return {}
        values = {
            entry.graphql_name: getattr(order_by, entry.python_name, None)
            for entry in self.order_fields.values()
        }
        return self.order_from_arguments(values)

    def order_from_arguments(self, order_by: Optional[Mapping[str, Any]]) -> Dict[str, str]:
        order: Dict[str, str] = {}
        for name, direction in (order_by or {}).items():
            entry = self.order_fields.get(name)
            if entry is None or direction is None or direction is UNSET:
                continue
            order[entry.column] = getattr(direction, 'value', direction)
        return order

    def values_from_input(self, values: Any, update: bool = False) -> Dict[str, Any]:
        """Convert an insert or update input to ``{column: bind value}``."""
        fields = self.update_fields if update else self.insert_fields
        row = {}
        for entry in fields.values():
            value = getattr(values, entry.python_name, UNSET)
            if value is UNSET:
                continue
            row[entry.column] = entry.mapped.to_input(value)
        return row


@dataclass
class SynthesizedSchema:
    """The read-only type graph produced by one synthesis run."""
    tables: Dict[str, SynthesizedTable]
    types: Dict[str, Type]
    plans: Dict[str, TypePlan]

    def table_for_type(self, type_name: str) -> SynthesizedTable:
        return self.tables[self.plans[type_name].table]

    def relation_type_name(self, type_name: str, field_name: str) -> Optional[str]:
        plan = self.plans.get(type_name)
        if plan is None or field_name not in plan.relations:
            return None
        return plan.relations[field_name][1]

    def relation_edge(self, type_name: str, field_name: str) -> RelationEdge:
        return self.plans[type_name].relations[field_name][0]

    def selection_target(self, type_name: str) -> SelectionTarget:
        plan = self.plans[type_name]
        table = self.tables[plan.table]
        return SelectionTarget(
            type_name=type_name,
            interface_name=table.interface_name,
            type_names=table.type_names,
            columns=table.field_columns,
            relations=frozenset(plan.relations),
        )

    def object_types(self) -> List[Type]:
        return list(self.types.values())


class SchemaSynthesizer:
    """Builds the per-table GraphQL types from table models.

    Args:
        tables: Table models with their relation edges
        type_mapper: Column type mapper (and its enum registry)
        relations_depth_limit: Levels of nested relation types; ``None``
            generates every path that does not revisit a table
    """

    def __init__(
        self,
        tables: Sequence[TableModel],
        type_mapper: Optional[TypeMapper] = None,
        relations_depth_limit: Optional[int] = 3,
    ):
        if relations_depth_limit is not None and relations_depth_limit < 0:
            raise SchemaError(
                f"relations_depth_limit must be a non-negative integer or None, got {relations_depth_limit}"
            )
        self.models = {table.name: table for table in tables}
        self.type_mapper = type_mapper or TypeMapper()
        self.relations_depth_limit = relations_depth_limit

        self._tables: Dict[str, SynthesizedTable] = {}
        self._plans: Dict[str, TypePlan] = {}
        self._types: Dict[str, Type] = {}

    def build(self) -> SynthesizedSchema:
        """Synthesize every table; raises SchemaError on the first unmappable column."""
        for table in self.models.values():
            self._validate_relations(table)
            self._tables[table.name] = self._build_table(table)

        for table in self.models.values():
            self._plan_table(table)

        implementing: Dict[str, set] = {name: set() for name in self._tables}
        for plan in self._plans.values():
            implementing[plan.table].add(plan.name)
        for name, table in self._tables.items():
            table.type_names = frozenset(implementing[name])

        for name in self._plans:
            self._materialize(name)

        for table in self._tables.values():
            table.select_item = self._types[f"{table.type_name}SelectItem"]

        logger.info(
            f"Synthesized {len(self._types)} object types for {len(self._tables)} tables "
            f"(relation depth limit: {self.relations_depth_limit})"
        )
        return SynthesizedSchema(tables=self._tables, types=self._types, plans=self._plans)

    def _validate_relations(self, table: TableModel) -> None:
        column_fields = {to_field_name(col.name) for col in table.columns}
        seen = set()
        for edge in table.relations:
            if edge.target not in self.models:
                raise SchemaError(
                    f"Relation '{edge.field_name}' targets unknown table '{edge.target}'",
                    table_name=table.name,
                )
            if edge.cardinality not in (model.ONE, model.MANY):
                raise SchemaError(
                    f"Relation '{edge.field_name}' has invalid cardinality '{edge.cardinality}'",
                    table_name=table.name,
                )
            field_name = to_field_name(edge.field_name)
            if field_name in column_fields or field_name in seen:
                raise SchemaError(
                    f"Relation field '{field_name}' clashes with another field",
                    table_name=table.name,
                    suggestions=["Declare the relation under a different field name"],
                )
            seen.add(field_name)

    def _build_table(self, table: TableModel) -> SynthesizedTable:
        if not table.columns:
            raise SchemaError("Table has no columns", table_name=table.name)

        type_name = to_pascal_case(table.name)
        columns: Dict[str, MappedColumn] = {}
        python_names: Dict[str, str] = {}
        annotations: Dict[str, Any] = {}
        namespace: Dict[str, Any] = {}

        for column in table.columns:
            field_name = to_field_name(column.name)
            if field_name in columns:
                raise SchemaError(
                    f"Columns '{columns[field_name].column.name}' and '{column.name}' map to the same field '{field_name}'",
                    table_name=table.name,
                    column_name=column.name,
                )
            mapped = self.type_mapper.map_column(column)
            python_name = to_python_name(field_name)
            columns[field_name] = mapped
            python_names[field_name] = python_name
            annotations[python_name] = mapped.annotation
            namespace[python_name] = strawberry.field(
                name=field_name, description=mapped.description, default=None
            )

        interface_name = f"{type_name}Fields"
        namespace['__annotations__'] = annotations
        interface = strawberry.interface(
            type(interface_name, (), namespace),
            name=interface_name,
            description=f"Columns of table '{table.name}'",
        )

        item_name = f"{type_name}Item"
        item = strawberry.type(
            type(item_name, (interface,), {'__annotations__': {}}),
            name=item_name,
            description=f"Row of table '{table.name}'",
        )
        self._types[item_name] = item
        self._plans[item_name] = TypePlan(name=item_name, table=table.name)

        synthesized = SynthesizedTable(
            model=table,
            type_name=type_name,
            interface=interface,
            item=item,
            columns=columns,
            python_names=python_names,
        )
        self._build_filter(synthesized)
        self._build_order_by(synthesized)
        self._build_mutation_inputs(synthesized)
        return synthesized

    def _build_filter(self, table: SynthesizedTable) -> None:
        """Build a filter input type for WHERE clauses."""
        type_name = f"{table.type_name}Filter"
        annotations: Dict[str, Any] = {}
        namespace: Dict[str, Any] = {}

        for field_name, column in table.columns.items():
            mapped = self.type_mapper.map_column(column.column, force_nullable=True, is_input=True)
            python_name = table.python_names[field_name]

            # The bare column name is an equality shortcut
            specs = [(field_name, python_name, 'eq')] if 'eq' in filter_operators(mapped) else []
            specs.extend(
                (f"{field_name}_{op}", f"{field_name}_{op}", op) for op in filter_operators(mapped)
            )

            for graphql_name, attr, op in specs:
                if op in LIST_OPERATORS:
                    annotation = Optional[List[mapped.base]]
                elif op == 'is_null':
                    annotation = Optional[bool]
                elif op in ('like', 'ilike'):
                    annotation = Optional[str]
                else:
                    annotation = Optional[mapped.base]
                annotations[attr] = annotation
                namespace[attr] = strawberry.field(name=graphql_name, default=None)
                table.filter_fields[graphql_name] = FilterField(
                    graphql_name=graphql_name,
                    python_name=attr,
                    column=column.column.name,
                    operator=op,
                    mapped=mapped,
                )

        namespace['__annotations__'] = annotations
        table.filter = strawberry.input(
            type(type_name, (), namespace),
            name=type_name,
            description=f"Filter conditions on table '{table.name}', combined with AND",
        )

    def _build_order_by(self, table: SynthesizedTable) -> None:
        """Build an order by input type."""
        type_name = f"{table.type_name}OrderBy"
        annotations: Dict[str, Any] = {}
        namespace: Dict[str, Any] = {}

        for field_name, column in table.columns.items():
            python_name = table.python_names[field_name]
            annotations[python_name] = Optional[OrderDirection]
            namespace[python_name] = strawberry.field(name=field_name, default=None)
            table.order_fields[field_name] = InputField(field_name, python_name, column.column.name, column)

        namespace['__annotations__'] = annotations
        table.order_by = strawberry.input(type(type_name, (), namespace), name=type_name)

    def _build_mutation_inputs(self, table: SynthesizedTable) -> None:
        for suffix, update in (('InsertInput', False), ('UpdateInput', True)):
            type_name = f"{table.type_name}{suffix}"
            fields = table.update_fields if update else table.insert_fields
            annotations: Dict[str, Any] = {}
            namespace: Dict[str, Any] = {}

            for field_name, column in table.columns.items():
                mapped = self.type_mapper.map_column(
                    column.column,
                    force_nullable=update,
                    default_is_nullable=True,
                    is_input=True,
                )
                python_name = table.python_names[field_name]
                annotations[python_name] = mapped.annotation
                namespace[python_name] = strawberry.field(
                    name=field_name, description=mapped.description, default=UNSET
                )
                fields[field_name] = InputField(field_name, python_name, column.column.name, mapped)

            namespace['__annotations__'] = annotations
            input_type = strawberry.input(type(type_name, (), namespace), name=type_name)
            if update:
                table.update_input = input_type
            else:
                table.insert_input = input_type

    def _plan_table(self, table: TableModel) -> None:
        type_name = to_pascal_case(table.name)
        self._register_plan(TypePlan(
            name=f"{type_name}SelectItem",
            table=table.name,
            relations=self._plan_relations(table, type_name, 0, (table.name,)),
            description=f"Row of table '{table.name}' with its relations",
        ))

    def _plan_relations(
        self,
        table: TableModel,
        prefix: str,
        depth: int,
        path: Tuple[str, ...],
    ) -> Dict[str, Tuple[RelationEdge, str]]:
        limit = self.relations_depth_limit
        if limit is not None and depth >= limit:
            return {}

        relations = {}
        for edge in table.relations:
            if limit is None and edge.target in path:
                continue
            field_name = to_field_name(edge.field_name)
            child_prefix = f"{prefix}{to_pascal_case(field_name)}"
            target = self.models[edge.target]
            child = TypePlan(
                name=f"{child_prefix}Relation",
                table=edge.target,
                relations=self._plan_relations(target, child_prefix, depth + 1, path + (edge.target,)),
                description=f"Row of table '{edge.target}' reached through '{table.name}.{field_name}'",
            )
            self._register_plan(child)
            relations[field_name] = (edge, child.name)
        return relations

    def _register_plan(self, plan: TypePlan) -> None:
        if plan.name in self._plans:
            raise SchemaError(
                f"Generated type name '{plan.name}' is not unique",
                table_name=plan.table,
                suggestions=["Rename the relation field or table producing the duplicate name"],
            )
        self._plans[plan.name] = plan

    def _materialize(self, type_name: str) -> Type:
        if type_name in self._types:
            return self._types[type_name]

        plan = self._plans[type_name]
        table = self._tables[plan.table]
        namespace: Dict[str, Any] = {'__annotations__': {}}

        for field_name, (edge, child_name) in plan.relations.items():
            child_type = self._materialize(child_name)
            namespace[to_python_name(field_name)] = self._relation_field(
                field_name, edge, child_type, self._tables[edge.target]
            )

        object_type = strawberry.type(
            type(type_name, (table.interface,), namespace),
            name=type_name,
            description=plan.description,
        )
        self._types[type_name] = object_type
        return object_type

    @staticmethod
    def _relation_field(field_name: str, edge: RelationEdge, target_type: Type, target: SynthesizedTable) -> Any:
        filter_type = target.filter
        order_type = target.order_by

        if edge.many:
            def resolve(
                root,
                info: Info,
                where: Optional[filter_type] = None,
                order_by: Optional[order_type] = None,
                limit: Optional[int] = None,
                offset: Optional[int] = None,
            ) -> List[target_type]:
                return related(root, info.path.key) or []
        else:
            def resolve(root, info: Info, where: Optional[filter_type] = None) -> Optional[target_type]:
                return related(root, info.path.key)

        return strawberry.field(resolver=resolve, name=field_name)

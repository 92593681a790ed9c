"""Column to GraphQL type mapping."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
import json
import logging

from ..exceptions import UnsupportedTypeError, ValidationError
from . import model
from .enums import EnumRegistry, default_registry
from .model import ColumnDescriptor
from .scalars import (
    JSON,
    GeometryObject,
    GeometryObjectInput,
    from_geometry_input,
    parse_json_string_list,
    to_geometry_object,
)

logger = logging.getLogger(__name__)


# Native subtypes mapped to GraphQL Int; every other number is a Float
INTEGER_SUBTYPES = {
    'TINYINT', 'SMALLINT', 'INTEGER', 'INT', 'INT4', 'INT2', 'INT1',
    'UTINYINT', 'USMALLINT', 'SERIAL',
}

GEOMETRY_POINT_SUBTYPES = {'POINT_2D', 'GEOMETRY_POINT'}
JSON_TEXT_SUBTYPES = {'JSON', 'JSON_TEXT'}

# Kinds whose GraphQL type describes itself
SELF_DESCRIBING_KINDS = {model.STRING, model.BOOLEAN, model.NUMBER}

ARRAY_NAME_INDICATORS = (
    'urls', 'ids', 'tags', 'items', 'values', 'entries', 'list',
    'array', 'collection', 'set', 'group', 'batch',
)


def is_likely_array_column(column_name: str) -> bool:
    """Guess from its name whether a JSON text column holds an array.

    Pluralized names (``tags``, ``multimediaUrls``) count as arrays. This is a
    naming heuristic: ``status`` is reported as an array and ``metadata`` is
    not, so explicit ``json_array_columns`` annotations take precedence.
    """
    lower_name = column_name.lower()
    return lower_name.endswith('s') or any(indicator in lower_name for indicator in ARRAY_NAME_INDICATORS)


@dataclass(frozen=True)
class ColumnOverride:
    """Explicit GraphQL type for one column, consulted before the mapping rules."""
    type: Any
    description: Optional[str] = None
    output: Optional[Callable[[Any], Any]] = None
    input: Optional[Callable[[Any], Any]] = None


@dataclass(frozen=True)
class MappedColumn:
    """Result of mapping one column.

    ``annotation`` is the Strawberry annotation including nullability and
    ``base`` the same type without the outer ``Optional``. ``output`` converts a
    stored value for the response, ``input`` converts an argument value into a
    bind parameter.
    """
    column: ColumnDescriptor
    annotation: Any
    base: Any
    nullable: bool
    description: Optional[str] = None
    output: Optional[Callable[[Any], Any]] = None
    input: Optional[Callable[[Any], Any]] = None

    @property
    def kind(self) -> str:
        return self.column.kind

    def to_output(self, value: Any) -> Any:
        if value is None or self.output is None:
            return value
        return self.output(value)

    def to_input(self, value: Any) -> Any:
        if value is None or self.input is None:
            return value
        return self.input(value)


@dataclass(frozen=True)
class _CoreType:
    base: Any
    description: Optional[str]
    output: Optional[Callable[[Any], Any]] = None
    input: Optional[Callable[[Any], Any]] = None


def _to_string(value: Any) -> Any:
    return value if isinstance(value, str) else str(value)


def _to_date_string(value: Any) -> Any:
    if isinstance(value, str):
        return value
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return str(value)


def _to_float(value: Any) -> Any:
    return float(value) if isinstance(value, Decimal) else value


def _to_int_list(value: Any) -> Any:
    if isinstance(value, memoryview):
        value = value.tobytes()
    if isinstance(value, str):
        value = value.encode('utf-8')
    return list(value)


def _to_bytes(value: Any) -> bytes:
    return bytes(value)


def _to_float_list(value: Any) -> List[float]:
    return [float(item) for item in value if item is not None]


def _dump_json(value: Any) -> str:
    return json.dumps(value)


def _parse_bigint(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Invalid BigInt value: {value!r}",
            expected_type="BigInt",
            actual_value=value,
            suggestions=["Pass BigInt values as strings of digits, e.g. \"9007199254740993\""],
        )


class TypeMapper:
    """Maps column descriptors to Strawberry annotations.

    Args:
        registry: Enum registry shared by every mapping of this schema
        overrides: ``{table: {column: ColumnOverride}}`` consulted first
        json_array_columns: ``{table: {column: bool}}`` explicit array
            annotations for JSON text columns
        infer_json_arrays: Fall back to the naming heuristic for JSON text
            columns without an explicit annotation
    """

    def __init__(
        self,
        registry: Optional[EnumRegistry] = None,
        overrides: Optional[Mapping[str, Mapping[str, ColumnOverride]]] = None,
        json_array_columns: Optional[Mapping[str, Any]] = None,
        infer_json_arrays: bool = True,
    ):
        self.registry = registry if registry is not None else default_registry
        self.overrides = {table: dict(columns) for table, columns in (overrides or {}).items()}
        self.json_array_columns = self._normalize_annotations(json_array_columns or {})
        self.infer_json_arrays = infer_json_arrays

    @staticmethod
    def _normalize_annotations(annotations: Mapping[str, Any]) -> Dict[Tuple[str, str], bool]:
        normalized: Dict[Tuple[str, str], bool] = {}
        for table, columns in annotations.items():
            if isinstance(columns, Mapping):
                items: Iterable[Tuple[str, bool]] = columns.items()
            else:
                items = ((column, True) for column in columns)
            for column, is_array in items:
                normalized[(table, column)] = bool(is_array)
        return normalized

    def map_column(
        self,
        column: ColumnDescriptor,
        force_nullable: bool = False,
        default_is_nullable: bool = False,
        is_input: bool = False,
    ) -> MappedColumn:
        """Map a column to its GraphQL type, nullability and description."""
        override = self._override(column)
        core = override or self._map_core(column, is_input)

        description = core.description
        if override is None and column.kind in SELF_DESCRIBING_KINDS:
            description = None

        if force_nullable:
            nullable = True
        elif column.not_null and not (default_is_nullable and (column.has_default or column.has_default_fn)):
            nullable = False
        else:
            nullable = True

        return MappedColumn(
            column=column,
            annotation=Optional[core.base] if nullable else core.base,
            base=core.base,
            nullable=nullable,
            description=description,
            output=core.output,
            input=core.input,
        )

    def _override(self, column: ColumnDescriptor) -> Optional[_CoreType]:
        override = self.overrides.get(column.table, {}).get(column.name)
        if override is None:
            return None
        return _CoreType(override.type, override.description, override.output, override.input)

    def is_json_array(self, column: ColumnDescriptor) -> bool:
        annotated = self.json_array_columns.get(column.key)
        if annotated is not None:
            return annotated
        if self.infer_json_arrays and is_likely_array_column(column.name):
            logger.debug(f"Treating JSON column {column.table}.{column.name} as a string list by name")
            return True
        return False

    def _map_core(self, column: ColumnDescriptor, is_input: bool) -> _CoreType:
        kind = column.kind
        native = (column.native_type or '').upper()

        if kind == model.BOOLEAN:
            return _CoreType(bool, 'Boolean')

        if kind == model.JSON_KIND:
            if native in GEOMETRY_POINT_SUBTYPES:
                return _CoreType(
                    GeometryObjectInput if is_input else GeometryObject,
                    'Geometry points XY',
                    output=to_geometry_object,
                    input=from_geometry_input,
                )
            if native in JSON_TEXT_SUBTYPES:
                if self.is_json_array(column):
                    return _CoreType(
                        List[Optional[str]],
                        'Array of strings (JSON)',
                        output=parse_json_string_list,
                        input=_dump_json,
                    )
                return _CoreType(JSON, 'JSON object', input=_dump_json)
            return _CoreType(JSON, 'JSON')

        if kind == model.DATE:
            return _CoreType(str, 'Date', output=_to_date_string)

        if kind == model.STRING:
            if column.enum_values:
                generated = self.registry.get_or_create(column)
                return _CoreType(generated.type, None, input=generated.to_literal)
            return _CoreType(str, 'String', output=_to_string)

        if kind == model.BIGINT:
            return _CoreType(str, 'BigInt', output=_to_string, input=_parse_bigint)

        if kind == model.NUMBER:
            if native in INTEGER_SUBTYPES:
                return _CoreType(int, 'Integer')
            return _CoreType(float, 'Float', output=_to_float)

        if kind == model.BUFFER:
            return _CoreType(List[int], 'Buffer', output=_to_int_list, input=_to_bytes)

        if kind == model.ARRAY:
            if native == 'VECTOR':
                return _CoreType(List[float], 'Array<Float>', output=_to_float_list)
            if native == 'GEOMETRY':
                return _CoreType(List[float], 'Tuple<[Float, Float]>', output=_to_float_list)
            if column.element is None:
                raise UnsupportedTypeError(column.table, column.name, kind, column.native_type)

            inner = self._map_core(column.element, is_input)
            return _CoreType(
                List[inner.base],
                f"Array<{inner.description}>",
                output=_list_output(inner.output),
                input=_list_converter(inner.input),
            )

        raise UnsupportedTypeError(column.table, column.name, kind, column.native_type)


def _list_output(convert: Optional[Callable[[Any], Any]]) -> Callable[[Any], Any]:
    """Element types are non-null, so stored NULL elements are left out."""
    def convert_items(values: Any) -> List[Any]:
        return [item if convert is None else convert(item) for item in values if item is not None]

    return convert_items


def _list_converter(convert: Optional[Callable[[Any], Any]]) -> Optional[Callable[[Any], Any]]:
    if convert is None:
        return None

    def convert_items(values: Any) -> List[Any]:
        return [None if item is None else convert(item) for item in values]

    return convert_items


_default_mapper = TypeMapper()


def map_column(
    column: ColumnDescriptor,
    force_nullable: bool = False,
    default_is_nullable: bool = False,
    is_input: bool = False,
) -> MappedColumn:
    """Map a column with the process-wide mapper and enum registry."""
    return _default_mapper.map_column(column, force_nullable, default_is_nullable, is_input)

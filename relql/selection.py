"""Resolution of requested columns and relations from a field selection.

A selection reaches the resolver in one of two shapes, decided once by
:func:`build_selection` at the GraphQL engine boundary:

* :class:`DirectSelection` - the fields were selected directly
* :class:`FragmentSelection` - at least one fragment was involved, so the
  fields are grouped by the type condition they were selected under

:func:`extract_columns` treats both shapes alike: the same request expressed
with or without fragments on the table interface yields the same result.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple, Union
import logging

from strawberry.types.nodes import FragmentSpread, InlineFragment, SelectedField

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldSelection:
    """One selected field, with its arguments and sub-selection."""
    name: str
    alias: Optional[str] = None
    arguments: Mapping[str, Any] = field(default_factory=dict)
    selection: Optional["Selection"] = None

    @property
    def response_key(self) -> str:
        return self.alias or self.name


@dataclass(frozen=True)
class DirectSelection:
    fields: Tuple[FieldSelection, ...] = ()
    type_name: Optional[str] = None


@dataclass(frozen=True)
class FragmentSelection:
    """Fields keyed by type condition; directly selected fields sit under the field's own type."""
    by_type: Mapping[str, Tuple[FieldSelection, ...]] = field(default_factory=dict)


Selection = Union[DirectSelection, FragmentSelection]


@dataclass(frozen=True)
class SelectionTarget:
    """The concrete type a selection is resolved against.

    ``type_names`` holds every type implementing ``interface_name``;
    ``columns`` maps GraphQL field names to column names.
    """
    type_name: str
    interface_name: str
    type_names: FrozenSet[str]
    columns: Mapping[str, str]
    relations: FrozenSet[str]


@dataclass
class ExtractedSelection:
    """Column names, and relation selections keyed by response key (alias or field name)."""
    columns: Set[str] = field(default_factory=set)
    relations: Dict[str, FieldSelection] = field(default_factory=dict)


def extract_columns(selection: Optional[Selection], target: SelectionTarget) -> ExtractedSelection:
    """Requested column names and relation sub-selections for ``target``.

    Never raises: an absent, empty or unrecognized selection yields an empty
    result and unknown field names are ignored.
    """
    result = ExtractedSelection()
    if isinstance(selection, DirectSelection):
        groups: Iterable[Tuple[FieldSelection, ...]] = [selection.fields]
    elif isinstance(selection, FragmentSelection):
        groups = [
            fields for type_name, fields in selection.by_type.items()
            if type_name == target.interface_name or type_name in target.type_names
        ]
    else:
        if selection is not None:
            logger.debug(f"Ignoring unrecognized selection {type(selection).__name__}")
        return result

    for fields in groups:
        for selected in fields:
            if selected.name in target.columns:
                result.columns.add(target.columns[selected.name])
            elif selected.name in target.relations:
                previous = result.relations.get(selected.response_key)
                result.relations[selected.response_key] = (
                    selected if previous is None else merge_field_selections(previous, selected)
                )
    return result


def merge_field_selections(first: FieldSelection, second: FieldSelection) -> FieldSelection:
    """Merge two selections sharing a response key."""
    return replace(
        first,
        arguments={**second.arguments, **first.arguments},
        selection=merge_selections(first.selection, second.selection),
    )


def merge_selections(first: Optional[Selection], second: Optional[Selection]) -> Optional[Selection]:
    if first is None:
        return second
    if second is None:
        return first
    if isinstance(first, DirectSelection) and isinstance(second, DirectSelection):
        return DirectSelection(first.fields + second.fields, first.type_name or second.type_name)

    by_type: Dict[str, Tuple[FieldSelection, ...]] = {}
    for selection in (first, second):
        if isinstance(selection, DirectSelection):
            groups = {selection.type_name or '': selection.fields}
        else:
            groups = selection.by_type
        for type_name, fields in groups.items():
            by_type[type_name] = by_type.get(type_name, ()) + tuple(fields)
    return FragmentSelection(by_type)


def build_selection(
    nodes: Optional[Iterable[Any]],
    type_name: str,
    relation_type_name: Optional[Callable[[str, str], Optional[str]]] = None,
) -> Optional[Selection]:
    """Build a selection from Strawberry selection nodes.

    Args:
        nodes: ``info.selected_fields[0].selections`` or the selections of a
            nested ``SelectedField``
        type_name: Concrete type of the field the nodes were selected on
        relation_type_name: ``(type_name, field_name) -> child type name``,
            used to build relation sub-selections

    Returns:
        ``None`` when nothing was selected
    """
    if not nodes:
        return None

    grouped: Dict[str, Dict[str, List[SelectedField]]] = {}
    has_fragments = _collect(nodes, type_name, grouped)

    by_type = {
        condition: tuple(
            _build_field(condition, selected, relation_type_name)
            for selected in fields.values()
        )
        for condition, fields in grouped.items()
    }

    if not has_fragments:
        return DirectSelection(by_type.get(type_name, ()), type_name)
    return FragmentSelection(by_type)


def _collect(nodes: Iterable[Any], condition: str, grouped: Dict[str, Dict[str, List[SelectedField]]]) -> bool:
    has_fragments = False
    for node in nodes:
        if isinstance(node, SelectedField):
            if node.name.startswith('__'):
                continue
            grouped.setdefault(condition, {}).setdefault(node.alias or node.name, []).append(node)
        elif isinstance(node, (InlineFragment, FragmentSpread)):
            inner = node.type_condition or condition
            has_fragments = has_fragments or inner != condition or isinstance(node, FragmentSpread)
            has_fragments = _collect(node.selections or [], inner, grouped) or has_fragments
    return has_fragments


def _build_field(
    condition: str,
    nodes: List[SelectedField],
    relation_type_name: Optional[Callable[[str, str], Optional[str]]],
) -> FieldSelection:
    name, alias = nodes[0].name, nodes[0].alias
    arguments: Dict[str, Any] = {}
    children: List[Any] = []
    for node in nodes:
        for key, value in (node.arguments or {}).items():
            arguments.setdefault(key, value)
        children.extend(node.selections or [])

    child_type = relation_type_name(condition, name) if relation_type_name else None
    child = build_selection(children, child_type, relation_type_name) if child_type else None
    return FieldSelection(name=name, alias=alias, arguments=arguments, selection=child)

"""Depth limiting extension for Strawberry GraphQL."""

from typing import Dict, Optional, Set, Type

from strawberry.extensions import AddValidationRules
from graphql import (
    FieldNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    GraphQLError,
    InlineFragmentNode,
    OperationDefinitionNode,
    SelectionSetNode,
    ValidationRule,
)


def calculate_depth(
    selection_set: Optional[SelectionSetNode],
    current_depth: int,
    fragments: Dict[str, FragmentDefinitionNode],
    visited: Optional[Set[str]] = None,
) -> int:
    """
    Calculate the depth of a selection set.

    Fragments do not add a level; their fields count at the depth of the
    field they are spread in.

    Args:
        selection_set: The selection set to measure
        current_depth: Depth of the field owning the selection set
        fragments: Named fragments of the document
        visited: Fragment names on the current path

    Returns:
        Maximum depth found in this branch
    """
    if selection_set is None:
        return current_depth

    visited = visited or set()
    max_depth = current_depth

    for selection in selection_set.selections:
        if isinstance(selection, FieldNode):
            if selection.selection_set:
                depth = calculate_depth(selection.selection_set, current_depth + 1, fragments, visited)
            else:
                depth = current_depth + 1
        elif isinstance(selection, InlineFragmentNode):
            depth = calculate_depth(selection.selection_set, current_depth, fragments, visited)
        elif isinstance(selection, FragmentSpreadNode):
            name = selection.name.value
            if name in visited or name not in fragments:
                continue
            depth = calculate_depth(fragments[name].selection_set, current_depth, fragments, visited | {name})
        else:
            continue
        max_depth = max(max_depth, depth)

    return max_depth


def depth_limit_rule(max_depth: int, ignore_introspection: bool = True) -> Type[ValidationRule]:
    """Build a validation rule rejecting operations deeper than ``max_depth``."""

    class DepthLimitRule(ValidationRule):
        def enter_operation_definition(self, node: OperationDefinitionNode, *_args):
            fragments = {
                definition.name.value: definition
                for definition in self.context.document.definitions
                if isinstance(definition, FragmentDefinitionNode)
            }
            for selection in node.selection_set.selections:
                if not isinstance(selection, FieldNode):
                    continue
                if ignore_introspection and selection.name.value.startswith('__'):
                    continue

                depth = calculate_depth(selection.selection_set, 1, fragments)
                if depth > max_depth:
                    self.report_error(GraphQLError(
                        f"Query depth ({depth}) exceeds maximum allowed depth ({max_depth})",
                        selection,
                    ))

    return DepthLimitRule


class DepthLimitExtension(AddValidationRules):
    """
    Extension that limits the depth of GraphQL queries.

    A root field with scalar sub-fields has depth 2; each nested relation
    adds one level.
    """

    def __init__(self, *, max_depth: int = 10, ignore_introspection: bool = True):
        """
        Initialize the depth limit extension.

        Args:
            max_depth: Maximum allowed query depth
            ignore_introspection: Whether to ignore introspection queries
        """
        self.max_depth = max_depth
        self.ignore_introspection = ignore_introspection
        super().__init__([depth_limit_rule(max_depth, ignore_introspection)])


def create_depth_limit_extension(max_depth: int, ignore_introspection: bool = True) -> Type[DepthLimitExtension]:
    """
    Create a depth limit extension class with the given limits.

    Strawberry instantiates extension classes itself for every operation.

    Args:
        max_depth: Maximum allowed query depth
        ignore_introspection: Whether to ignore introspection queries

    Returns:
        DepthLimitExtension subclass configured with max_depth
    """
    class ConfiguredDepthLimitExtension(DepthLimitExtension):
        def __init__(self, **kwargs):
            # Ignore strawberry's execution_context kwarg
            super().__init__(max_depth=max_depth, ignore_introspection=ignore_introspection)

    return ConfiguredDepthLimitExtension

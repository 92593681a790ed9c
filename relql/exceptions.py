"""Exception hierarchy for RelQL.

Every error carries a machine readable ``error_code``, a ``context`` dict
naming the table, column or operation involved, suggestions for fixing it and
a correlation id shared with the log lines of the request that raised it.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import re
import uuid


def _merge_context(context: Optional[Dict[str, Any]], **values: Any) -> Dict[str, Any]:
    """Copy ``context`` and add the given values that are set."""
    merged = dict(context or {})
    merged.update({key: value for key, value in values.items() if value is not None})
    return merged


class RelQLError(Exception):
    """Base exception for all RelQL errors."""

    error_code = "RELQL_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        correlation_id: Optional[str] = None
    ):
        """
        Args:
            message: The error message
            error_code: Overrides the class error code
            context: Table, column, SQL or other details of the failure
            suggestions: Ways to fix the error
            correlation_id: ID shared with the log lines of the failing request
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or type(self).error_code
        self.context = context or {}
        self.suggestions = suggestions or []
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form, e.g. for GraphQL error extensions."""
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
            "suggestions": self.suggestions,
            "correlation_id": self.correlation_id
        }

    def __str__(self) -> str:
        lines = [f"[{self.error_code}] {self.message}"]
        if self.context:
            lines.append(f"Context: {self.context}")
        if self.suggestions:
            lines.append("Suggestions:")
            lines.extend(f"  {i}. {suggestion}" for i, suggestion in enumerate(self.suggestions, 1))
        lines.append(f"Correlation ID: {self.correlation_id}")
        return "\n".join(lines)


class SchemaError(RelQLError):
    """The table model cannot be turned into a GraphQL schema."""

    error_code = "SCHEMA_ERROR"

    def __init__(self, message: str, table_name: Optional[str] = None, column_name: Optional[str] = None, **kwargs):
        kwargs["context"] = _merge_context(kwargs.get("context"), table=table_name, column=column_name)
        super().__init__(message, **kwargs)


class UnsupportedTypeError(SchemaError):
    """A column's kind has no GraphQL mapping and no override."""

    error_code = "UNSUPPORTED_TYPE"

    def __init__(self, table_name: str, column_name: str, kind: str, native_type: Optional[str] = None, **kwargs):
        kwargs["context"] = _merge_context(kwargs.get("context"), kind=kind, native_type=native_type or None)
        kwargs.setdefault("suggestions", [
            f"Register a column override for '{table_name}.{column_name}'",
            "Cast the column to a supported type in a view or table",
        ])
        super().__init__(
            f"Type '{native_type or kind}' of column '{table_name}.{column_name}' is not supported",
            table_name=table_name,
            column_name=column_name,
            **kwargs
        )


class EnumNameCollisionError(SchemaError):
    """Two enum literals resolve to the same GraphQL value name."""

    error_code = "ENUM_NAME_COLLISION"

    def __init__(self, table_name: str, column_name: str, value_name: str, literals: Sequence[str], **kwargs):
        kwargs["context"] = _merge_context(kwargs.get("context"), value_name=value_name, literals=list(literals))
        kwargs.setdefault("suggestions", [
            "Rename the enum literal that looks like a generated placeholder",
            f"Register a column override for '{table_name}.{column_name}'",
        ])
        super().__init__(
            f"Enum values {list(literals)} of '{table_name}.{column_name}' both map to '{value_name}'",
            table_name=table_name,
            column_name=column_name,
            **kwargs
        )


class QueryError(RelQLError):
    """A query or mutation failed while resolving."""

    error_code = "QUERY_ERROR"

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        table_name: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        if query and len(query) > 200:
            query = query[:200] + "..."
        kwargs["context"] = _merge_context(
            kwargs.get("context"), query=query or None, table=table_name, operation=operation
        )
        super().__init__(message, **kwargs)


class FilterError(QueryError):
    """A ``where`` argument cannot be turned into SQL conditions."""

    error_code = "FILTER_ERROR"

    def __init__(
        self,
        message: str,
        filter_field: Optional[str] = None,
        filter_operation: Optional[str] = None,
        **kwargs
    ):
        kwargs.pop("error_code", None)
        kwargs["context"] = _merge_context(
            kwargs.get("context"), filter_field=filter_field, filter_operation=filter_operation
        )
        super().__init__(message, **kwargs)


class ConnectionError(RelQLError):
    """The database cannot be reached."""

    error_code = "CONNECTION_ERROR"

    def __init__(self, message: str, database_path: Optional[str] = None, **kwargs):
        kwargs["context"] = _merge_context(kwargs.get("context"), database=database_path)
        if not kwargs.get("suggestions"):
            kwargs["suggestions"] = [
                "Check if the database file exists and is accessible",
                "Verify you have the necessary permissions",
                "Ensure the database is not locked by another process"
            ]
        super().__init__(message, **kwargs)


class ValidationError(RelQLError):
    """An argument or input value is out of range or malformed."""

    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        expected_type: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs
    ):
        kwargs["context"] = _merge_context(
            kwargs.get("context"),
            field=field_name,
            expected_type=expected_type,
            actual_value=None if actual_value is None else str(actual_value),
            actual_type=None if actual_value is None else type(actual_value).__name__,
        )
        super().__init__(message, **kwargs)


_COLUMN_NAME = re.compile(r"column\s*['\"]?(\w+)['\"]?\s*(?:in\s*table\s*['\"]?(\w+)['\"]?)?", re.IGNORECASE)
_TABLE_NAME = re.compile(r"Table\s*(?:with\s*name\s*)?['\"]?(\w+)['\"]?", re.IGNORECASE)


def _missing_column(message: str, context: Dict[str, Any]) -> RelQLError:
    match = _COLUMN_NAME.search(message)
    column_name = match.group(1) if match else "unknown"
    table_name = (match.group(2) if match else None) or context.get("table", "unknown")
    return SchemaError(
        f"Column '{column_name}' not found",
        table_name=table_name,
        column_name=column_name,
        correlation_id=context.get("correlation_id"),
        suggestions=[
            "Check if the column name is spelled correctly",
            "Rebuild the schema after altering tables",
            f"Ensure the column exists in table '{table_name}'"
        ]
    )


def _missing_table(message: str, context: Dict[str, Any]) -> RelQLError:
    match = _TABLE_NAME.search(message)
    table_name = match.group(1) if match else "unknown"
    return SchemaError(
        f"Table '{table_name}' not found",
        table_name=table_name,
        correlation_id=context.get("correlation_id"),
        suggestions=[
            "Check if the table name is spelled correctly",
            "Rebuild the schema after creating or dropping tables",
            "Ensure the table has been created in the database"
        ]
    )


def _constraint_violation(message: str, context: Dict[str, Any]) -> RelQLError:
    return QueryError(
        "Constraint violation",
        table_name=context.get("table"),
        operation=context.get("operation"),
        correlation_id=context.get("correlation_id"),
        context={"original_error": message},
        suggestions=[
            "Check NOT NULL, UNIQUE and foreign key constraints of the table",
            "Provide values for required columns without defaults",
        ]
    )


def _type_mismatch(message: str, context: Dict[str, Any]) -> RelQLError:
    return FilterError(
        "Type mismatch in filter condition",
        correlation_id=context.get("correlation_id"),
        context={"original_error": message},
        suggestions=[
            "Ensure you're comparing compatible types (numbers with numbers, strings with strings)",
            "BigInt columns are transported as strings and must contain digits only",
        ]
    )


def _syntax_error(message: str, context: Dict[str, Any]) -> RelQLError:
    return QueryError(
        "SQL syntax error in generated query",
        correlation_id=context.get("correlation_id"),
        context={"original_error": message, **context},
        suggestions=[
            "Try simplifying your GraphQL query",
            "Report this issue with your GraphQL query and schema"
        ]
    )


def _connection_failure(message: str, context: Dict[str, Any]) -> RelQLError:
    return ConnectionError(
        "Database connection failed",
        correlation_id=context.get("correlation_id"),
        context={"original_error": message, **context}
    )


# Checked in order; DuckDB prefixes its messages with the error class
_ENHANCERS: List[Tuple[Callable[[str, str], bool], Callable[[str, Dict[str, Any]], RelQLError]]] = [
    (lambda name, message: "Could not find column" in message or "Referenced column" in message,
     _missing_column),
    (lambda name, message: name == "ConstraintException" or "Constraint Error" in message,
     _constraint_violation),
    (lambda name, message: name == "ConversionException" or any(
        marker in message for marker in ("Cannot compare values of type", "Type mismatch", "Conversion Error")),
     _type_mismatch),
    (lambda name, message: name == "ParserException" or "Parser Error" in message or "Syntax error" in message,
     _syntax_error),
    (lambda name, message: name in ("ConnectionException", "IOException"),
     _connection_failure),
    (lambda name, message: name == "CatalogException" or "Catalog Error" in message,
     _missing_table),
]


def enhance_duckdb_error(original_error: Exception, **context) -> RelQLError:
    """
    Translate a DuckDB exception into a RelQL error.

    Args:
        original_error: The exception raised by DuckDB
        **context: Correlation id, table, operation, SQL and other details

    Returns:
        The matching RelQL error, or a generic QueryError
    """
    message = str(original_error)
    error_type = type(original_error).__name__

    for matches, build in _ENHANCERS:
        if matches(error_type, message):
            return build(message, context)

    return QueryError(
        f"Database error: {message}",
        correlation_id=context.get("correlation_id"),
        context={"error_type": error_type, **context}
    )

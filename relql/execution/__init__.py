"""Query execution and translation."""

from .translator import SQLTranslator, QueryContext
from .executor import QueryExecutor, QueryResult

__all__ = [
    "SQLTranslator",
    "QueryContext",
    "QueryExecutor",
    "QueryResult",
]

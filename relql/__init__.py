"""RelQL - GraphQL schema synthesis for relational tables."""

from .core import RelQL
from .selection import extract_columns, build_selection

__version__ = "0.1.0"
__all__ = ["RelQL", "extract_columns", "build_selection"]

"""Test database creation helpers."""

from typing import Iterable

import duckdb

from .example_schemas import (
    BLOG_SCHEMA,
    RAW_JSON_SCHEMA,
    TYPES_SCHEMA,
    UNSUPPORTED_SCHEMA,
    get_blog_test_data,
)


def _create(statements: Iterable[str]) -> duckdb.DuckDBPyConnection:
    conn = duckdb.connect(":memory:")
    for statement in statements:
        conn.execute(statement)
    return conn


def create_blog_database() -> duckdb.DuckDBPyConnection:
    """Users, posts and comments linked by foreign keys, with sample rows."""
    return _create(BLOG_SCHEMA + get_blog_test_data())


def create_types_database() -> duckdb.DuckDBPyConnection:
    """One table with a column of every supported type."""
    return _create(TYPES_SCHEMA)


def create_unsupported_database() -> duckdb.DuckDBPyConnection:
    return _create(UNSUPPORTED_SCHEMA)


def create_raw_json_database() -> duckdb.DuckDBPyConnection:
    """Text columns holding JSON documents, some of them malformed."""
    return _create(RAW_JSON_SCHEMA)

"""Async execution of generated SQL on DuckDB.

Statements run on a thread pool against cursors of the caller's connection.
Transient connection failures are retried with exponential backoff and every
other DuckDB failure is translated into a RelQL error.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import List, Dict, Any, Iterator, Optional, Sequence, Set, Tuple, Type
import duckdb
from dataclasses import dataclass
import threading
import queue
import time
import logging
import uuid
from functools import wraps

from ..exceptions import RelQLError, enhance_duckdb_error

logger = logging.getLogger(__name__)

Statement = Tuple[str, Optional[Sequence[Any]]]


@dataclass
class QueryResult:
    """Rows returned by one statement, keyed by column name."""
    rows: List[Dict[str, Any]]
    columns: List[str]
    row_count: int

    @classmethod
    def from_cursor(cls, result) -> "QueryResult":
        if not result.description:
            return cls(rows=[], columns=[], row_count=0)
        columns = [desc[0] for desc in result.description]
        rows = [dict(zip(columns, row)) for row in result.fetchall()]
        return cls(rows=rows, columns=columns, row_count=len(rows))


# RuntimeError covers an exhausted connection pool
DEFAULT_RETRYABLE_ERRORS = {
    duckdb.ConnectionException,
    duckdb.IOException,
    RuntimeError,
}


def _delays(max_retries: int, delay: float, backoff: float) -> Iterator[float]:
    for _ in range(max_retries):
        yield delay
        delay *= backoff


def with_retry(max_retries: int = 3,
               delay: float = 0.1,
               backoff: float = 2.0,
               retryable_errors: Optional[Set[Type[Exception]]] = None):
    """
    Retry the decorated function while it raises one of ``retryable_errors``.

    Works for plain and coroutine functions. The wait starts at ``delay``
    seconds and is multiplied by ``backoff`` after every attempt; after
    ``max_retries`` retries the last error propagates.
    """
    retryable = tuple(retryable_errors if retryable_errors is not None else DEFAULT_RETRYABLE_ERRORS)
    attempts = max_retries + 1

    def on_failure(error: Exception, attempt: int, wait: Optional[float]) -> None:
        if not isinstance(error, retryable):
            raise error
        if wait is None:
            logger.error(f"Query failed after {attempts} attempts: {error}")
            raise error
        logger.warning(f"Query failed (attempt {attempt}/{attempts}): {error}. Retrying in {wait:.2f}s...")

    def decorator(func):
        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def retrying_coroutine(*args, **kwargs):
                waits = _delays(max_retries, delay, backoff)
                for attempt in range(1, attempts + 1):
                    try:
                        return await func(*args, **kwargs)
                    except Exception as e:
                        wait = next(waits, None)
                        on_failure(e, attempt, wait)
                        await asyncio.sleep(wait)
            return retrying_coroutine

        @wraps(func)
        def retrying(*args, **kwargs):
            waits = _delays(max_retries, delay, backoff)
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    wait = next(waits, None)
                    on_failure(e, attempt, wait)
                    time.sleep(wait)
        return retrying

    return decorator


class ConnectionPool:
    """Fixed set of cursors on one DuckDB database, shared between threads.

    Cursors of a connection see the same database, so a write committed on
    one is visible to the others.
    """

    def __init__(self, connection: duckdb.DuckDBPyConnection, max_connections: int = 4):
        self.connection = connection
        self.max_connections = max_connections
        self._idle: "queue.Queue[duckdb.DuckDBPyConnection]" = queue.Queue(maxsize=max_connections)
        for _ in range(max_connections):
            self._idle.put(connection.cursor())

    def get_connection(self, timeout: float = 10) -> duckdb.DuckDBPyConnection:
        try:
            return self._idle.get(timeout=timeout)
        except queue.Empty:
            raise RuntimeError("Unable to get database connection from pool")

    def return_connection(self, conn: duckdb.DuckDBPyConnection) -> None:
        try:
            self._idle.put_nowait(conn)
        except queue.Full:
            conn.close()

    def close_all(self) -> None:
        while True:
            try:
                self._idle.get_nowait().close()
            except queue.Empty:
                return


def _preview(sql: str, size: int = 200) -> str:
    return sql if len(sql) <= size else sql[:size] + "..."


class QueryExecutor:
    """Runs statements for the resolvers and keeps timing statistics."""

    def __init__(self,
                 connection: duckdb.DuckDBPyConnection,
                 max_workers: int = 4,
                 max_retries: int = 3,
                 retry_delay: float = 0.1,
                 retry_backoff: float = 2.0,
                 retryable_errors: Optional[Set[Type[Exception]]] = None,
                 log_queries: bool = False,
                 log_slow_queries: bool = True,
                 slow_query_ms: int = 1000):
        """
        Args:
            connection: DuckDB connection whose cursors are pooled
            max_workers: Number of worker threads and pooled cursors
            max_retries: Retries of a statement after a transient failure
            retry_delay: Seconds to wait before the first retry
            retry_backoff: Factor applied to the wait after each retry
            retryable_errors: Exception types considered transient
            log_queries: Log every statement and its timing at DEBUG
            log_slow_queries: Log statements slower than ``slow_query_ms`` at WARNING
            slow_query_ms: Slow statement threshold in milliseconds
        """
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_backoff = retry_backoff
        self.retryable_errors = retryable_errors or DEFAULT_RETRYABLE_ERRORS

        self.log_queries = log_queries
        self.log_slow_queries = log_slow_queries
        self.slow_query_ms = slow_query_ms

        self._query_count = 0
        self._total_query_time = 0.0
        self._lock = threading.Lock()

        self.connection_pool = ConnectionPool(connection, max_workers)
        self.executor = ThreadPoolExecutor(max_workers=max_workers)

    async def execute_query(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> QueryResult:
        """Run one statement with positional ``?`` parameters."""
        results = await self._run([(sql, params)], context or {}, transaction=False)
        return results[0]

    async def execute_transaction(
        self,
        queries: List[Statement],
        context: Optional[Dict[str, Any]] = None
    ) -> List[QueryResult]:
        """Run statements in order on one cursor; all of them commit or none do."""
        if not queries:
            return []
        return await self._run(queries, context or {}, transaction=True)

    async def _run(self, queries: List[Statement], context: Dict[str, Any], transaction: bool) -> List[QueryResult]:
        correlation_id = context.get("correlation_id") or str(uuid.uuid4())
        sql = ";\n".join(statement for statement, _ in queries)

        if self.log_queries:
            logger.debug(
                f"[{correlation_id}] Executing query: {_preview(sql)}",
                extra={"correlation_id": correlation_id, "sql": sql, "params": [p for _, p in queries]}
            )

        started = time.perf_counter()
        try:
            results = await asyncio.get_running_loop().run_in_executor(
                self.executor, self._execute_sync, queries, transaction
            )
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.error(
                f"[{correlation_id}] Query failed after {elapsed_ms:.2f}ms: {e}",
                extra={
                    "correlation_id": correlation_id,
                    "execution_time_ms": elapsed_ms,
                    "sql": sql,
                    "error_type": type(e).__name__
                }
            )
            if isinstance(e, RelQLError):
                raise
            raise enhance_duckdb_error(
                e, **{**context, "correlation_id": correlation_id, "sql": sql, "execution_time_ms": elapsed_ms}
            ) from e

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._record(len(queries), elapsed_ms)
        self._log_success(correlation_id, sql, elapsed_ms, sum(r.row_count for r in results))
        return results

    def _record(self, statements: int, elapsed_ms: float) -> None:
        with self._lock:
            self._query_count += statements
            self._total_query_time += elapsed_ms

    def _log_success(self, correlation_id: str, sql: str, elapsed_ms: float, row_count: int) -> None:
        extra = {"correlation_id": correlation_id, "execution_time_ms": elapsed_ms, "row_count": row_count}
        if self.log_slow_queries and elapsed_ms > self.slow_query_ms:
            logger.warning(
                f"[{correlation_id}] Slow query detected: {elapsed_ms:.2f}ms - {_preview(sql)}",
                extra={**extra, "sql": sql}
            )
        elif self.log_queries:
            logger.debug(
                f"[{correlation_id}] Query completed in {elapsed_ms:.2f}ms, returned {row_count} rows",
                extra=extra
            )

    def _execute_sync(self, queries: List[Statement], transaction: bool = False) -> List[QueryResult]:
        """Run statements on a pooled cursor, retrying transient failures."""
        @with_retry(
            max_retries=self.max_retries,
            delay=self.retry_delay,
            backoff=self.retry_backoff,
            retryable_errors=self.retryable_errors
        )
        def attempt() -> List[QueryResult]:
            conn = self.connection_pool.get_connection()
            try:
                return self._execute_on(conn, queries, transaction)
            finally:
                self.connection_pool.return_connection(conn)

        return attempt()

    @staticmethod
    def _execute_on(conn, queries: List[Statement], transaction: bool) -> List[QueryResult]:
        if transaction:
            conn.execute("BEGIN TRANSACTION")
        try:
            results = [
                QueryResult.from_cursor(conn.execute(sql, list(params)) if params else conn.execute(sql))
                for sql, params in queries
            ]
        except Exception:
            if transaction:
                conn.execute("ROLLBACK")
            raise
        if transaction:
            conn.execute("COMMIT")
        return results

    def get_stats(self) -> Dict[str, Any]:
        """Statement count and timings since creation or the last reset."""
        with self._lock:
            count, total = self._query_count, self._total_query_time
        return {
            "query_count": count,
            "total_query_time_ms": total,
            "average_query_time_ms": total / count if count else 0,
            "connection_pool_size": self.connection_pool.max_connections,
            "max_retries": self.max_retries,
            "slow_query_threshold_ms": self.slow_query_ms
        }

    def reset_stats(self) -> None:
        with self._lock:
            self._query_count = 0
            self._total_query_time = 0.0

    def close(self):
        """Wait for running statements, then close the pooled cursors."""
        stats = self.get_stats()
        if stats["query_count"]:
            logger.info(
                f"QueryExecutor closing. Executed {stats['query_count']} queries, "
                f"average time: {stats['average_query_time_ms']:.2f}ms"
            )
        self.executor.shutdown(wait=True)
        self.connection_pool.close_all()

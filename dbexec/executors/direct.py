"""
Direct query execution for the low-risk "query" submission kind.

Runs on the calling thread with one short-lived connection that is always
closed, whatever the outcome.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import psycopg2
import psycopg2.errors
import psycopg2.extras
from pymongo.errors import ExecutionTimeout, NetworkTimeout

from runner.evaluator import evaluate_expression
from runner.handles import ConnectionFailed, DocumentSession

from ..errors import DatabaseConnectionError, ExecutionTimeoutError, ProgramError
from ..models import ConnectionConfig
from .base import QueryExecutor, to_jsonable

LOGGER = logging.getLogger("dbexec")


class PostgresQueryExecutor(QueryExecutor):
    def __init__(
        self,
        query_timeout_seconds: int = 30,
        connect_timeout_seconds: int = 10,
        sslmode: str = "prefer",
    ):
        self.query_timeout_seconds = query_timeout_seconds
        self.connect_timeout_seconds = connect_timeout_seconds
        self.sslmode = sslmode

    def _connect(self, connection: ConnectionConfig):
        try:
            return psycopg2.connect(
                host=connection.host,
                port=connection.port or 5432,
                user=connection.user,
                password=connection.password,
                dbname=connection.database,
                connect_timeout=self.connect_timeout_seconds,
                sslmode=self.sslmode,
                options=f"-c statement_timeout={self.query_timeout_seconds * 1000}",
            )
        except psycopg2.OperationalError as exc:
            raise DatabaseConnectionError(
                f"Database connection failed: {str(exc).strip()}"
            ) from exc

    def execute(
        self,
        statement: str,
        connection: ConnectionConfig,
        params: Optional[Sequence[Any]] = None,
    ) -> Any:
        LOGGER.debug("Direct query on %s/%s", connection.host, connection.database)
        conn = self._connect(connection)
        try:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                # Without params the statement is sent verbatim (no % interpolation).
                if params is None:
                    cur.execute(statement)
                else:
                    cur.execute(statement, params)
                rows = [dict(row) for row in cur.fetchall()] if cur.description else []
                row_count = max(cur.rowcount, 0)
            conn.commit()
        except psycopg2.errors.QueryCanceled as exc:
            raise ExecutionTimeoutError(
                f"Query execution timed out after {self.query_timeout_seconds} seconds"
            ) from exc
        except psycopg2.Error as exc:
            raise ProgramError(f"SQL Error: {str(exc).strip()}") from exc
        finally:
            conn.close()

        return {"rows": to_jsonable(rows), "row_count": row_count}


class MongoQueryExecutor(QueryExecutor):
    """Evaluates a single expression such as ``db.users.find({"active": True})``.

    ``db`` and ``collection(name)`` are the only names in scope.
    """

    def __init__(self, query_timeout_seconds: int = 30, connect_timeout_seconds: int = 10):
        self.query_timeout_seconds = query_timeout_seconds
        self.connect_timeout_seconds = connect_timeout_seconds

    def execute(
        self,
        statement: str,
        connection: ConnectionConfig,
        params: Optional[Sequence[Any]] = None,
    ) -> Any:
        expression = statement.strip().rstrip(";").strip()
        LOGGER.debug("Direct document query on %s", connection.database)
        try:
            session = DocumentSession(
                {"uri": connection.uri, "database": connection.database},
                connect_timeout=self.connect_timeout_seconds,
                socket_timeout=self.query_timeout_seconds,
            )
        except ConnectionFailed as exc:
            raise DatabaseConnectionError(f"Database connection failed: {exc}") from exc

        try:
            result = evaluate_expression(expression, session.capabilities())
        except (ExecutionTimeout, NetworkTimeout) as exc:
            raise ExecutionTimeoutError(
                f"Query execution timed out after {self.query_timeout_seconds} seconds"
            ) from exc
        except Exception as exc:
            raise ProgramError(f"MongoDB query failed: {exc}") from exc
        finally:
            session.close()

        return to_jsonable(result)

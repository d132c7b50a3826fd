"""Execution backend implementations."""

from .base import QueryExecutor
from .direct import MongoQueryExecutor, PostgresQueryExecutor
from .factory import create_program_runner, create_query_executor
from .sandbox import SandboxedProgramRunner

__all__ = [
    "QueryExecutor",
    "PostgresQueryExecutor",
    "MongoQueryExecutor",
    "SandboxedProgramRunner",
    "create_program_runner",
    "create_query_executor",
]

"""
Executor factory for selecting the backend per target type.
"""

from __future__ import annotations

from ..models import TargetType
from ..settings import Settings
from .base import QueryExecutor
from .direct import MongoQueryExecutor, PostgresQueryExecutor
from .sandbox import SandboxedProgramRunner


def create_query_executor(target_type: TargetType, settings: Settings) -> QueryExecutor:
    if target_type == TargetType.RELATIONAL:
        return PostgresQueryExecutor(
            query_timeout_seconds=settings.query_timeout_seconds,
            connect_timeout_seconds=settings.connect_timeout_seconds,
            sslmode=settings.pg_sslmode,
        )
    if target_type == TargetType.DOCUMENT:
        return MongoQueryExecutor(
            query_timeout_seconds=settings.query_timeout_seconds,
            connect_timeout_seconds=settings.connect_timeout_seconds,
        )
    raise ValueError(f"Unsupported target type: {target_type}")


def create_program_runner(settings: Settings) -> SandboxedProgramRunner:
    return SandboxedProgramRunner(
        deadline_seconds=settings.program_deadline_seconds,
        derive_from_logs=settings.derive_result_from_logs,
    )

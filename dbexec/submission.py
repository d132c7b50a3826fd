"""
Top-level dispatch of approved submissions.

``SubmissionRunner.run`` resolves and decrypts credentials, picks the direct
executor or the sandboxed program runner, normalizes the raw result, and
returns exactly one ExecutionOutcome. Execution failures never escape as
exceptions; they become failed outcomes carrying the logs captured so far.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from .credentials import CredentialStore
from .errors import ConfigError, ExecutionError, error_for_kind
from .executors.base import QueryExecutor
from .executors.factory import create_program_runner, create_query_executor
from .executors.sandbox import SandboxedProgramRunner
from .models import (
    ConnectionConfig,
    ExecutionOutcome,
    LogEntry,
    SubmissionKind,
    SubmissionRef,
    TargetType,
)
from .normalizer import normalize_result
from .settings import Settings
from .vault import CredentialVault

LOGGER = logging.getLogger("dbexec")

ENGINE_TARGETS = {
    "POSTGRES": TargetType.RELATIONAL,
    "POSTGRESQL": TargetType.RELATIONAL,
    "MONGODB": TargetType.DOCUMENT,
    "MONGO": TargetType.DOCUMENT,
}


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class SubmissionRunner:
    def __init__(
        self,
        credential_store: CredentialStore,
        vault: CredentialVault,
        program_runner: SandboxedProgramRunner,
        query_executors: Dict[TargetType, QueryExecutor],
    ):
        self.credential_store = credential_store
        self.vault = vault
        self.program_runner = program_runner
        self.query_executors = query_executors

    @classmethod
    def from_settings(cls, settings: Settings, credential_store: CredentialStore) -> "SubmissionRunner":
        return cls(
            credential_store=credential_store,
            vault=CredentialVault(settings.encryption_key),
            program_runner=create_program_runner(settings),
            query_executors={t: create_query_executor(t, settings) for t in TargetType},
        )

    def resolve_connection(self, submission: SubmissionRef) -> ConnectionConfig:
        stored = self.credential_store.get(submission.credentials_ref)
        if stored is None:
            raise ConfigError("DB instance not found")

        engine_target = ENGINE_TARGETS.get(stored.type.upper())
        if engine_target is None:
            raise ConfigError(f"Unsupported database type: {stored.type}")
        if engine_target != submission.target_type:
            raise ConfigError(
                f"Instance type {stored.type} does not match target type "
                f"{submission.target_type.value}"
            )

        if engine_target == TargetType.DOCUMENT:
            if not stored.mongo_uri_encrypted:
                raise ConfigError("Mongo URI not configured")
            return ConnectionConfig(
                uri=self.vault.decrypt(stored.mongo_uri_encrypted),
                database=submission.database_name,
            )

        if not stored.host:
            raise ConfigError("Instance host not configured")
        password: Optional[str] = None
        if stored.password_encrypted:
            password = self.vault.decrypt(stored.password_encrypted)
        return ConnectionConfig(
            host=stored.host,
            port=stored.port or 5432,
            user=stored.username,
            password=password,
            database=submission.database_name,
        )

    def _execute(self, submission: SubmissionRef, logs: List[LogEntry]) -> Any:
        connection = self.resolve_connection(submission)

        if submission.submission_kind == SubmissionKind.QUERY:
            executor = self.query_executors.get(submission.target_type)
            if executor is None:
                raise ConfigError(f"No query executor for {submission.target_type.value}")
            return executor.execute(submission.program_text, connection)

        worker = self.program_runner.run(
            submission.program_text, submission.target_type, connection
        )
        logs.extend(worker.logs)
        if not worker.success:
            raise error_for_kind(
                worker.error_type or "ProgramError",
                worker.error or "Script execution failed",
            )
        return worker.result if worker.has_result else None

    def run(self, submission: SubmissionRef) -> ExecutionOutcome:
        started = time.monotonic()
        logs: List[LogEntry] = []
        LOGGER.info(
            "Executing submission %s (%s %s on %s)",
            submission.id,
            submission.target_type.value,
            submission.submission_kind.value,
            submission.database_name,
        )

        try:
            raw = self._execute(submission, logs)
        except ExecutionError as exc:
            LOGGER.warning("Submission %s failed [%s]: %s", submission.id, exc.kind, exc.message)
            return ExecutionOutcome(
                success=False,
                error=exc.message,
                error_type=exc.kind,
                logs=logs,
                exec_time_ms=_elapsed_ms(started),
            )
        except Exception as exc:
            LOGGER.exception("Submission %s failed unexpectedly", submission.id)
            return ExecutionOutcome(
                success=False,
                error=f"Internal error: {exc}",
                error_type="InternalError",
                logs=logs,
                exec_time_ms=_elapsed_ms(started),
            )

        result = normalize_result(raw)
        LOGGER.info("Submission %s succeeded (%s)", submission.id, result.kind.value)
        return ExecutionOutcome(
            success=True,
            result=result,
            logs=logs,
            exec_time_ms=_elapsed_ms(started),
        )

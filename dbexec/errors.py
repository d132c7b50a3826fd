"""
Execution failure taxonomy.

Each error carries a ``kind`` that is copied onto the failed
ExecutionOutcome as ``error_type``.
"""


class ExecutionError(Exception):
    kind = "ExecutionError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigError(ExecutionError):
    """Bad or missing configuration; fatal before any connection."""

    kind = "ConfigError"


class VaultError(ConfigError):
    """Stored credentials could not be decrypted."""


class DatabaseConnectionError(ExecutionError):
    kind = "ConnectionError"


class ProgramError(ExecutionError):
    """The submitted query or program failed."""

    kind = "ProgramError"


class ExecutionTimeoutError(ExecutionError):
    kind = "TimeoutError"


class SerializationError(ExecutionError):
    kind = "SerializationError"


ERROR_KINDS = {
    cls.kind: cls
    for cls in (
        ConfigError,
        DatabaseConnectionError,
        ProgramError,
        ExecutionTimeoutError,
        SerializationError,
    )
}


def error_for_kind(kind: str, message: str) -> ExecutionError:
    return ERROR_KINDS.get(kind, ProgramError)(message)

"""
Execution and result-normalization pipeline for approved database submissions.
"""

from .credentials import CredentialStore, InMemoryCredentialStore
from .models import (
    ExecutionOutcome,
    LogEntry,
    NormalizedResult,
    ResultKind,
    StoredCredentials,
    SubmissionKind,
    SubmissionRef,
    TargetType,
)
from .normalizer import normalize_result
from .settings import Settings, configure_logging, load_settings
from .submission import SubmissionRunner
from .vault import CredentialVault

__all__ = [
    "CredentialStore",
    "CredentialVault",
    "ExecutionOutcome",
    "InMemoryCredentialStore",
    "LogEntry",
    "NormalizedResult",
    "ResultKind",
    "Settings",
    "StoredCredentials",
    "SubmissionKind",
    "SubmissionRef",
    "SubmissionRunner",
    "TargetType",
    "configure_logging",
    "load_settings",
    "normalize_result",
]

"""
Data models for the execution pipeline.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TargetType(str, Enum):
    """Kind of database a submission runs against."""
    RELATIONAL = "RELATIONAL"
    DOCUMENT = "DOCUMENT"


class SubmissionKind(str, Enum):
    """Single statement or multi-step program."""
    QUERY = "QUERY"
    PROGRAM = "PROGRAM"


class ResultKind(str, Enum):
    """Renderable result shapes."""
    TABLE = "table"
    JSON = "json"
    TEXT = "text"


class SubmissionRef(BaseModel):
    """An approved submission, immutable once dispatched."""
    model_config = ConfigDict(frozen=True)

    id: str
    target_type: TargetType
    submission_kind: SubmissionKind
    database_name: str = Field(..., min_length=1)
    program_text: str = Field(..., min_length=1)
    credentials_ref: str


class StoredCredentials(BaseModel):
    """At-rest instance record as returned by the credential store.

    Secret fields hold ``ivHex:authTagHex:ciphertextHex`` tokens.
    """
    id: str
    type: str
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password_encrypted: Optional[str] = None
    mongo_uri_encrypted: Optional[str] = None


class ConnectionConfig(BaseModel):
    """Decrypted connection parameters. Never log this object."""
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    database: str
    uri: Optional[str] = Field(default=None, repr=False)


class WorkerConfig(BaseModel):
    """Argument handed to a worker process."""
    program_path: str
    target_type: TargetType
    connection: ConnectionConfig

    def to_argument(self) -> str:
        return self.model_dump_json()

    def redacted(self) -> Dict[str, Any]:
        return {
            "program_path": self.program_path,
            "target_type": self.target_type.value,
            "host": self.connection.host,
            "port": self.connection.port,
            "database": self.connection.database,
        }


class LogEntry(BaseModel):
    message: str
    is_error: bool = False


class NormalizedResult(BaseModel):
    kind: ResultKind
    data: Any = None


class WorkerResult(BaseModel):
    """Parsed worker payload plus process metadata."""
    success: bool
    result: Any = None
    has_result: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None
    logs: List[LogEntry] = Field(default_factory=list)
    returncode: Optional[int] = None
    timed_out: bool = False
    stdout: str = ""
    stderr: str = ""


class ExecutionOutcome(BaseModel):
    """Terminal record of one execution attempt."""
    model_config = ConfigDict(frozen=True)

    success: bool
    result: Optional[NormalizedResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    logs: List[LogEntry] = Field(default_factory=list)
    exec_time_ms: int = 0

    @model_validator(mode="after")
    def _validate_failure_message(self):
        if not self.success and not self.error:
            raise ValueError("Failed outcomes must carry an error message")
        return self

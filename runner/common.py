"""
Shared worker utilities: configuration parsing and the single stdout payload.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

TARGET_TYPES = {"RELATIONAL", "DOCUMENT"}


class ConfigError(Exception):
    """Raised when the worker configuration argument is missing or invalid."""


class WorkerConfig:
    """
    Worker configuration, passed as the single positional argument.

    Expected JSON:
    {
        "program_path": "/tmp/program-<uuid>.py",
        "target_type": "RELATIONAL",
        "connection": {
            "host": "db.internal", "port": 5432,
            "user": "svc", "password": "...", "database": "orders"
        }
    }

    Document targets carry ``connection.uri`` instead of host/port/user.
    """

    def __init__(self, data: Dict[str, Any]):
        self.program_path = data.get("program_path", "")
        self.target_type = str(data.get("target_type", "")).upper()
        self.connection = data.get("connection") or {}

    def validate(self) -> Optional[str]:
        """Validate config. Returns error message if invalid."""
        if not self.program_path:
            return "program_path is required"
        if self.target_type not in TARGET_TYPES:
            return f"Unsupported target_type: {self.target_type or '<empty>'}"
        if not isinstance(self.connection, dict):
            return "connection must be an object"
        if not self.connection.get("database"):
            return "connection.database is required"
        if self.target_type == "DOCUMENT" and not self.connection.get("uri"):
            return "connection.uri is required for document targets"
        if self.target_type == "RELATIONAL" and not self.connection.get("host"):
            return "connection.host is required for relational targets"
        return None


def parse_worker_config(argv: List[str]) -> WorkerConfig:
    if not argv or not argv[0].strip():
        raise ConfigError("No config provided")
    try:
        data = json.loads(argv[0])
    except json.JSONDecodeError:
        raise ConfigError("Invalid config JSON") from None
    if not isinstance(data, dict):
        raise ConfigError("Invalid config JSON")

    config = WorkerConfig(data)
    validation_error = config.validate()
    if validation_error:
        raise ConfigError(validation_error)
    return config


def read_program(path_value: str) -> str:
    path = Path(path_value)
    if not path.is_absolute():
        raise ConfigError(f"program_path must be absolute: {path_value}")
    if not path.is_file():
        raise ConfigError(f"Program file not found: {path_value}")
    return path.read_text(encoding="utf-8")


class WorkerResponse:
    def __init__(self):
        self.success = True
        self.result: Any = None
        self.has_result = False
        self.error: Optional[str] = None
        self.error_type: Optional[str] = None
        self.logs: List[Dict[str, Any]] = []

    def fail(self, error_type: str, message: str) -> "WorkerResponse":
        self.success = False
        self.error_type = error_type
        self.error = message
        return self

    def to_json(self) -> str:
        payload: Dict[str, Any] = {"success": self.success, "logs": self.logs}
        if self.has_result:
            payload["result"] = self.result
        if self.error is not None:
            payload["error"] = self.error
            payload["error_type"] = self.error_type
        return json.dumps(payload, default=str)

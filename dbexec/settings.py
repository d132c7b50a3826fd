"""
Runtime configuration and logging setup.
"""

from __future__ import annotations

import logging
import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator


class Settings(BaseModel):
    """Runtime configuration for the execution pipeline."""

    encryption_key: Optional[str] = Field(default=None, repr=False)
    program_deadline_seconds: float = Field(default=30.0)
    query_timeout_seconds: int = Field(default=30)
    connect_timeout_seconds: int = Field(default=10)
    pg_sslmode: Literal["disable", "allow", "prefer", "require", "verify-ca", "verify-full"] = Field(
        default="prefer"
    )
    derive_result_from_logs: bool = Field(default=True)
    log_level: str = Field(default="info")

    @model_validator(mode="after")
    def _validate_timeouts(self) -> "Settings":
        if self.program_deadline_seconds <= 0:
            raise ValueError("program_deadline_seconds must be > 0")
        if self.query_timeout_seconds <= 0:
            raise ValueError("query_timeout_seconds must be > 0")
        if self.connect_timeout_seconds <= 0:
            raise ValueError("connect_timeout_seconds must be > 0")
        return self


def load_settings(dotenv: bool = True) -> Settings:
    if dotenv:
        load_dotenv()
    return Settings(
        encryption_key=os.getenv("ENCRYPTION_KEY"),
        program_deadline_seconds=float(os.getenv("PROGRAM_DEADLINE_SECONDS", "30")),
        query_timeout_seconds=int(os.getenv("QUERY_TIMEOUT_SECONDS", "30")),
        connect_timeout_seconds=int(os.getenv("CONNECT_TIMEOUT_SECONDS", "10")),
        pg_sslmode=os.getenv("PG_SSLMODE", "prefer"),
        derive_result_from_logs=os.getenv("DERIVE_RESULT_FROM_LOGS", "true").lower()
        == "true",
        log_level=os.getenv("LOG_LEVEL", "info"),
    )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO)
    )

"""
Executor interface for direct (in-process) query execution.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from ..errors import SerializationError
from ..models import ConnectionConfig


class QueryExecutor(ABC):
    @abstractmethod
    def execute(
        self,
        statement: str,
        connection: ConnectionConfig,
        params: Optional[Sequence[Any]] = None,
    ) -> Any:
        """Run one statement and return the driver's raw result shape."""
        raise NotImplementedError


def to_jsonable(value: Any) -> Any:
    """Coerce driver values (Decimal, datetime, ObjectId, ...) the same way
    the worker does when it writes its payload."""
    try:
        return json.loads(json.dumps(value, default=str))
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"Result could not be serialized: {exc}") from exc

"""
Structured capture of diagnostic output emitted by a submitted program.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

_PRIMITIVES = (str, int, float, bool, type(None))


def _render(arg: Any) -> str:
    if isinstance(arg, _PRIMITIVES):
        return str(arg)
    try:
        return json.dumps(arg, default=str)
    except (TypeError, ValueError):
        return repr(arg)


class LogSink:
    """Buffers ``info``/``error`` calls as ordered log entries.

    Handed to the program as the ``log`` capability. The worker's real
    stdout/stderr are never touched, so nothing needs restoring afterwards.
    """

    def __init__(self):
        self._entries: List[Dict[str, Any]] = []

    def _emit(self, args: tuple, is_error: bool) -> None:
        message = " ".join(_render(a) for a in args)
        self._entries.append({"message": message, "is_error": is_error})

    def info(self, *args: Any) -> None:
        self._emit(args, is_error=False)

    def error(self, *args: Any) -> None:
        self._emit(args, is_error=True)

    def print(self, *args: Any, **_kwargs: Any) -> None:
        # Stand-in for the print builtin; sep/end/file are ignored.
        self._emit(args, is_error=False)

    @property
    def entries(self) -> List[Dict[str, Any]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

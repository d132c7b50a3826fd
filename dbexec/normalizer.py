"""
Classification of raw execution results into renderable shapes.

``normalize_result`` is a closed, total decision procedure: every input maps
to exactly one of TABLE / JSON / TEXT and no input raises.

Priority:
  1. None                      -> TEXT "No result"
  2. {"stdout": ...} (legacy)  -> TABLE / JSON / TEXT from parsed stdout
  3. str                       -> concatenated objects, then (double-encoded) JSON
  4. {"rows": [...]}           -> TABLE, or TEXT row-count summary when empty
  5. list / tuple              -> flattened one level, TABLE if rows of objects
  6. anything else             -> JSON
"""

from __future__ import annotations

import json
from typing import Any, List, Optional, Tuple

from .models import NormalizedResult, ResultKind

NO_RESULT_TEXT = "No result"
EXECUTION_COMPLETED_TEXT = "Execution completed"

_UNPARSED = object()


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (ValueError, TypeError, RecursionError):
        return _UNPARSED


def parse_json_text(text: str) -> Any:
    """Parse *text*, unwrapping double-encoded strings.

    Returns the original string when it does not parse.
    """
    value: Any = text
    while isinstance(value, str):
        parsed = _loads(value)
        if parsed is _UNPARSED:
            return value
        value = parsed
    return value


def parse_concatenated_objects(text: str) -> Optional[List[Any]]:
    """Split ``{...}{...}`` into objects, deduplicated in first-seen order.

    Returns None unless there are at least two pieces and every piece parses
    to an object.
    """
    stripped = text.strip()
    if not (stripped.startswith("{") and stripped.endswith("}")):
        return None
    pieces = stripped.split("}{")
    if len(pieces) < 2:
        return None

    objects: List[Any] = []
    seen = set()
    last = len(pieces) - 1
    for index, piece in enumerate(pieces):
        if index > 0:
            piece = "{" + piece
        if index < last:
            piece = piece + "}"
        parsed = _loads(piece)
        if not isinstance(parsed, dict):
            return None
        key = json.dumps(parsed, sort_keys=True, default=str)
        if key in seen:
            continue
        seen.add(key)
        objects.append(parsed)
    return objects


def _parse_structured(text: str) -> Tuple[bool, Any]:
    concatenated = parse_concatenated_objects(text)
    if concatenated is not None:
        return True, concatenated
    parsed = parse_json_text(text)
    if isinstance(parsed, str) and parsed == text:
        return False, text
    return True, parsed


def _is_row_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0 and isinstance(value[0], dict)


def _text(data: str) -> NormalizedResult:
    return NormalizedResult(kind=ResultKind.TEXT, data=data)


def _normalize_legacy(value: dict) -> NormalizedResult:
    # Nested legacy payloads are unwrapped in a loop; a cycle ends as TEXT.
    seen = {id(value)}
    stdout = value.get("stdout")
    while isinstance(stdout, dict) and "stdout" in stdout:
        if id(stdout) in seen:
            return _text(_display(value.get("stderr")) or EXECUTION_COMPLETED_TEXT)
        seen.add(id(stdout))
        value = stdout
        stdout = value.get("stdout")

    if isinstance(stdout, str):
        ok, parsed = _parse_structured(stdout)
        if ok and _is_row_list(parsed):
            return NormalizedResult(kind=ResultKind.TABLE, data=parsed)
        if ok and not isinstance(parsed, str):
            return NormalizedResult(kind=ResultKind.JSON, data=parsed)
    elif stdout is not None and not isinstance(stdout, (bytes, bytearray)):
        return normalize_result(stdout)
    return _text(
        _display(stdout) or _display(value.get("stderr")) or EXECUTION_COMPLETED_TEXT
    )


def _display(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    try:
        return str(value)
    except RecursionError:
        return type(value).__name__


def _normalize_string(value: str) -> NormalizedResult:
    concatenated = parse_concatenated_objects(value)
    if concatenated is not None:
        return NormalizedResult(kind=ResultKind.TABLE, data=concatenated)

    parsed = parse_json_text(value)
    if isinstance(parsed, str):
        if parsed == value:
            return _text(value)
        # Double-encoded plain text; classify the unwrapped string.
        return _normalize_string(parsed)
    return normalize_result(parsed)


def _normalize_rows(value: dict) -> NormalizedResult:
    rows = value["rows"]
    if rows:
        return NormalizedResult(kind=ResultKind.TABLE, data=rows)
    count = value.get("row_count", value.get("rowCount")) or 0
    return _text(f"Query executed successfully. {count} rows affected.")


def _flatten(items) -> List[Any]:
    flattened: List[Any] = []
    for item in items:
        if item is None:
            continue
        if isinstance(item, (list, tuple)):
            flattened.extend(item)
        elif isinstance(item, str):
            ok, parsed = _parse_structured(item)
            if ok and isinstance(parsed, list):
                flattened.extend(parsed)
            else:
                flattened.append(parsed)
        else:
            flattened.append(item)
    return flattened


def _normalize_array(value) -> NormalizedResult:
    flattened = _flatten(value)
    if _is_row_list(flattened):
        return NormalizedResult(kind=ResultKind.TABLE, data=flattened)
    return NormalizedResult(kind=ResultKind.JSON, data=flattened if flattened else list(value))


def normalize_result(value: Any) -> NormalizedResult:
    if value is None:
        return _text(NO_RESULT_TEXT)
    if isinstance(value, dict) and "stdout" in value:
        return _normalize_legacy(value)
    if isinstance(value, str):
        return _normalize_string(value)
    if isinstance(value, dict) and isinstance(value.get("rows"), list):
        return _normalize_rows(value)
    if isinstance(value, (list, tuple)):
        return _normalize_array(value)
    return NormalizedResult(kind=ResultKind.JSON, data=value)

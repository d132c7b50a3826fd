#!/usr/bin/env python3
"""
Submission Program Worker

Runs one submitted program against one database inside its own process.
Reads WorkerConfig JSON from argv[1], writes exactly one JSON payload to
stdout:

    {"success": bool, "result"?: any, "error"?: str, "error_type"?: str,
     "logs": [{"message": str, "is_error": bool}, ...]}

Configuration problems are reported on stderr as {"error": str} with a
non-zero exit status, before any connection is attempted.
"""

import json
import sys
from typing import Any, Callable, Dict, List, Optional

import psycopg2
from pymongo.errors import PyMongoError

from runner.common import (
    ConfigError,
    WorkerConfig,
    WorkerResponse,
    parse_worker_config,
    read_program,
)
from runner.evaluator import PolicyViolation, run_program
from runner.handles import ConnectionFailed, open_session
from runner.log_sink import LogSink

EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def run_worker(
    config: WorkerConfig,
    program_text: str,
    session_factory: Callable[[str, Dict[str, Any]], Any] = open_session,
) -> WorkerResponse:
    response = WorkerResponse()
    sink = LogSink()

    try:
        session = session_factory(config.target_type, config.connection)
    except ConnectionFailed as exc:
        return response.fail("ConnectionError", f"Database connection failed: {exc}")

    try:
        capabilities = session.capabilities()
        capabilities["log"] = sink
        result = run_program(program_text, capabilities, printer=sink.print)
        if result is not None:
            response.result = result
            response.has_result = True
    except SyntaxError as exc:
        response.fail("ProgramError", f"Script syntax error: {exc}")
    except PolicyViolation as exc:
        response.fail("ProgramError", f"Policy violation: {exc}")
    except psycopg2.Error as exc:
        response.fail("ProgramError", f"SQL Error: {str(exc).strip()}")
    except PyMongoError as exc:
        response.fail("ProgramError", f"MongoDB Error: {exc}")
    except Exception as exc:
        response.fail("ProgramError", str(exc) or type(exc).__name__)
    finally:
        response.logs = sink.entries
        session.close()

    return response


def _serialize(response: WorkerResponse) -> tuple[str, bool]:
    try:
        return response.to_json(), response.success
    except (TypeError, ValueError) as exc:
        fallback = WorkerResponse().fail(
            "SerializationError", f"Program result could not be serialized: {exc}"
        )
        fallback.logs = response.logs
        return fallback.to_json(), False


def main(
    argv: Optional[List[str]] = None,
    session_factory: Callable[[str, Dict[str, Any]], Any] = open_session,
) -> int:
    args = sys.argv[1:] if argv is None else argv

    try:
        config = parse_worker_config(args)
        if argv is None:
            # The config argument carries decrypted credentials.
            del sys.argv[1:]
        program_text = read_program(config.program_path)
    except ConfigError as exc:
        sys.stderr.write(json.dumps({"error": str(exc)}))
        sys.stderr.flush()
        return EXIT_CONFIG_ERROR

    try:
        response = run_worker(config, program_text, session_factory)
    except Exception as exc:
        # Catch-all so the parent always receives a payload.
        response = WorkerResponse().fail("ProgramError", f"Unexpected error: {exc}")

    payload, success = _serialize(response)
    sys.stdout.write(payload)
    sys.stdout.flush()
    return 0 if success else EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())

"""
Process-isolated execution of "program" submissions.

Each run writes the program to a temp file, spawns a fresh worker process
(``python -m runner.worker '<WorkerConfig JSON>'``) with a scrubbed
environment, and reads back the single JSON payload from its stdout. A
wall-clock deadline is armed at spawn; on expiry the worker is killed and
reaped and its partial output is discarded.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import tempfile
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import runner

from ..models import ConnectionConfig, LogEntry, TargetType, WorkerConfig, WorkerResult
from ..normalizer import parse_json_text

LOGGER = logging.getLogger("dbexec")

WORKER_MODULE = "runner.worker"
DEFAULT_DEADLINE_SECONDS = 30.0
MAX_STDERR_CHARS = 4096

# Packages root, so the worker can import ``runner`` with a scrubbed env.
PACKAGES_ROOT = Path(runner.__file__).resolve().parent.parent


def create_program_file(program_text: str, directory: Optional[str] = None) -> str:
    fd, path = tempfile.mkstemp(prefix=f"program-{uuid.uuid4()}-", suffix=".py", dir=directory)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(program_text)
    return path


def remove_program_file(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def worker_environment() -> Dict[str, str]:
    """Allow-list of variables for the worker; host secrets are not inherited."""
    python_path = [str(PACKAGES_ROOT)]
    if os.environ.get("PYTHONPATH"):
        python_path.append(os.environ["PYTHONPATH"])
    env = {
        "PATH": os.environ.get("PATH", os.defpath),
        "PYTHONPATH": os.pathsep.join(python_path),
        "PYTHONIOENCODING": "utf-8",
    }
    if os.environ.get("LANG"):
        env["LANG"] = os.environ["LANG"]
    return env


def _failure(error_type: str, message: str, **extra: Any) -> WorkerResult:
    return WorkerResult(success=False, error_type=error_type, error=message, **extra)


def _parse_logs(raw_logs: Any) -> List[LogEntry]:
    entries: List[LogEntry] = []
    if not isinstance(raw_logs, list):
        return entries
    for item in raw_logs:
        if isinstance(item, dict):
            entries.append(
                LogEntry(message=str(item.get("message", "")), is_error=bool(item.get("is_error")))
            )
        elif item is not None:
            entries.append(LogEntry(message=str(item)))
    return entries


def _config_error_from_stderr(stderr: str) -> Optional[str]:
    try:
        parsed = json.loads(stderr)
    except ValueError:
        return None
    if isinstance(parsed, dict) and parsed.get("error"):
        return str(parsed["error"])
    return None


def parse_worker_output(stdout: bytes, stderr: bytes, returncode: Optional[int]) -> WorkerResult:
    out = stdout.decode("utf-8", errors="replace").strip()
    err = stderr.decode("utf-8", errors="replace").strip()
    meta = {"returncode": returncode, "stdout": out, "stderr": err[:MAX_STDERR_CHARS]}

    if not out:
        config_error = _config_error_from_stderr(err)
        if config_error:
            return _failure("ConfigError", config_error, **meta)
        message = err[-MAX_STDERR_CHARS:] or "Worker returned empty stdout."
        return _failure("ProgramError", message, **meta)

    try:
        payload = json.loads(out)
    except ValueError:
        return _failure("ProgramError", "Worker returned invalid JSON.", **meta)
    if not isinstance(payload, dict):
        return _failure("ProgramError", "Worker returned invalid JSON.", **meta)

    success = payload.get("success")
    if not isinstance(success, bool):
        success = returncode == 0
    error = payload.get("error")
    if not success and not error:
        error = err or "Script execution failed"

    return WorkerResult(
        success=success,
        result=payload.get("result"),
        has_result="result" in payload,
        error=error,
        error_type=payload.get("error_type") or (None if success else "ProgramError"),
        logs=_parse_logs(payload.get("logs")),
        **meta,
    )


def derive_result_from_logs(logs: Sequence[LogEntry]) -> Any:
    """Build a result from informational log lines when a program returned nothing."""
    rows: List[Any] = []
    for entry in logs:
        if entry.is_error:
            continue
        parsed = parse_json_text(entry.message)
        if isinstance(parsed, list):
            rows.extend(parsed)
        elif parsed is not None:
            rows.append(parsed)
    if not rows:
        return None
    return rows[0] if len(rows) == 1 else rows


class SandboxedProgramRunner:
    def __init__(
        self,
        deadline_seconds: float = DEFAULT_DEADLINE_SECONDS,
        worker_command: Optional[Sequence[str]] = None,
        derive_from_logs: bool = True,
        temp_dir: Optional[str] = None,
    ):
        if deadline_seconds <= 0:
            raise ValueError("deadline_seconds must be > 0")
        self.deadline_seconds = deadline_seconds
        self.worker_command = list(worker_command or [sys.executable, "-m", WORKER_MODULE])
        self.derive_from_logs = derive_from_logs
        self.temp_dir = temp_dir

    def run(
        self,
        program_text: str,
        target_type: TargetType,
        connection: ConnectionConfig,
    ) -> WorkerResult:
        program_path = create_program_file(program_text, self.temp_dir)
        try:
            config = WorkerConfig(
                program_path=program_path,
                target_type=target_type,
                connection=connection,
            )
            LOGGER.info("Spawning worker: %s", config.redacted())
            result = self._spawn(config)
        finally:
            remove_program_file(program_path)

        if result.success and not result.has_result and self.derive_from_logs:
            derived = derive_result_from_logs(result.logs)
            if derived is not None:
                result = result.model_copy(update={"result": derived, "has_result": True})
        return result

    def _spawn(self, config: WorkerConfig) -> WorkerResult:
        cmd = [*self.worker_command, config.to_argument()]
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=worker_environment(),
                close_fds=True,
            )
        except OSError as exc:
            return _failure("ConfigError", f"Failed to start worker: {exc}")

        try:
            stdout, stderr = proc.communicate(timeout=self.deadline_seconds)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
            LOGGER.warning(
                "Worker pid=%s exceeded deadline of %ss and was killed",
                proc.pid,
                self.deadline_seconds,
            )
            return _failure(
                "TimeoutError",
                f"Script execution timed out after {self.deadline_seconds:g} seconds",
                timed_out=True,
                returncode=proc.returncode,
            )
        except BaseException:
            proc.kill()
            proc.wait()
            raise

        LOGGER.info(
            "Worker pid=%s exited with status %s in %dms",
            proc.pid,
            proc.returncode,
            int((time.monotonic() - started) * 1000),
        )
        return parse_worker_output(stdout, stderr, proc.returncode)

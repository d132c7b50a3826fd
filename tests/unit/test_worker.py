import json

from runner import worker
from runner.common import WorkerConfig
from runner.handles import ConnectionFailed
from runner.log_sink import LogSink


class _FakeSession:
    def __init__(self):
        self.closed = False
        self.queries = []

    def query(self, statement, params=None):
        self.queries.append((statement, params))
        return [{"id": 1}]

    def capabilities(self):
        return {"query": self.query}

    def close(self):
        self.closed = True


def _config(program_path="/tmp/program.py"):
    return WorkerConfig(
        {
            "program_path": program_path,
            "target_type": "RELATIONAL",
            "connection": {"host": "db.internal", "port": 5432, "database": "orders"},
        }
    )


def _run(program, session=None):
    session = session or _FakeSession()
    response = worker.run_worker(_config(), program, lambda *_args: session)
    return response, session


def test_thrown_error_is_reported_as_data():
    response, session = _run('log.info("starting")\nraise Exception("boom")')
    assert response.success is False
    assert response.error == "boom"
    assert response.error_type == "ProgramError"
    assert [e["message"] for e in response.logs] == ["starting"]
    assert session.closed is True


def test_no_explicit_return_has_no_result():
    response, _ = _run('query("UPDATE t SET x = 1")')
    assert response.success is True
    assert response.has_result is False
    assert "result" not in json.loads(response.to_json())


def test_return_value_and_params_reach_driver():
    response, session = _run('rows = query("SELECT * FROM t WHERE id = %s", [1])\nreturn rows')
    assert response.success is True
    assert response.result == [{"id": 1}]
    assert session.queries == [("SELECT * FROM t WHERE id = %s", [1])]


def test_logs_keep_emission_order_and_error_tags():
    response, _ = _run('log.info("A")\nlog.error("B")\nprint("C", {"n": 1})\nreturn 1')
    assert [e["message"] for e in response.logs] == ["A", "B", 'C {"n": 1}']
    assert [e["is_error"] for e in response.logs] == [False, True, False]


def test_connection_failure_is_connection_error():
    def failing_factory(*_args):
        raise ConnectionFailed("connection refused")

    response = worker.run_worker(_config(), "return 1", failing_factory)
    assert response.success is False
    assert response.error_type == "ConnectionError"
    assert response.error == "Database connection failed: connection refused"
    assert response.logs == []


def test_syntax_error_is_labelled():
    response, session = _run("return (")
    assert response.success is False
    assert response.error.startswith("Script syntax error:")
    assert session.closed is True


def test_policy_violation_is_labelled():
    response, _ = _run("import os\nreturn os.getcwd()")
    assert response.error == "Policy violation: Blocked import: os"


def test_main_without_config_writes_stderr(capsys):
    code = worker.main([])
    captured = capsys.readouterr()
    assert code == worker.EXIT_CONFIG_ERROR
    assert captured.out == ""
    assert json.loads(captured.err) == {"error": "No config provided"}


def test_main_with_invalid_json_never_connects(capsys):
    def must_not_connect(*_args):
        raise AssertionError("connected before config was parsed")

    code = worker.main(["{not json"], session_factory=must_not_connect)
    captured = capsys.readouterr()
    assert code == worker.EXIT_CONFIG_ERROR
    assert json.loads(captured.err) == {"error": "Invalid config JSON"}


def test_main_missing_program_file(capsys, tmp_path):
    config = {
        "program_path": str(tmp_path / "missing.py"),
        "target_type": "RELATIONAL",
        "connection": {"host": "h", "database": "d"},
    }
    code = worker.main([json.dumps(config)], session_factory=lambda *_a: _FakeSession())
    captured = capsys.readouterr()
    assert code == worker.EXIT_CONFIG_ERROR
    assert "Program file not found" in json.loads(captured.err)["error"]


def test_main_emits_single_payload(capsys, tmp_path):
    program = tmp_path / "program.py"
    program.write_text('log.info("A")\nraise ValueError("boom")\n')
    config = {
        "program_path": str(program),
        "target_type": "RELATIONAL",
        "connection": {"host": "h", "database": "d"},
    }
    code = worker.main([json.dumps(config)], session_factory=lambda *_a: _FakeSession())
    captured = capsys.readouterr()
    payload = json.loads(captured.out)
    assert code == worker.EXIT_FAILURE
    assert payload == {
        "success": False,
        "error": "boom",
        "error_type": "ProgramError",
        "logs": [{"message": "A", "is_error": False}],
    }
    assert captured.err == ""


def test_main_reports_unserializable_result(capsys, tmp_path):
    program = tmp_path / "program.py"
    program.write_text("a = []\na.append(a)\nreturn a\n")
    config = {
        "program_path": str(program),
        "target_type": "RELATIONAL",
        "connection": {"host": "h", "database": "d"},
    }
    code = worker.main([json.dumps(config)], session_factory=lambda *_a: _FakeSession())
    payload = json.loads(capsys.readouterr().out)
    assert code == worker.EXIT_FAILURE
    assert payload["error_type"] == "SerializationError"


def test_log_sink_serializes_arguments():
    sink = LogSink()
    sink.info("rows:", [1, 2], None, True)
    sink.error({"a": 1})
    assert sink.entries == [
        {"message": "rows: [1, 2] None True", "is_error": False},
        {"message": '{"a": 1}', "is_error": True},
    ]
    assert len(sink) == 2


def test_worker_config_validation():
    assert _config().validate() is None
    bad = WorkerConfig({"program_path": "/tmp/x.py", "target_type": "DOCUMENT", "connection": {"database": "d"}})
    assert bad.validate() == "connection.uri is required for document targets"
    assert WorkerConfig({}).validate() == "program_path is required"

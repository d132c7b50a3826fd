import datetime
from decimal import Decimal

import psycopg2
import psycopg2.errors
import pytest
from pymongo.errors import ExecutionTimeout

from dbexec.errors import DatabaseConnectionError, ExecutionTimeoutError, ProgramError
from dbexec.executors.direct import MongoQueryExecutor, PostgresQueryExecutor
from dbexec.models import ConnectionConfig
from runner.handles import ConnectionFailed

PG = ConnectionConfig(host="db.internal", port=5432, user="svc", password="pw", database="orders")
MONGO = ConnectionConfig(uri="mongodb://svc:pw@mongo.internal:27017", database="app")


class _FakeCursor:
    def __init__(self, rows=None, rowcount=-1, error=None):
        self._rows = rows
        self.rowcount = rowcount
        self.description = [("id",)] if rows is not None else None
        self._error = error
        self.executed = []

    def execute(self, *args):
        self.executed.append(args)
        if self._error is not None:
            raise self._error

    def fetchall(self):
        return self._rows

    def __enter__(self):
        return self

    def __exit__(self, *_exc):
        return False


class _FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor
        self.committed = False
        self.closed = False

    def cursor(self, cursor_factory=None):
        return self._cursor

    def commit(self):
        self.committed = True

    def close(self):
        self.closed = True


def _patch_connect(monkeypatch, conn):
    captured = {}

    def fake_connect(**kwargs):
        captured.update(kwargs)
        return conn

    monkeypatch.setattr("dbexec.executors.direct.psycopg2.connect", fake_connect)
    return captured


def test_postgres_select_returns_rows(monkeypatch):
    cursor = _FakeCursor(
        rows=[{"id": 1, "amount": Decimal("9.50"), "at": datetime.date(2024, 1, 2)}],
        rowcount=1,
    )
    conn = _FakeConnection(cursor)
    captured = _patch_connect(monkeypatch, conn)

    out = PostgresQueryExecutor(query_timeout_seconds=5).execute("SELECT * FROM orders", PG)

    assert out == {"rows": [{"id": 1, "amount": "9.50", "at": "2024-01-02"}], "row_count": 1}
    assert cursor.executed == [("SELECT * FROM orders",)]
    assert captured["dbname"] == "orders"
    assert captured["options"] == "-c statement_timeout=5000"
    assert conn.committed is True
    assert conn.closed is True


def test_postgres_statement_without_rows_reports_count(monkeypatch):
    conn = _FakeConnection(_FakeCursor(rows=None, rowcount=3))
    _patch_connect(monkeypatch, conn)
    out = PostgresQueryExecutor().execute("UPDATE orders SET paid = true", PG)
    assert out == {"rows": [], "row_count": 3}


def test_postgres_params_are_passed_to_driver(monkeypatch):
    cursor = _FakeCursor(rows=[], rowcount=0)
    _patch_connect(monkeypatch, _FakeConnection(cursor))
    PostgresQueryExecutor().execute("SELECT * FROM t WHERE id = %s", PG, params=[7])
    assert cursor.executed == [("SELECT * FROM t WHERE id = %s", [7])]


def test_postgres_sql_error_closes_connection(monkeypatch):
    conn = _FakeConnection(_FakeCursor(error=psycopg2.ProgrammingError("relation \"nope\" does not exist")))
    _patch_connect(monkeypatch, conn)
    with pytest.raises(ProgramError, match='SQL Error: relation "nope" does not exist'):
        PostgresQueryExecutor().execute("SELECT * FROM nope", PG)
    assert conn.closed is True
    assert conn.committed is False


def test_postgres_statement_timeout(monkeypatch):
    conn = _FakeConnection(_FakeCursor(error=psycopg2.errors.QueryCanceled("canceling statement")))
    _patch_connect(monkeypatch, conn)
    with pytest.raises(ExecutionTimeoutError):
        PostgresQueryExecutor(query_timeout_seconds=1).execute("SELECT pg_sleep(10)", PG)
    assert conn.closed is True


def test_postgres_connection_failure(monkeypatch):
    def refuse(**_kwargs):
        raise psycopg2.OperationalError("could not connect to server")

    monkeypatch.setattr("dbexec.executors.direct.psycopg2.connect", refuse)
    with pytest.raises(DatabaseConnectionError, match="Database connection failed"):
        PostgresQueryExecutor().execute("SELECT 1", PG)


class _FakeCollection:
    def __init__(self, docs=None, error=None):
        self.docs = docs or []
        self.error = error

    def find(self, flt=None):
        if self.error is not None:
            raise self.error
        return [d for d in self.docs if all(d.get(k) == v for k, v in (flt or {}).items())]


class _FakeDatabase:
    def __init__(self, collections):
        self._collections = collections

    def __getattr__(self, name):
        return self._collections[name]


class _FakeDocumentSession:
    instances = []

    def __init__(self, connection, connect_timeout=10, socket_timeout=None, collections=None):
        self.connection = connection
        self.socket_timeout = socket_timeout
        self.db = _FakeDatabase(collections or {})
        self.closed = False
        _FakeDocumentSession.instances.append(self)

    def capabilities(self):
        return {"db": self.db, "collection": lambda name: getattr(self.db, name)}

    def close(self):
        self.closed = True


def _patch_session(monkeypatch, collections):
    _FakeDocumentSession.instances = []

    def factory(connection, connect_timeout=10, socket_timeout=None):
        return _FakeDocumentSession(connection, connect_timeout, socket_timeout, collections)

    monkeypatch.setattr("dbexec.executors.direct.DocumentSession", factory)


def test_mongo_expression_query(monkeypatch):
    users = _FakeCollection(docs=[{"name": "a", "active": True}, {"name": "b", "active": False}])
    _patch_session(monkeypatch, {"users": users})

    out = MongoQueryExecutor(query_timeout_seconds=4).execute('db.users.find({"active": True});', MONGO)

    assert out == [{"name": "a", "active": True}]
    session = _FakeDocumentSession.instances[0]
    assert session.connection == {"uri": MONGO.uri, "database": "app"}
    assert session.socket_timeout == 4
    assert session.closed is True


def test_mongo_collection_helper(monkeypatch):
    _patch_session(monkeypatch, {"orders": _FakeCollection(docs=[{"n": 1}])})
    assert MongoQueryExecutor().execute('collection("orders").find()', MONGO) == [{"n": 1}]


def test_mongo_query_failure_is_program_error(monkeypatch):
    _patch_session(monkeypatch, {"users": _FakeCollection(error=RuntimeError("bad filter"))})
    with pytest.raises(ProgramError, match="MongoDB query failed: bad filter"):
        MongoQueryExecutor().execute("db.users.find()", MONGO)
    assert _FakeDocumentSession.instances[0].closed is True


def test_mongo_blocked_expression_is_program_error(monkeypatch):
    _patch_session(monkeypatch, {})
    with pytest.raises(ProgramError, match="MongoDB query failed"):
        MongoQueryExecutor().execute("__import__('os').system('id')", MONGO)


def test_mongo_timeout(monkeypatch):
    _patch_session(monkeypatch, {"users": _FakeCollection(error=ExecutionTimeout("operation exceeded time limit"))})
    with pytest.raises(ExecutionTimeoutError):
        MongoQueryExecutor().execute("db.users.find()", MONGO)


def test_mongo_connection_failure(monkeypatch):
    def refuse(*_args, **_kwargs):
        raise ConnectionFailed("server selection timeout")

    monkeypatch.setattr("dbexec.executors.direct.DocumentSession", refuse)
    with pytest.raises(DatabaseConnectionError, match="server selection timeout"):
        MongoQueryExecutor().execute("db.users.find()", MONGO)

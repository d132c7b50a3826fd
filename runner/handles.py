"""
Database capability handles injected into submitted programs.

A relational session exposes only ``query(statement, params=None)``; a
document session exposes ``db`` and ``collection(name)``, both yielding a
collection-scoped CRUD facade. These are the only routes to a database a
program gets.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import psycopg2
import psycopg2.extras
from pymongo import MongoClient
from pymongo.errors import ConfigurationError, ConnectionFailure

CONNECT_TIMEOUT_SECONDS = 10


class ConnectionFailed(Exception):
    """Raised when the target database cannot be reached."""


# ── relational ────────────────────────────────────────────────────────────


class RelationalHandle:
    __slots__ = ("_conn",)

    def __init__(self, conn):
        self._conn = conn

    def query(self, statement: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        # Parameters always travel separately through the driver.
        with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(statement, params)
            if cur.description is None:
                return []
            return [dict(row) for row in cur.fetchall()]


class RelationalSession:
    def __init__(self, connection: Dict[str, Any], connect_timeout: int = CONNECT_TIMEOUT_SECONDS):
        try:
            self._conn = psycopg2.connect(
                host=connection.get("host"),
                port=int(connection.get("port") or 5432),
                user=connection.get("user"),
                password=connection.get("password"),
                dbname=connection.get("database"),
                connect_timeout=connect_timeout,
            )
        except psycopg2.OperationalError as exc:
            raise ConnectionFailed(str(exc).strip()) from exc
        self._conn.autocommit = True
        self.handle = RelationalHandle(self._conn)

    def capabilities(self) -> Dict[str, Any]:
        return {"query": self.handle.query}

    def close(self) -> None:
        self._conn.close()


# ── document ──────────────────────────────────────────────────────────────


class CollectionHandle:
    """Collection-scoped facade; cursors are materialized into lists."""

    __slots__ = ("_collection",)

    def __init__(self, collection):
        self._collection = collection

    def find(self, filter: Optional[Dict[str, Any]] = None, projection=None, **options) -> List[Dict[str, Any]]:
        return list(self._collection.find(filter or {}, projection, **options))

    def find_one(self, filter: Optional[Dict[str, Any]] = None, projection=None, **options):
        return self._collection.find_one(filter or {}, projection, **options)

    def insert_one(self, document: Dict[str, Any]) -> Dict[str, Any]:
        res = self._collection.insert_one(document)
        return {"acknowledged": res.acknowledged, "inserted_id": res.inserted_id}

    def insert_many(self, documents: List[Dict[str, Any]], ordered: bool = True) -> Dict[str, Any]:
        res = self._collection.insert_many(documents, ordered=ordered)
        return {"acknowledged": res.acknowledged, "inserted_ids": list(res.inserted_ids)}

    def update_one(self, filter: Dict[str, Any], update: Dict[str, Any], upsert: bool = False) -> Dict[str, Any]:
        return _update_result(self._collection.update_one(filter, update, upsert=upsert))

    def update_many(self, filter: Dict[str, Any], update: Dict[str, Any], upsert: bool = False) -> Dict[str, Any]:
        return _update_result(self._collection.update_many(filter, update, upsert=upsert))

    def delete_one(self, filter: Dict[str, Any]) -> Dict[str, Any]:
        res = self._collection.delete_one(filter)
        return {"acknowledged": res.acknowledged, "deleted_count": res.deleted_count}

    def delete_many(self, filter: Dict[str, Any]) -> Dict[str, Any]:
        res = self._collection.delete_many(filter)
        return {"acknowledged": res.acknowledged, "deleted_count": res.deleted_count}

    def count_documents(self, filter: Optional[Dict[str, Any]] = None) -> int:
        return self._collection.count_documents(filter or {})

    def aggregate(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return list(self._collection.aggregate(pipeline))


def _update_result(res) -> Dict[str, Any]:
    return {
        "acknowledged": res.acknowledged,
        "matched_count": res.matched_count,
        "modified_count": res.modified_count,
        "upserted_id": res.upserted_id,
    }


class DatabaseHandle:
    """``db.orders`` / ``db["orders"]`` / ``db.collection("orders")``."""

    __slots__ = ("_database",)

    def __init__(self, database):
        self._database = database

    def collection(self, name: str) -> CollectionHandle:
        if not isinstance(name, str) or not name:
            raise ValueError("Collection name must be a non-empty string")
        return CollectionHandle(self._database[name])

    def __getattr__(self, name: str) -> CollectionHandle:
        if name.startswith("_"):
            raise AttributeError(name)
        return self.collection(name)

    def __getitem__(self, name: str) -> CollectionHandle:
        return self.collection(name)


class DocumentSession:
    def __init__(
        self,
        connection: Dict[str, Any],
        connect_timeout: int = CONNECT_TIMEOUT_SECONDS,
        socket_timeout: Optional[int] = None,
    ):
        timeout_ms = connect_timeout * 1000
        try:
            self._client = MongoClient(
                connection.get("uri"),
                connectTimeoutMS=timeout_ms,
                serverSelectionTimeoutMS=timeout_ms,
                socketTimeoutMS=socket_timeout * 1000 if socket_timeout else None,
            )
        except ConfigurationError as exc:
            raise ConnectionFailed(str(exc)) from exc
        try:
            self._client.admin.command("ping")
        except ConnectionFailure as exc:
            self._client.close()
            raise ConnectionFailed(str(exc)) from exc
        self.handle = DatabaseHandle(self._client[connection["database"]])

    def capabilities(self) -> Dict[str, Any]:
        return {"db": self.handle, "collection": self.handle.collection}

    def close(self) -> None:
        self._client.close()


def open_session(target_type: str, connection: Dict[str, Any]):
    if target_type == "RELATIONAL":
        return RelationalSession(connection)
    if target_type == "DOCUMENT":
        return DocumentSession(connection)
    raise ValueError(f"Unsupported target_type: {target_type}")

"""Persistence collaborator.

Three collections, each keyed by one field of the record:

- ``datasets`` by ``id``
- ``audits`` by ``timestamp``
- ``config`` by ``key``

``MemoryStore`` is the default for a session. ``SqlStore`` keeps the same
records as JSON payloads in a single SQLAlchemy table (SQLite by default).
Both return records in write order; rewriting a key moves it to the end.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, List, Mapping, Optional, Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, and_, create_engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from bi_core.errors import PersistenceFailure


logger = logging.getLogger(__name__)

COLLECTIONS: Dict[str, str] = {"datasets": "id", "audits": "timestamp", "config": "key"}


class KeyValueStore(Protocol):
    def put(self, collection: str, record: Mapping[str, Any]) -> None: ...

    def get_all(self, collection: str) -> List[Dict[str, Any]]: ...

    def delete(self, collection: str, key: str) -> None: ...

    def clear(self) -> None: ...


def record_key(collection: str, record: Mapping[str, Any]) -> str:
    if collection not in COLLECTIONS:
        raise PersistenceFailure(f"Unknown collection {collection!r}", {"collection": collection})
    key_field = COLLECTIONS[collection]
    key = record.get(key_field)
    if key in (None, ""):
        raise PersistenceFailure(f"Record has no {key_field!r}", {"collection": collection})
    return str(key)


def _encode(record: Mapping[str, Any]) -> str:
    try:
        return json.dumps(record, default=str)
    except (TypeError, ValueError) as exc:
        raise PersistenceFailure(f"Record is not serializable: {exc}") from exc


def _ordered(collection: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if collection == "audits":
        return sorted(records, key=lambda r: str(r.get("timestamp", "")), reverse=True)
    return records


class MemoryStore:
    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, str]] = {name: {} for name in COLLECTIONS}
        self._lock = threading.Lock()

    def put(self, collection: str, record: Mapping[str, Any]) -> None:
        key = record_key(collection, record)
        payload = _encode(record)
        with self._lock:
            # A rewrite moves the record to the end, like a fresh insert.
            self._data[collection].pop(key, None)
            self._data[collection][key] = payload

    def get_all(self, collection: str) -> List[Dict[str, Any]]:
        if collection not in COLLECTIONS:
            raise PersistenceFailure(f"Unknown collection {collection!r}", {"collection": collection})
        with self._lock:
            payloads = list(self._data[collection].values())
        return _ordered(collection, [json.loads(p) for p in payloads])

    def delete(self, collection: str, key: str) -> None:
        with self._lock:
            self._data.get(collection, {}).pop(str(key), None)

    def clear(self) -> None:
        with self._lock:
            for bucket in self._data.values():
                bucket.clear()


class SqlStore:
    def __init__(self, url: str = "sqlite:///./bi_dashboard.db") -> None:
        kwargs: Dict[str, Any] = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, pool_pre_ping=True, **kwargs)
        self.metadata = MetaData()
        self.records = Table(
            "bi_records",
            self.metadata,
            Column("seq", Integer, primary_key=True, autoincrement=True),
            Column("collection", String(32), nullable=False),
            Column("key", String(255), nullable=False),
            Column("payload", Text, nullable=False),
            UniqueConstraint("collection", "key"),
        )
        try:
            self.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Could not initialise store: {exc}") from exc

    def _match(self, collection: str, key: str):
        return and_(self.records.c.collection == collection, self.records.c.key == key)

    def put(self, collection: str, record: Mapping[str, Any]) -> None:
        key = record_key(collection, record)
        payload = _encode(record)
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(self.records).where(self._match(collection, key)))
                conn.execute(self.records.insert().values(collection=collection, key=key, payload=payload))
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Write to {collection} failed: {exc}", {"collection": collection}) from exc

    def get_all(self, collection: str) -> List[Dict[str, Any]]:
        if collection not in COLLECTIONS:
            raise PersistenceFailure(f"Unknown collection {collection!r}", {"collection": collection})
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    select(self.records.c.payload)
                    .where(self.records.c.collection == collection)
                    .order_by(self.records.c.seq)
                ).all()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Read from {collection} failed: {exc}", {"collection": collection}) from exc
        return _ordered(collection, [json.loads(r[0]) for r in rows])

    def delete(self, collection: str, key: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(self.records).where(self._match(collection, str(key))))
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Delete from {collection} failed: {exc}", {"collection": collection}) from exc

    def clear(self) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(self.records))
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Clear failed: {exc}") from exc


def open_store(database_url: Optional[str] = None) -> KeyValueStore:
    if database_url:
        logger.info("Using SQL persistence at %s", database_url)
        return SqlStore(database_url)
    return MemoryStore()

"""
Journal Storage Engine — durable keyed store
=============================================

Every collection (journal trades, alerts, setups) lives behind the same
contract: get / put / delete / list_all / list_by_index.

  KeyedStore        — abstract contract
  SqliteKeyedStore  — one SQLite table per collection, JSON payload + indexed columns
  MemoryKeyedStore  — dict-backed, for tests and throw-away sessions

Each put/delete is a single transaction, so a record is either fully written
or not written at all. Rows whose JSON payload cannot be decoded are skipped
by the listing calls and logged.

TradeRepository / SetupRepository wrap a store with typed records.
"""

from __future__ import annotations
import abc
import copy
import json
import os
import re
import sqlite3
import threading
from typing import Optional, List, Dict, Any, Sequence

from tradebook.journal.journal_models import TradeRecord, TradingSetup
from tradebook.utils.exceptions import CorruptRecordError, StoreError
from tradebook.utils.logger import get_logger

logger = get_logger(__name__)

JOURNAL_COLLECTION = "journal"
SETUPS_COLLECTION = "setups"
ALERTS_COLLECTION = "alerts"

JOURNAL_INDEXES = ("date", "symbol")
SETUP_INDEXES = ("is_active",)
ALERT_INDEXES = ("status",)

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _index_value(value: Any) -> Any:
    if isinstance(value, bool):
        return 1 if value else 0
    return value


class KeyedStore(abc.ABC):
    """Durable keyed store for one collection of JSON-serialisable dicts keyed by ``id``."""

    def __init__(self, collection: str, indexes: Sequence[str] = ()) -> None:
        for name in (collection, *indexes):
            if not _IDENT.match(name):
                raise ValueError(f"Invalid collection/index name: {name!r}")
        self.collection = collection
        self.indexes = tuple(indexes)

    @abc.abstractmethod
    def get(self, record_id: str) -> Optional[dict]:
        pass

    @abc.abstractmethod
    def put(self, record: dict) -> str:
        pass

    @abc.abstractmethod
    def delete(self, record_id: str) -> bool:
        pass

    @abc.abstractmethod
    def update_if(self, record: dict, index_name: str, expected: Any) -> bool:
        """
        Replace an existing record only while its ``index_name`` value still
        equals ``expected``. Returns False when the record is gone or has
        moved on; nothing is written in that case.
        """
        pass

    @abc.abstractmethod
    def list_all(self) -> List[dict]:
        pass

    @abc.abstractmethod
    def list_by_index(self, index_name: str, value: Any) -> List[dict]:
        pass

    def _check_index(self, index_name: str) -> None:
        if index_name not in self.indexes:
            raise StoreError(f"Unknown index {index_name!r} on collection {self.collection!r}")

    @staticmethod
    def _record_id(record: dict) -> str:
        record_id = record.get("id") if isinstance(record, dict) else None
        if not record_id:
            raise StoreError("Record has no id")
        return str(record_id)


class SqliteKeyedStore(KeyedStore):
    """
    SQLite-backed collection.
    Thread-safe: one connection per thread, WAL journal.
    """

    def __init__(self, db_path: str, collection: str, indexes: Sequence[str] = ()) -> None:
        super().__init__(collection, indexes)
        self._db_path = db_path
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._local = threading.local()
        self._init_db()
        logger.info("keyed_store_initialized", db_path=db_path, collection=collection)

    def _get_conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self._db_path, timeout=10)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=NORMAL")
        return self._local.conn

    def _init_db(self) -> None:
        columns = "".join(f", idx_{name}" for name in self.indexes)
        statements = [
            f"CREATE TABLE IF NOT EXISTS {self.collection} "
            f"(id TEXT PRIMARY KEY{columns}, data TEXT NOT NULL DEFAULT '{{}}')"
        ]
        statements += [
            f"CREATE INDEX IF NOT EXISTS ix_{self.collection}_{name} ON {self.collection}(idx_{name})"
            for name in self.indexes
        ]
        try:
            conn = self._get_conn()
            with conn:
                for sql in statements:
                    conn.execute(sql)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot initialise collection {self.collection!r}: {e}")

    def _decode(self, row: sqlite3.Row) -> Optional[dict]:
        try:
            data = json.loads(row["data"])
        except (TypeError, ValueError) as e:
            logger.warning("store_record_undecodable", collection=self.collection,
                           record_id=row["id"], error=str(e))
            return None
        if not isinstance(data, dict):
            logger.warning("store_record_not_object", collection=self.collection, record_id=row["id"])
            return None
        return data

    def get(self, record_id: str) -> Optional[dict]:
        try:
            row = self._get_conn().execute(
                f"SELECT id, data FROM {self.collection} WHERE id = ?", (record_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Read failed: {e}", record_id)
        return self._decode(row) if row else None

    def put(self, record: dict) -> str:
        record_id = self._record_id(record)
        try:
            payload = json.dumps(record, default=str)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Record is not serialisable: {e}", record_id)
        names = ["id", *(f"idx_{name}" for name in self.indexes), "data"]
        values = [record_id, *(_index_value(record.get(name)) for name in self.indexes), payload]
        placeholders = ", ".join("?" for _ in names)
        try:
            conn = self._get_conn()
            with conn:
                conn.execute(
                    f"INSERT OR REPLACE INTO {self.collection} ({', '.join(names)}) VALUES ({placeholders})",
                    values,
                )
        except sqlite3.Error as e:
            raise StoreError(f"Write failed: {e}", record_id)
        return record_id

    def update_if(self, record: dict, index_name: str, expected: Any) -> bool:
        self._check_index(index_name)
        record_id = self._record_id(record)
        try:
            payload = json.dumps(record, default=str)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Record is not serialisable: {e}", record_id)
        assignments = ", ".join([*(f"idx_{name} = ?" for name in self.indexes), "data = ?"])
        values = [*(_index_value(record.get(name)) for name in self.indexes), payload,
                  record_id, _index_value(expected)]
        try:
            conn = self._get_conn()
            with conn:
                cur = conn.execute(
                    f"UPDATE {self.collection} SET {assignments} WHERE id = ? AND idx_{index_name} = ?",
                    values,
                )
        except sqlite3.Error as e:
            raise StoreError(f"Write failed: {e}", record_id)
        return cur.rowcount > 0

    def delete(self, record_id: str) -> bool:
        try:
            conn = self._get_conn()
            with conn:
                cur = conn.execute(f"DELETE FROM {self.collection} WHERE id = ?", (record_id,))
        except sqlite3.Error as e:
            raise StoreError(f"Delete failed: {e}", record_id)
        return cur.rowcount > 0

    def list_all(self) -> List[dict]:
        try:
            rows = self._get_conn().execute(f"SELECT id, data FROM {self.collection}").fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"List failed: {e}")
        return [d for d in (self._decode(r) for r in rows) if d is not None]

    def list_by_index(self, index_name: str, value: Any) -> List[dict]:
        self._check_index(index_name)
        try:
            rows = self._get_conn().execute(
                f"SELECT id, data FROM {self.collection} WHERE idx_{index_name} = ?",
                (_index_value(value),),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Index query failed: {e}")
        return [d for d in (self._decode(r) for r in rows) if d is not None]

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None


class MemoryKeyedStore(KeyedStore):
    """In-process store. Records are deep-copied in and out."""

    def __init__(self, collection: str, indexes: Sequence[str] = ()) -> None:
        super().__init__(collection, indexes)
        self._records: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, record_id: str) -> Optional[dict]:
        with self._lock:
            record = self._records.get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def put(self, record: dict) -> str:
        record_id = self._record_id(record)
        with self._lock:
            self._records[record_id] = copy.deepcopy(record)
        return record_id

    def update_if(self, record: dict, index_name: str, expected: Any) -> bool:
        self._check_index(index_name)
        record_id = self._record_id(record)
        with self._lock:
            current = self._records.get(record_id)
            if current is None or _index_value(current.get(index_name)) != _index_value(expected):
                return False
            self._records[record_id] = copy.deepcopy(record)
        return True

    def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    def list_all(self) -> List[dict]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values()]

    def list_by_index(self, index_name: str, value: Any) -> List[dict]:
        self._check_index(index_name)
        wanted = _index_value(value)
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values()
                    if _index_value(r.get(index_name)) == wanted]


# ─── TYPED REPOSITORIES ────────────────────────────────────

class TradeRepository:
    """Journal trades on top of a keyed store. Corrupt rows never break a listing."""

    def __init__(self, store: KeyedStore) -> None:
        self._store = store

    def save(self, record: TradeRecord) -> TradeRecord:
        self._store.put(record.to_dict())
        logger.info("trade_saved", trade_id=record.id, symbol=record.symbol,
                    status=record.status.value if record.status else None)
        return record

    def get(self, trade_id: str) -> Optional[TradeRecord]:
        d = self._store.get(trade_id)
        if d is None:
            return None
        return TradeRecord.from_dict(d)

    def delete(self, trade_id: str) -> bool:
        deleted = self._store.delete(trade_id)
        if deleted:
            logger.info("trade_deleted", trade_id=trade_id)
        return deleted

    def list_all(self) -> List[TradeRecord]:
        """All readable trades, oldest first."""
        return sorted(self._parse(self._store.list_all()), key=lambda t: t.date)

    def list_by_symbol(self, symbol: str) -> List[TradeRecord]:
        if not symbol:
            return []
        rows = self._store.list_by_index("symbol", symbol.strip().upper())
        return sorted(self._parse(rows), key=lambda t: t.date)

    def latest(self, limit: int) -> List[TradeRecord]:
        return sorted(self.list_all(), key=lambda t: t.date, reverse=True)[:max(limit, 0)]

    def all_tags(self) -> List[str]:
        tags = set()
        for trade in self.list_all():
            tags.update(trade.tags)
        return sorted(tags)

    def _parse(self, rows: List[dict]) -> List[TradeRecord]:
        trades = []
        for d in rows:
            try:
                trades.append(TradeRecord.from_dict(d))
            except CorruptRecordError as e:
                logger.warning("trade_record_skipped", record_id=e.record_id, error=e.message)
        return trades


class SetupRepository:
    """Trading setups. At most one is active."""

    def __init__(self, store: KeyedStore) -> None:
        self._store = store

    def save(self, setup: TradingSetup) -> TradingSetup:
        # a failed write leaves the previously active setup untouched
        self._store.put(setup.to_dict())
        if setup.is_active:
            self._deactivate_others(setup.id)
        logger.info("setup_saved", setup_id=setup.id, name=setup.name, is_active=setup.is_active)
        return setup

    def get(self, setup_id: str) -> Optional[TradingSetup]:
        d = self._store.get(setup_id)
        return TradingSetup.from_dict(d) if d is not None else None

    def delete(self, setup_id: str) -> bool:
        return self._store.delete(setup_id)

    def list_all(self) -> List[TradingSetup]:
        return sorted(self._parse(self._store.list_all()), key=lambda s: s.name.lower())

    def active(self) -> Optional[TradingSetup]:
        setups = self._parse(self._store.list_by_index("is_active", True))
        return setups[0] if setups else None

    def activate(self, setup_id: str) -> Optional[TradingSetup]:
        setup = self.get(setup_id)
        if setup is None:
            return None
        setup.is_active = True
        return self.save(setup)

    def _deactivate_others(self, keep_id: str) -> None:
        for other in self._parse(self._store.list_by_index("is_active", True)):
            if other.id != keep_id:
                other.is_active = False
                self._store.put(other.to_dict())

    def _parse(self, rows: List[dict]) -> List[TradingSetup]:
        setups = []
        for d in rows:
            try:
                setups.append(TradingSetup.from_dict(d))
            except CorruptRecordError as e:
                logger.warning("setup_record_skipped", record_id=e.record_id, error=e.message)
        return setups

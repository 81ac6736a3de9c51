import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Optional

from sqlalchemy import create_engine, func, inspect, or_, select, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from smsrelay.config import Settings
from smsrelay.errors import StorageError
from smsrelay.models import Base, MessageRecord
from smsrelay.phone import normalize_phone
from smsrelay.schemas import Message

logger = logging.getLogger(__name__)


class MessageStore(ABC):
    """
    Idempotent record keeping for messages, keyed by message id.

    Both backends share this contract:
    - put() replaces a record with the same id in place, never duplicates
    - scan_all() is newest first, scan_by_party() oldest first
    - equal timestamps are ordered by insertion order
    - backing-medium failures raise StorageError
    """

    mode: str = ""

    @property
    @abstractmethod
    def location(self) -> str:
        """Human readable description of where records are kept."""

    @abstractmethod
    def put(self, message: Message) -> None:
        """Insert or replace the record with the same id."""

    @abstractmethod
    def get(self, message_id: str) -> Optional[Message]:
        """Return the record with this id, or None."""

    @abstractmethod
    def scan_all(self, limit: Optional[int] = None) -> list[Message]:
        """Return records newest first, at most limit of them."""

    @abstractmethod
    def scan_by_party(self, phone: str) -> list[Message]:
        """Return records sent from or to phone, oldest first."""

    @abstractmethod
    def count(self) -> int:
        """Number of records currently held."""

    def ping(self) -> bool:
        """Whether the backing medium is usable."""
        return True

    def close(self) -> None:
        """Release backing resources."""


# =============================================================================
# In-memory Backend
# =============================================================================

class MemoryMessageStore(MessageStore):
    """
    Bounded in-memory store.

    Records live in an insertion-ordered map; once capacity is reached,
    each new id evicts the oldest inserted record. Replacing an existing id
    keeps its position and never evicts.
    """

    mode = "memory"

    def __init__(self, capacity: int = 2000):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._records: "OrderedDict[str, Message]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def location(self) -> str:
        return f"memory (capacity {self.capacity})"

    def put(self, message: Message) -> None:
        with self._lock:
            is_new = message.id not in self._records
            self._records[message.id] = message
            if is_new:
                while len(self._records) > self.capacity:
                    evicted_id, _ = self._records.popitem(last=False)
                    logger.debug(f"Evicted oldest message: {evicted_id}")
        logger.debug(f"Stored message {message.id} ({'new' if is_new else 'replaced'})")

    def get(self, message_id: str) -> Optional[Message]:
        with self._lock:
            return self._records.get(message_id)

    def _snapshot(self) -> list[Message]:
        with self._lock:
            return list(self._records.values())

    def scan_all(self, limit: Optional[int] = None) -> list[Message]:
        # sorted() is stable, so equal timestamps stay in insertion order
        ordered = sorted(self._snapshot(), key=lambda m: m.at)
        ordered.reverse()
        if limit is not None:
            return ordered[:limit]
        return ordered

    def scan_by_party(self, phone: str) -> list[Message]:
        party = normalize_phone(phone)
        if not party:
            return []
        matches = [
            m for m in self._snapshot()
            if normalize_phone(m.from_msisdn) == party or normalize_phone(m.to) == party
        ]
        return sorted(matches, key=lambda m: m.at)

    def count(self) -> int:
        with self._lock:
            return len(self._records)


# =============================================================================
# SQLite Backend
# =============================================================================

def _row_values(message: Message) -> dict:
    return {
        "id": message.id,
        "from_msisdn": message.from_msisdn,
        "to_msisdn": message.to,
        "body": message.body,
        "direction": message.direction.value,
        "at": message.at,
        "media_urls": json.dumps(message.media_urls),
    }


def _to_message(record: MessageRecord) -> Message:
    return Message(
        id=record.id,
        from_msisdn=record.from_msisdn,
        to=record.to_msisdn,
        body=record.body,
        direction=record.direction,
        at=record.at,
        media_urls=json.loads(record.media_urls or "[]"),
    )


class SqlMessageStore(MessageStore):
    """
    Disk-backed store on SQLite through SQLAlchemy.

    Each instance owns its engine. Writes go through a single INSERT ... ON
    CONFLICT DO UPDATE statement in its own transaction, serialized by a
    lock, so a record is either fully committed or not at all.
    """

    mode = "sqlite"

    def __init__(self, database_url: str):
        self.database_url = database_url
        url = make_url(database_url)
        self._database = url.database or ":memory:"

        # check_same_thread=False is required for SQLite to work with FastAPI's threadpool
        engine_kwargs = {"connect_args": {"check_same_thread": False}, "echo": False}
        if self._database == ":memory:":
            # A private in-memory database only exists on a single connection
            engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **engine_kwargs)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self._write_lock = threading.Lock()

        logger.debug(f"Initializing database with URL: {database_url}")
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise StorageError(f"Failed to initialize database: {e}") from e
        logger.info(f"Database initialized at {self._database}")

    @property
    def location(self) -> str:
        return self._database

    def put(self, message: Message) -> None:
        table = MessageRecord.__table__
        values = _row_values(message)
        next_seq = select(func.coalesce(func.max(table.c.seq), 0) + 1).scalar_subquery()

        stmt = sqlite_insert(table).values(seq=next_seq, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={name: stmt.excluded[name] for name in values if name != "id"},
        )

        with self._write_lock:
            try:
                with self.engine.begin() as conn:
                    conn.execute(stmt)
            except SQLAlchemyError as e:
                logger.error(f"Failed to store message {message.id}: {e}")
                raise StorageError(f"Failed to store message {message.id}") from e
        logger.debug(f"Stored message {message.id}")

    def get(self, message_id: str) -> Optional[Message]:
        try:
            with self._session_factory() as db:
                record = db.get(MessageRecord, message_id)
                return _to_message(record) if record is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read message {message_id}") from e

    def scan_all(self, limit: Optional[int] = None) -> list[Message]:
        try:
            with self._session_factory() as db:
                query = db.query(MessageRecord).order_by(
                    MessageRecord.at.desc(), MessageRecord.seq.desc()
                )
                if limit is not None:
                    query = query.limit(limit)
                return [_to_message(r) for r in query.all()]
        except SQLAlchemyError as e:
            logger.error(f"Failed to scan messages: {e}")
            raise StorageError("Failed to read messages") from e

    def scan_by_party(self, phone: str) -> list[Message]:
        party = normalize_phone(phone)
        if not party:
            return []
        try:
            with self._session_factory() as db:
                records = (
                    db.query(MessageRecord)
                    .filter(or_(MessageRecord.from_msisdn == party, MessageRecord.to_msisdn == party))
                    .order_by(MessageRecord.at.asc(), MessageRecord.seq.asc())
                    .all()
                )
                return [_to_message(r) for r in records]
        except SQLAlchemyError as e:
            logger.error(f"Failed to scan thread: {e}")
            raise StorageError("Failed to read messages") from e

    def count(self) -> int:
        try:
            with self._session_factory() as db:
                return db.query(func.count(MessageRecord.id)).scalar() or 0
        except SQLAlchemyError as e:
            raise StorageError("Failed to count messages") from e

    def ping(self) -> bool:
        """
        Check if the database is reachable and schema is applied.
        """
        logger.debug("Checking database health...")
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            if not inspect(self.engine).has_table(MessageRecord.__tablename__):
                logger.error("Database schema not applied: 'messages' table not found")
                return False
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        self.engine.dispose()


# =============================================================================
# Backend Selection
# =============================================================================

def resolve_sqlite_url(database_url: str) -> str:
    """
    Make sure the directory of a file-backed SQLite URL exists.

    When it cannot be created or written to, fall back to a file with the
    same name in the system temp directory.
    """
    url = make_url(database_url)
    path = url.database
    if not path or path == ":memory:":
        return database_url

    directory = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(directory, exist_ok=True)
        if os.access(directory, os.W_OK):
            return database_url
        reason = "directory is not writable"
    except OSError as e:
        reason = str(e)

    fallback = os.path.join(tempfile.gettempdir(), os.path.basename(path))
    logger.warning(f"Cannot use database directory {directory} ({reason}), falling back to {fallback}")
    return url.set(database=fallback).render_as_string(hide_password=False)


def create_store(settings: Settings) -> MessageStore:
    """Build the message store selected by STORAGE_MODE."""
    if settings.STORAGE_MODE == "sqlite":
        store = SqlMessageStore(resolve_sqlite_url(settings.DATABASE_URL))
    else:
        store = MemoryMessageStore(capacity=settings.MEMORY_CAPACITY)
    logger.info(f"Message store ready: mode={store.mode}, location={store.location}")
    return store

"""
PaperDB SQL Log Store — durable single-node logs on SQLAlchemy.

Provides:
- LogStoreBase: declarative base for the log-store tables
- LogEntryRecord: one row per log entry
- SqlLogBackend: backend storing every log in one database (sqlite by default)

Entries are kept in the wire shape (JSON columns); rows are never updated
or deleted. The backend does not replicate: ``peer`` and ``replicated``
are never emitted by its handles.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from paperdb.db.logstore import AccessCallback, LogHandleBase
from paperdb.documents.models import LOGSTORE_TYPE, IdentityDescriptor, LogEntry
from paperdb.engine.errors import PaperDBStoreError

logger = logging.getLogger("paperdb.db.sql")


class LogStoreBase(DeclarativeBase):
    """SQLAlchemy declarative base for log-store tables."""
    pass


class LogEntryRecord(LogStoreBase):
    __tablename__ = "log_entries"
    __table_args__ = (UniqueConstraint("address", "hash", name="uq_log_entries_address_hash"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String(255), nullable=False, index=True)
    hash = Column(String(64), nullable=False)
    clock = Column(Integer, nullable=False, default=0)
    payload = Column(JSON, nullable=True)
    identity = Column(JSON, nullable=True)
    signature = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def to_entry(self) -> LogEntry:
        return LogEntry(
            hash=self.hash,
            payload=self.payload,
            identity=IdentityDescriptor.model_validate(self.identity) if self.identity else None,
            signature=self.signature,
            clock=self.clock,
        )


class SqlLogHandle(LogHandleBase):
    """A handle over the rows of one address."""

    def __init__(
        self,
        backend: "SqlLogBackend",
        address: str,
        access_callback: Optional[AccessCallback] = None,
        fail_open: bool = True,
    ):
        super().__init__(address, backend.identity, access_callback, fail_open)
        self.backend = backend

    def _entries(self) -> List[LogEntry]:
        with self.backend.session() as session:
            rows = session.scalars(
                select(LogEntryRecord)
                .where(LogEntryRecord.address == self.address)
                .order_by(LogEntryRecord.clock, LogEntryRecord.hash)
            ).all()
            return [row.to_entry() for row in rows]

    def _lookup(self, entry_hash: str) -> Optional[LogEntry]:
        with self.backend.session() as session:
            row = session.scalars(
                select(LogEntryRecord).where(
                    LogEntryRecord.address == self.address,
                    LogEntryRecord.hash == entry_hash,
                )
            ).first()
            return row.to_entry() if row else None

    def _store(self, entry: LogEntry) -> None:
        with self.backend.session() as session:
            session.add(LogEntryRecord(
                address=self.address,
                hash=entry.hash,
                clock=entry.clock,
                payload=entry.payload,
                identity=entry.identity.to_wire() if entry.identity else None,
                signature=entry.signature,
            ))
            session.commit()

    async def close(self) -> None:
        self.backend._forget(self)
        await super().close()


class SqlLogBackend:
    """
    Log-store backend on a SQLAlchemy engine.

    Usage:
        backend = SqlLogBackend(identity, "sqlite:///.paperdb/logstore.db")
        handle = await backend.open(to_log_address(collection_id), access_callback=gate)
    """

    def __init__(self, identity: Any, url: str = "sqlite://", echo: bool = False):
        self.identity = identity
        self.url = url
        self.engine = create_engine(url, echo=echo)
        LogStoreBase.metadata.create_all(self.engine)
        self._session_factory = sessionmaker(bind=self.engine)
        self._handles: List[SqlLogHandle] = []
        self.open_count = 0

    def session(self) -> Session:
        return self._session_factory()

    def has_log(self, address: str) -> bool:
        with self.session() as session:
            return session.scalars(
                select(LogEntryRecord.id).where(LogEntryRecord.address == address).limit(1)
            ).first() is not None

    async def open(
        self,
        address: str,
        *,
        create: bool = True,
        type: str = LOGSTORE_TYPE,
        access_callback: Optional[AccessCallback] = None,
        fail_open: bool = True,
    ) -> SqlLogHandle:
        if type != LOGSTORE_TYPE:
            raise PaperDBStoreError(f"Unsupported log store type '{type}'", object_ref=address)
        if not create and not self.has_log(address):
            raise PaperDBStoreError(f"Log store {address} does not exist", object_ref=address)

        handle = SqlLogHandle(self, address, access_callback, fail_open)
        self._handles.append(handle)
        self.open_count += 1
        logger.info(f"Opened log store {address} on {self.engine.url}")
        return handle

    def _forget(self, handle: SqlLogHandle) -> None:
        if handle in self._handles:
            self._handles.remove(handle)

    async def close(self) -> None:
        for handle in list(self._handles):
            await handle.close()
        self.engine.dispose()
        logger.debug(f"Disposed engine {self.engine.url}")

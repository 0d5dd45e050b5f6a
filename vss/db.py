"""
Storage backend abstraction with SQL and in-memory implementations.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Protocol

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    LargeBinary,
    String,
    and_,
    create_engine,
    delete,
    or_,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from vss.kv import KeyValue

logger = logging.getLogger(__name__)

# Versions at or above u32::MAX may be rewritten with the same version.
MAX_STRICT_VERSION = 4294967295


class BackendError(Exception):
    """Raised when the storage layer fails to complete an operation."""


class BackendType(str, Enum):
    POSTGRES = "postgres"
    SQLITE = "sqlite"
    MEMORY = "memory"


@dataclass
class VssItem:
    store_id: str
    key: str
    value: Optional[bytes]
    version: int
    deleted: bool = False
    created_date: Optional[datetime] = None
    updated_date: Optional[datetime] = None

    @classmethod
    def from_kv(cls, store_id: str, kv: KeyValue) -> "VssItem":
        return cls(store_id=store_id, key=kv.key, value=kv.value, version=kv.version)

    def into_kv(self) -> Optional[KeyValue]:
        """Return the wire model, or None for tombstones."""
        if self.value is None or self.deleted:
            return None
        return KeyValue(key=self.key, value=self.value, version=self.version)


class VssBackend(Protocol):
    """Interface every storage engine implements."""

    def backend_type(self) -> BackendType:
        ...

    def get_item(self, store_id: str, key: str) -> Optional[VssItem]:
        ...

    def put_item(self, store_id: str, key: str, value: bytes, version: int) -> None:
        """Version-gated write of a single record."""
        ...

    def put_items(self, items: list[VssItem]) -> None:
        """Write items that may span several stores in one transaction."""
        ...

    def put_items_in_store(self, store_id: str, items: list[KeyValue]) -> None:
        """Write items for a single store in one transaction."""
        ...

    def delete_item(self, store_id: str, key: str, version: int) -> None:
        ...

    def list_key_versions(
        self, store_id: str, prefix: Optional[str] = None
    ) -> list[tuple[str, int]]:
        ...

    def clear_database(self) -> None:
        """Drop every record. Never expose this through the API."""
        ...


def version_accepted(new_version: int, existing_version: Optional[int]) -> bool:
    """Mirror of the SQL upsert gate for a single comparison."""
    if existing_version is None:
        return True
    if new_version >= MAX_STRICT_VERSION:
        return new_version >= existing_version
    return new_version > existing_version


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _like_prefix(prefix: str) -> str:
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}%"


class InMemoryVssBackend:
    """Dictionary-backed store for development and tests."""

    def __init__(self, enforce_version_order: bool = True):
        self.enforce_version_order = enforce_version_order
        self.items: Dict[tuple[str, str], VssItem] = {}
        self._lock = threading.Lock()

    def backend_type(self) -> BackendType:
        return BackendType.MEMORY

    def get_item(self, store_id: str, key: str) -> Optional[VssItem]:
        with self._lock:
            item = self.items.get((store_id, key))
            return replace(item) if item else None

    def _stage(
        self,
        staged: Dict[tuple[str, str], VssItem],
        item: VssItem,
        now: datetime,
    ) -> None:
        identity = (item.store_id, item.key)
        existing = staged.get(identity) or self.items.get(identity)
        if (
            existing
            and self.enforce_version_order
            and not version_accepted(item.version, existing.version)
        ):
            return
        staged[identity] = VssItem(
            store_id=item.store_id,
            key=item.key,
            value=item.value,
            version=item.version,
            deleted=item.deleted,
            created_date=existing.created_date if existing else now,
            updated_date=now,
        )

    def put_item(self, store_id: str, key: str, value: bytes, version: int) -> None:
        item = VssItem(store_id=store_id, key=key, value=value, version=version)
        with self._lock:
            staged: Dict[tuple[str, str], VssItem] = {}
            self._stage(staged, item, _utcnow())
            self.items.update(staged)

    def put_items(self, items: list[VssItem]) -> None:
        now = _utcnow()
        with self._lock:
            staged: Dict[tuple[str, str], VssItem] = {}
            for item in items:
                value = item.value if item.value is not None else b""
                self._stage(staged, replace(item, value=value, deleted=False), now)
            self.items.update(staged)

    def put_items_in_store(self, store_id: str, items: list[KeyValue]) -> None:
        self.put_items([VssItem.from_kv(store_id, kv) for kv in items])

    def delete_item(self, store_id: str, key: str, version: int) -> None:
        tombstone = VssItem(
            store_id=store_id, key=key, value=None, version=version, deleted=True
        )
        with self._lock:
            staged: Dict[tuple[str, str], VssItem] = {}
            self._stage(staged, tombstone, _utcnow())
            self.items.update(staged)

    def list_key_versions(
        self, store_id: str, prefix: Optional[str] = None
    ) -> list[tuple[str, int]]:
        lowered = prefix.lower() if prefix is not None else None
        with self._lock:
            results = [
                (item.key, item.version)
                for (item_store, _), item in self.items.items()
                if item_store == store_id
                and not item.deleted
                and (lowered is None or item.key.lower().startswith(lowered))
            ]
        return sorted(results)

    def clear_database(self) -> None:
        with self._lock:
            self.items.clear()


Base = declarative_base()


class VssItemRow(Base):
    __tablename__ = "vss_db"

    store_id = Column(String, primary_key=True)
    key = Column(String, primary_key=True)
    value = Column(LargeBinary, nullable=True)
    version = Column(BigInteger, nullable=False)
    deleted = Column(Boolean, nullable=False, default=False)
    created_date = Column(DateTime(timezone=True), nullable=False)
    updated_date = Column(DateTime(timezone=True), nullable=False)


_DIALECT_INSERTS = {
    "postgresql": (postgresql.insert, BackendType.POSTGRES),
    "sqlite": (sqlite.insert, BackendType.SQLITE),
}


class SqlVssBackend:
    """
    SQLAlchemy-backed implementation. Accepts Postgres URLs in production and
    SQLite URLs for tests or single-node deployments.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 10,
        max_overflow: int = 10,
        enforce_version_order: bool = True,
    ):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlVssBackend")
        url = make_url(database_url)
        dialect = url.get_backend_name()
        if dialect not in _DIALECT_INSERTS:
            raise ValueError(f"Unsupported database dialect: {dialect}")
        self._insert, self._backend_type = _DIALECT_INSERTS[dialect]
        self.enforce_version_order = enforce_version_order

        engine_kwargs = {"future": True, "pool_pre_ping": True}
        if dialect != "sqlite":
            engine_kwargs.update(
                pool_size=pool_size, max_overflow=max_overflow, pool_recycle=1800
            )
        self.engine = create_engine(url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def backend_type(self) -> BackendType:
        return self._backend_type

    def _to_item(self, row: VssItemRow) -> VssItem:
        return VssItem(
            store_id=row.store_id,
            key=row.key,
            value=row.value,
            version=row.version,
            deleted=row.deleted,
            created_date=row.created_date,
            updated_date=row.updated_date,
        )

    def _upsert(
        self,
        store_id: str,
        key: str,
        value: Optional[bytes],
        version: int,
        *,
        deleted: bool = False,
    ):
        now = _utcnow()
        stmt = self._insert(VssItemRow).values(
            store_id=store_id,
            key=key,
            value=value,
            version=version,
            deleted=deleted,
            created_date=now,
            updated_date=now,
        )
        excluded = stmt.excluded
        where = None
        if self.enforce_version_order:
            where = or_(
                excluded.version > VssItemRow.version,
                and_(
                    excluded.version >= MAX_STRICT_VERSION,
                    excluded.version >= VssItemRow.version,
                ),
            )
        return stmt.on_conflict_do_update(
            index_elements=[VssItemRow.store_id, VssItemRow.key],
            set_={
                "value": excluded.value,
                "version": excluded.version,
                "deleted": excluded.deleted,
                "updated_date": excluded.updated_date,
            },
            where=where,
        )

    def get_item(self, store_id: str, key: str) -> Optional[VssItem]:
        try:
            with self.Session() as session:
                row = session.get(VssItemRow, (store_id, key))
                return self._to_item(row) if row else None
        except SQLAlchemyError as exc:
            raise BackendError(f"failed to read {key!r}: {exc}") from exc

    def put_item(self, store_id: str, key: str, value: bytes, version: int) -> None:
        try:
            with self.Session.begin() as session:
                session.execute(self._upsert(store_id, key, value, version))
        except SQLAlchemyError as exc:
            raise BackendError(f"failed to write {key!r}: {exc}") from exc

    def put_items(self, items: list[VssItem]) -> None:
        try:
            with self.Session.begin() as session:
                for item in items:
                    value = item.value if item.value is not None else b""
                    session.execute(
                        self._upsert(item.store_id, item.key, value, item.version)
                    )
        except SQLAlchemyError as exc:
            logger.error("Batch write of %d items rolled back: %s", len(items), exc)
            raise BackendError(f"failed to write items: {exc}") from exc

    def put_items_in_store(self, store_id: str, items: list[KeyValue]) -> None:
        try:
            with self.Session.begin() as session:
                for kv in items:
                    session.execute(
                        self._upsert(store_id, kv.key, kv.value, kv.version)
                    )
        except SQLAlchemyError as exc:
            logger.error(
                "Batch write of %d items to %s rolled back: %s",
                len(items),
                store_id,
                exc,
            )
            raise BackendError(f"failed to write items: {exc}") from exc

    def delete_item(self, store_id: str, key: str, version: int) -> None:
        try:
            with self.Session.begin() as session:
                session.execute(
                    self._upsert(store_id, key, None, version, deleted=True)
                )
        except SQLAlchemyError as exc:
            raise BackendError(f"failed to delete {key!r}: {exc}") from exc

    def list_key_versions(
        self, store_id: str, prefix: Optional[str] = None
    ) -> list[tuple[str, int]]:
        stmt = (
            select(VssItemRow.key, VssItemRow.version)
            .where(VssItemRow.store_id == store_id)
            .where(VssItemRow.deleted.is_(False))
            .order_by(VssItemRow.key)
        )
        if prefix is not None:
            stmt = stmt.where(VssItemRow.key.ilike(_like_prefix(prefix), escape="\\"))
        try:
            with self.Session() as session:
                return [(key, version) for key, version in session.execute(stmt)]
        except SQLAlchemyError as exc:
            raise BackendError(f"failed to list keys: {exc}") from exc

    def clear_database(self) -> None:
        try:
            with self.Session.begin() as session:
                session.execute(delete(VssItemRow))
        except SQLAlchemyError as exc:
            raise BackendError(f"failed to clear database: {exc}") from exc

"""
TIER SIGNAL — SQL Signal Store
SQLAlchemy-backed store. The primary key on `key` makes the database enforce
first-writer-wins; summary updates are a conditional UPDATE on absent fields.
"""
import asyncio
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    BigInteger, Column, DateTime, Index, JSON, String, Text, delete, select, update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from tier_signal.core.errors import StoreConflictError
from tier_signal.data.models import Timeframe
from tier_signal.store.base import PutResult, Record, SignalStore
from tier_signal.store.models import record_from_dict, record_to_dict
from tier_signal.utils.logger import get_logger

logger = get_logger("sql_store")

Base = declarative_base()


class RecordRow(Base):
    """Persisted signal or rebalance record."""
    __tablename__ = "signal_records"

    key = Column(String(160), primary_key=True)
    kind = Column(String(16), nullable=False)
    record_type = Column(String(96), nullable=False)
    timeframe = Column(String(8), nullable=False)
    bucket = Column(BigInteger, nullable=False)
    asset = Column(String(32), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    summary_text = Column(Text, nullable=True)
    summary_image_ref = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)

    __table_args__ = (
        Index("idx_records_type_tf_bucket", "record_type", "timeframe", "bucket"),
    )


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def _row_to_record(row: RecordRow) -> Record:
    data = dict(row.payload)
    if row.kind == "signal":
        data["summary_text"] = row.summary_text
        data["summary_image_ref"] = row.summary_image_ref
    return record_from_dict(data)


class SqlSignalStore(SignalStore):

    def __init__(self, db_url: str, echo: bool = False, timeout_seconds: float = 5.0):
        super().__init__(timeout_seconds=timeout_seconds)
        engine_kwargs = {"echo": echo}
        if ":memory:" in db_url:
            # One shared connection, or every session would see its own empty database
            engine_kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        self._engine = create_async_engine(db_url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        self._ready = False
        # SQLite takes one writer at a time; in-memory URLs also share a connection
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create tables if they do not exist."""
        if self._ready:
            return
        async with self._write_lock:
            if self._ready:
                return
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._ready = True
        logger.info("sql_store_initialized", url=str(self._engine.url))

    async def close(self) -> None:
        await self._engine.dispose()

    async def _insert(self, record: Record) -> None:
        data = record_to_dict(record)
        summary_text = data.pop("summary_text", None)
        summary_image_ref = data.pop("summary_image_ref", None)
        row = RecordRow(
            key=record.key,
            kind=record.kind,
            record_type=record.record_type,
            timeframe=record.timeframe.value,
            bucket=record.bucket,
            asset=record.asset,
            payload=data,
            summary_text=summary_text,
            summary_image_ref=summary_image_ref,
            created_at=_naive_utc(record.created_at),
        )
        async with self._write_lock, self._session_factory() as session:
            try:
                session.add(row)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise StoreConflictError(record.key) from e

    async def _put_if_absent(self, record: Record) -> PutResult:
        await self.initialize()
        try:
            await self._insert(record)
        except StoreConflictError:
            logger.debug("put_if_absent_lost", key=record.key)
            return PutResult(committed=False, record=await self._get(record.key))
        logger.debug("put_if_absent_committed", key=record.key)
        return PutResult(committed=True, record=record)

    async def _get(self, key: str) -> Optional[Record]:
        await self.initialize()
        async with self._session_factory() as session:
            row = await session.get(RecordRow, key)
            return _row_to_record(row) if row is not None else None

    async def _get_latest(self, record_type: str, timeframe: Timeframe, count: int) -> List[Record]:
        await self.initialize()
        stmt = (
            select(RecordRow)
            .where(RecordRow.record_type == record_type, RecordRow.timeframe == timeframe.value)
            .order_by(RecordRow.bucket.desc())
            .limit(count)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_record(row) for row in rows]

    async def _update_summary(self, key: str, summary_text: Optional[str],
                              summary_image_ref: Optional[str]) -> PutResult:
        await self.initialize()
        stmt = (
            update(RecordRow)
            .where(
                RecordRow.key == key,
                RecordRow.kind == "signal",
                RecordRow.summary_text.is_(None),
                RecordRow.summary_image_ref.is_(None),
            )
            .values(summary_text=summary_text, summary_image_ref=summary_image_ref)
        )
        async with self._write_lock, self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            committed = result.rowcount == 1
        return PutResult(committed=committed, record=await self._get(key))

    async def _prune(self, older_than: datetime) -> int:
        await self.initialize()
        stmt = delete(RecordRow).where(RecordRow.created_at < _naive_utc(older_than))
        async with self._write_lock, self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

"""SQLAlchemy-backed key/value store and action log."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from autofarm.core.storage import KeyValueStore


class Base(DeclarativeBase):
    pass


class KeyValueRecord(Base):
    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, default="null")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


class ActionLogRecord(Base):
    __tablename__ = "action_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    village_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(50))
    detail: Mapped[str] = mapped_column(Text, default="")
    success: Mapped[bool] = mapped_column(Boolean, default=True)


class Database(KeyValueStore):
    """Async SQLite database implementing the key/value store."""

    def __init__(self, db_path: Path) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession)

    async def init(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def get(self, key: str, default: Any = None) -> Any:
        async with self.session_factory() as session:
            record = await session.get(KeyValueRecord, key)
            if record is None:
                return default
            return json.loads(record.value)

    async def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value, separators=(",", ":"), sort_keys=True)
        async with self.session_factory() as session, session.begin():
            record = await session.get(KeyValueRecord, key)
            if record is None:
                session.add(KeyValueRecord(key=key, value=encoded))
            else:
                record.value = encoded

    async def delete(self, key: str) -> None:
        async with self.session_factory() as session, session.begin():
            await session.execute(delete(KeyValueRecord).where(KeyValueRecord.key == key))

    async def log_action(
        self, action: str, detail: str = "", village_id: int | None = None, success: bool = True
    ) -> None:
        async with self.session_factory() as session, session.begin():
            session.add(
                ActionLogRecord(
                    action=action, detail=detail, village_id=village_id, success=success
                )
            )

    async def recent_actions(self, limit: int = 50) -> list[ActionLogRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ActionLogRecord).order_by(ActionLogRecord.id.desc()).limit(limit)
            )
            return list(result.scalars())

    async def close(self) -> None:
        await self.engine.dispose()

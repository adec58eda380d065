"""Async engine, session factory and transaction helpers."""

import enum
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import Enum
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from koperasi.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request, committed on success."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block of writes as one all-or-nothing step.

    Opens a SAVEPOINT on the session's transaction. If the block raises, every
    write made inside it (business state, cash balances, journals) is rolled
    back and the exception propagates to the caller.
    """
    async with db.begin_nested():
        yield db


def value_enum(enum_cls: type[enum.Enum]) -> Enum:
    """Column type storing a Python enum by its ``.value``."""
    return Enum(enum_cls, values_callable=lambda members: [m.value for m in members])

"""Shared fixtures: a mocked AsyncSession and query-result builder."""

from unittest.mock import AsyncMock, MagicMock

import pytest


def _make_result(*, one=None, many=None, rows=None, scalar=None, rowcount=0):
    result = MagicMock()
    result.scalar_one_or_none.return_value = one
    result.scalars.return_value.all.return_value = list(many or [])
    result.all.return_value = list(rows or [])
    result.scalar.return_value = scalar
    result.rowcount = rowcount
    return result


@pytest.fixture
def make_result():
    return _make_result


@pytest.fixture
def db():
    """AsyncSession stand-in. ``begin_nested()`` works as an async context manager."""
    session = AsyncMock()
    session.add = MagicMock()

    nested = MagicMock()
    nested.__aenter__ = AsyncMock(return_value=session)
    nested.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=nested)
    session.nested = nested
    return session

"""Shared fixtures for the fan-out test suite."""

from __future__ import annotations

import os

# Settings are read at import time by fanout.main; seed the required values first.
os.environ.setdefault("FANOUT_ALLOWED_ORIGINS", "http://localhost:3000")
os.environ.setdefault("FANOUT_TASK_SECRET", "test-task-secret")
os.environ.pop("FANOUT_PG_DSN", None)
os.environ.pop("DATABASE_URL", None)
os.environ.pop("FIREBASE_PROJECT_ID", None)

from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402

from tests.fakes import FakeUserDirectory  # noqa: E402


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def directory() -> FakeUserDirectory:
  return FakeUserDirectory()


@pytest.fixture
def mock_db_session():
  session = AsyncMock()
  session.add = MagicMock()
  session.add_all = MagicMock()
  result = MagicMock()
  result.scalar_one_or_none.return_value = None
  session.execute.return_value = result
  return session


@pytest.fixture
def mock_session_factory(mock_db_session):
  """async_sessionmaker stand-in yielding the shared mock session."""
  context = MagicMock()
  context.__aenter__ = AsyncMock(return_value=mock_db_session)
  context.__aexit__ = AsyncMock(return_value=False)
  return MagicMock(return_value=context)

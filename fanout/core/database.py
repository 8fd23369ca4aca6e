from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from fanout.config import get_database_settings

_ASYNC_SCHEMES = {"postgresql://": "postgresql+asyncpg://", "postgres://": "postgresql+asyncpg://"}


class Base(DeclarativeBase):
  pass


class DatabaseNotConfiguredError(RuntimeError):
  """Raised when a SQL-backed component runs without FANOUT_PG_DSN."""

  def __init__(self) -> None:
    super().__init__("Database connection is not configured (FANOUT_PG_DSN is missing).")


engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


def to_async_url(dsn: str | None) -> str | None:
  """Force the asyncpg driver for plain Postgres DSNs."""
  if not dsn:
    return None
  for prefix, replacement in _ASYNC_SCHEMES.items():
    if dsn.startswith(prefix):
      return replacement + dsn[len(prefix) :]
  return dsn


def get_db_engine() -> AsyncEngine | None:
  global engine
  if engine is not None:
    return engine

  settings = get_database_settings()
  database_url = to_async_url(settings.pg_dsn)
  if database_url is None:
    return None

  # Fan-out bursts open many short sessions; pre-ping drops connections the pooler closed.
  connect_args = {"timeout": settings.pg_connect_timeout} if database_url.startswith("postgresql+asyncpg://") else {}
  engine = create_async_engine(database_url, echo=settings.debug, pool_pre_ping=True, connect_args=connect_args)
  return engine


def get_session_factory() -> async_sessionmaker[AsyncSession] | None:
  global SessionLocal
  if SessionLocal is None:
    db_engine = get_db_engine()
    if db_engine:
      SessionLocal = async_sessionmaker(bind=db_engine, expire_on_commit=False, class_=AsyncSession)
  return SessionLocal


def require_session_factory(override: async_sessionmaker[AsyncSession] | None = None) -> async_sessionmaker[AsyncSession]:
  """Return the injected factory, else the process-wide one, else raise."""
  session_factory = override or get_session_factory()
  if session_factory is None:
    raise DatabaseNotConfiguredError()
  return session_factory


async def dispose_engine() -> None:
  """Close pooled connections on shutdown."""
  global engine, SessionLocal
  if engine is not None:
    await engine.dispose()
  engine = None
  SessionLocal = None

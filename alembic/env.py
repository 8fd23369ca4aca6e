import asyncio
import logging
from logging.config import fileConfig
from time import perf_counter

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

config = context.config

if config.config_file_name is not None:
  fileConfig(config.config_file_name)

# Importing the models attaches them to Base.metadata.
import fanout.schema.sql  # noqa: E402, F401
from fanout.config import get_database_settings  # noqa: E402
from fanout.core.database import Base, to_async_url  # noqa: E402

target_metadata = Base.metadata

# The database is shared with the content service, which keeps its own alembic_version.
VERSION_TABLE = "fanout_alembic_version"

_migration_logger = logging.getLogger("alembic.runtime.migration")
_revision_started: dict[str, float | None] = {"at": None}


def _require_url() -> str:
  url = to_async_url(get_database_settings().pg_dsn)
  if not url:
    raise RuntimeError("FANOUT_PG_DSN (or DATABASE_URL) must be set to run migrations.")
  return url


def _include_object(obj: object, name: str | None, type_: str, reflected: bool, compare_to: object | None) -> bool:
  """Keep autogenerate away from tables this service does not model."""
  if type_ == "table" and reflected and compare_to is None:
    return False
  return True


def _on_version_apply(*, ctx: object, step: object, heads: set[str], run_args: dict[str, object]) -> None:
  finished = perf_counter()
  started = _revision_started["at"]
  revision = getattr(step, "up_revision_id", None) or "unknown"
  if started is None:
    _migration_logger.info("Applied migration %s", revision)
  else:
    _migration_logger.info("Applied migration %s in %.3fs", revision, finished - started)
  _revision_started["at"] = perf_counter()


def _context_options() -> dict[str, object]:
  return {"target_metadata": target_metadata, "version_table": VERSION_TABLE, "include_object": _include_object, "compare_type": True, "compare_server_default": True, "on_version_apply": _on_version_apply}


def run_migrations_offline() -> None:
  """Emit SQL for the configured database without connecting."""
  context.configure(url=_require_url(), literal_binds=True, dialect_opts={"paramstyle": "named"}, **_context_options())

  with context.begin_transaction():
    context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
  context.configure(connection=connection, **_context_options())
  migration_context = context.get_context()
  current_revision = migration_context.get_current_revision() or "base"
  heads = migration_context.script.get_heads() if migration_context.script else []
  _migration_logger.info("Starting fan-out migrations from %s to %s", current_revision, ", ".join(heads) or "none")
  _revision_started["at"] = perf_counter()

  with context.begin_transaction():
    context.run_migrations()

  _migration_logger.info("Completed fan-out migrations at %s", ", ".join(migration_context.get_current_heads()) or "none")


async def run_async_migrations() -> None:
  """Migrate through asyncpg, the same driver the service uses."""
  configuration = config.get_section(config.config_ini_section) or {}
  configuration["sqlalchemy.url"] = _require_url()
  connectable = async_engine_from_config(configuration, prefix="sqlalchemy.", poolclass=pool.NullPool)

  async with connectable.connect() as connection:
    await connection.run_sync(do_run_migrations)

  await connectable.dispose()


if context.is_offline_mode():
  run_migrations_offline()
else:
  asyncio.run(run_async_migrations())

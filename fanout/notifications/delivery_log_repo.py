"""Repository helpers for push delivery logs."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fanout.core.database import get_session_factory
from fanout.notifications.contracts import DeliveryReport, NotificationEvent
from fanout.schema.sql import NotificationDeliveryLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryLogEntry:
  """Capture a single device send attempt for auditing and troubleshooting."""

  event_type: str
  actor_id: uuid.UUID
  subject_id: str
  recipient_id: uuid.UUID
  device_id: str
  transport_kind: str
  status: str
  error_reason: str | None


def entries_for_report(event: NotificationEvent, report: DeliveryReport) -> list[DeliveryLogEntry]:
  """Flatten a report into one log entry per attempted device."""
  if event.actor_id is None or event.subject is None:
    return []

  return [
    DeliveryLogEntry(
      event_type=event.type.value,
      actor_id=event.actor_id,
      subject_id=str(event.subject.id),
      recipient_id=outcome.user_id,
      device_id=outcome.device_id,
      transport_kind=outcome.transport_kind.value,
      status="sent" if outcome.success else "failed",
      error_reason=outcome.error_reason,
    )
    for outcome in report.outcomes
  ]


class DeliveryLogRepository:
  """Persist delivery logs to Postgres using SQLAlchemy."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory

  async def insert_many(self, entries: list[DeliveryLogEntry]) -> None:
    """Insert all rows of one fan-out run in a single transaction."""
    if not entries:
      return

    session_factory = self._session_factory or get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      await self._insert_with_session(session=session, entries=entries)

  async def _insert_with_session(self, *, session: AsyncSession, entries: list[DeliveryLogEntry]) -> None:
    session.add_all(
      [
        NotificationDeliveryLog(
          event_type=entry.event_type,
          actor_id=entry.actor_id,
          subject_id=entry.subject_id,
          recipient_id=entry.recipient_id,
          device_id=entry.device_id,
          transport_kind=entry.transport_kind,
          status=entry.status,
          error_reason=entry.error_reason,
        )
        for entry in entries
      ]
    )
    await session.commit()


class NullDeliveryLogRepository(DeliveryLogRepository):
  """No-op repository used when persistence is unavailable."""

  async def insert_many(self, entries: list[DeliveryLogEntry]) -> None:
    logger.debug("Delivery log persistence disabled; dropping %s rows", len(entries))

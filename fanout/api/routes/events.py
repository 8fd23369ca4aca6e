"""Internal intake for content events emitted by the social backend."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from fanout.api.deps import get_notification_queue
from fanout.core.security import require_task_secret
from fanout.notifications.background import NotificationTaskQueue
from fanout.notifications.contracts import EventType, NotificationEvent, SubjectRef

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = logging.getLogger(__name__)


class SubjectIn(BaseModel):
  id: str = Field(min_length=1, max_length=256)
  text: str = Field(default="", max_length=20000)
  post_id: str | None = Field(default=None, alias="postId", max_length=256)
  owner_id: uuid.UUID | None = Field(default=None, alias="ownerId")
  model_config = ConfigDict(extra="forbid", populate_by_name=True)


class EventIn(BaseModel):
  """Wire shape of a NotificationEvent."""

  type: EventType
  actor_id: uuid.UUID | None = Field(default=None, alias="actorId")
  subject: SubjectIn | None = None
  model_config = ConfigDict(extra="forbid", populate_by_name=True)

  def to_event(self) -> NotificationEvent:
    subject = None
    if self.subject is not None:
      subject = SubjectRef(id=self.subject.id, text=self.subject.text, post_id=self.subject.post_id, owner_id=self.subject.owner_id)
    return NotificationEvent(type=self.type, actor_id=self.actor_id, subject=subject)


class EventAccepted(BaseModel):
  status: str


@router.post("/events", status_code=status.HTTP_202_ACCEPTED, response_model=EventAccepted, dependencies=[Depends(require_task_secret)])
async def submit_event(payload: EventIn, queue: NotificationTaskQueue = Depends(get_notification_queue)) -> EventAccepted:  # noqa: B008
  """Validate an event and hand it to the background queue.

  The response only says whether the event was queued; delivery outcomes are
  logged by the dispatcher and never reported back to the caller.
  """
  event = payload.to_event()
  # Malformed events raise EventValidationError here and map to 422.
  event.validate()

  accepted = queue.submit(event)
  logger.info("Event received type=%s actor_id=%s accepted=%s", event.type.value, event.actor_id, accepted)
  return EventAccepted(status="accepted" if accepted else "dropped")

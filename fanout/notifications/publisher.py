"""Client helper for content services that emit events to the fan-out engine."""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from fanout.notifications.contracts import NotificationEvent

logger = logging.getLogger(__name__)

EVENTS_PATH = "/internal/notifications/events"


def event_to_json(event: NotificationEvent) -> dict[str, Any]:
  """Render an event in the wire shape accepted by the internal events route."""
  subject: dict[str, Any] | None = None
  if event.subject is not None:
    subject = {"id": event.subject.id, "text": event.subject.text}
    if event.subject.post_id:
      subject["postId"] = event.subject.post_id
    if event.subject.owner_id is not None:
      subject["ownerId"] = str(event.subject.owner_id)

  return {"type": event.type.value, "actorId": str(event.actor_id) if event.actor_id else None, "subject": subject}


class HttpEventPublisher:
  """POST events to a remote fan-out service using the shared task secret."""

  def __init__(self, *, base_url: str, task_secret: str, timeout_seconds: float = 5.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    if not task_secret:
      raise RuntimeError("Task secret not configured.")
    self._url = f"{base_url.rstrip('/')}{EVENTS_PATH}"
    self._task_secret = task_secret
    self._timeout_seconds = timeout_seconds
    self._transport = transport

  def _build_client(self) -> httpx.AsyncClient:
    # Never trust environment proxy variables for internal dispatch.
    return httpx.AsyncClient(transport=self._transport, trust_env=False, timeout=self._timeout_seconds)

  async def publish(self, event: NotificationEvent) -> bool:
    """Publish an event; returns whether the service accepted it for dispatch."""
    request_id = str(uuid.uuid4())
    headers = {"authorization": f"Bearer {self._task_secret}", "x-request-id": request_id}

    try:
      async with self._build_client() as client:
        response = await client.post(self._url, json=event_to_json(event), headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
      logger.error("Event publish returned %s for event_type=%s request_id=%s: %s", exc.response.status_code, event.type.value, request_id, exc.response.text)
      raise
    except httpx.RequestError as exc:
      logger.error("Event publish failed for event_type=%s request_id=%s: %s", event.type.value, request_id, exc)
      raise

    status = response.json().get("status")
    if status != "accepted":
      logger.warning("Fan-out service dropped event_type=%s request_id=%s status=%s", event.type.value, request_id, status)
    return status == "accepted"

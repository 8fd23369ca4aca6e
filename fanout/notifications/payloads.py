"""Turn content events into flat notification payloads."""

from __future__ import annotations

from dataclasses import dataclass

from fanout.notifications.contracts import ActorProfile, EventType, NotificationEvent, NotificationPayload

DEFAULT_ICON = "/icon-192x192.png"
DEFAULT_BADGE = "/badge-72x72.png"

POST_BODY_LIMIT = 100
INTERACTION_BODY_LIMIT = 50
_ELLIPSIS = "..."


def truncate(text: str, limit: int) -> str:
  """Clamp text to limit characters, marking the cut with a trailing ellipsis."""
  if len(text) <= limit:
    return text
  return text[: limit - len(_ELLIPSIS)] + _ELLIPSIS


@dataclass(frozen=True)
class _Template:
  title: str
  body_limit: int | None


_TEMPLATES: dict[EventType, _Template] = {
  EventType.NEW_POST: _Template(title="New post from {name}", body_limit=POST_BODY_LIMIT),
  EventType.COMMENT: _Template(title="{name} commented on your post", body_limit=INTERACTION_BODY_LIMIT),
  EventType.REPLY: _Template(title="{name} replied to your comment", body_limit=INTERACTION_BODY_LIMIT),
  EventType.LIKE: _Template(title="{name} liked your post", body_limit=INTERACTION_BODY_LIMIT),
  EventType.FOLLOW: _Template(title="New follower", body_limit=None),
}


class PayloadBuilder:
  """Build one payload per event; it is shared by every recipient device."""

  def __init__(self, *, default_icon: str = DEFAULT_ICON, default_badge: str = DEFAULT_BADGE) -> None:
    self._default_icon = default_icon
    self._default_badge = default_badge

  def build(self, event: NotificationEvent, actor: ActorProfile) -> NotificationPayload:
    template = _TEMPLATES[event.type]
    name = actor.display_name.strip() or "Someone"
    text = (event.subject.text if event.subject else "") or ""

    if template.body_limit is None:
      body = f"{name} started following you"
    else:
      body = truncate(text.strip(), template.body_limit)

    return NotificationPayload(title=template.title.format(name=name), body=body, icon=actor.avatar_url or self._default_icon, badge=self._default_badge, data=self._build_data(event, actor))

  def _build_data(self, event: NotificationEvent, actor: ActorProfile) -> dict[str, str]:
    post_id = event.post_id
    if event.type is EventType.NEW_POST:
      url = "/feed"
    elif event.type is EventType.FOLLOW:
      url = f"/users/{actor.user_id}"
    else:
      url = f"/posts/{post_id}"

    data: dict[str, object] = {"type": event.type.value, "url": url, "authorId": actor.user_id}
    if post_id:
      data["postId"] = post_id
    # Some channels only accept flat string maps.
    return {key: str(value) for key, value in data.items()}

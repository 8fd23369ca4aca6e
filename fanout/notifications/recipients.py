"""Recipient resolution and opt-in policy."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Any

from fanout.notifications.contracts import EventType, NotificationEvent, PreferenceCategory, UserDirectory

logger = logging.getLogger(__name__)

# Category checked against the recipient's preferences for each event type.
EVENT_PREFERENCE_CATEGORY: dict[EventType, PreferenceCategory] = {
  EventType.NEW_POST: PreferenceCategory.POSTS_FROM_FOLLOWED,
  EventType.COMMENT: PreferenceCategory.COMMENTS_ON_MY_POSTS,
  EventType.REPLY: PreferenceCategory.REPLIES_TO_MY_COMMENTS,
  EventType.LIKE: PreferenceCategory.LIKES_ON_MY_POSTS,
  EventType.FOLLOW: PreferenceCategory.FOLLOWS,
}


def is_opted_in(preferences: Mapping[str, Any] | None, category: PreferenceCategory) -> bool:
  """Only an explicit False opts a user out; missing keys default to opted in."""
  if not preferences:
    return True
  return preferences.get(category.value) is not False


class RecipientResolver:
  """Map a NotificationEvent to the users who should receive it."""

  def __init__(self, directory: UserDirectory) -> None:
    self._directory = directory

  async def _candidates(self, event: NotificationEvent) -> list[uuid.UUID]:
    if event.type is EventType.NEW_POST:
      follower_ids = await self._directory.list_follower_ids(event.actor_id)
      # dict.fromkeys keeps the first occurrence of each id.
      return list(dict.fromkeys(follower_ids))

    owner_id = event.subject.owner_id if event.subject else None
    return [owner_id] if owner_id is not None else []

  async def resolve(self, event: NotificationEvent) -> list[uuid.UUID]:
    """Return recipient ids with self-notifications and opt-outs removed."""
    event.validate()
    candidates = [user_id for user_id in await self._candidates(event) if user_id != event.actor_id]
    if not candidates:
      return []

    category = EVENT_PREFERENCE_CATEGORY[event.type]
    preferences = await self._directory.get_preferences(candidates)
    recipients = [user_id for user_id in candidates if is_opted_in(preferences.get(user_id), category)]

    skipped = len(candidates) - len(recipients)
    if skipped:
      logger.debug("Recipients opted out event_type=%s category=%s skipped=%s", event.type.value, category.value, skipped)
    return recipients

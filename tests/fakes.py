"""Hand-written fakes for collaborators of the fan-out pipeline."""

from __future__ import annotations

import uuid
from typing import Any

from fanout.notifications.contracts import ActorProfile, EventType, NotificationEvent, NotificationPayload, Platform, SendOutcome, SubjectRef


class FakeUserDirectory:
  """In-memory follow graph, preferences and profiles."""

  def __init__(self) -> None:
    self.followers: dict[uuid.UUID, list[uuid.UUID]] = {}
    self.preferences: dict[uuid.UUID, dict[str, Any]] = {}
    self.profiles: dict[uuid.UUID, ActorProfile] = {}
    self.preference_calls: list[list[uuid.UUID]] = []

  def add_user(self, name: str, *, avatar_url: str | None = None, preferences: dict[str, Any] | None = None) -> uuid.UUID:
    user_id = uuid.uuid4()
    self.profiles[user_id] = ActorProfile(user_id=user_id, display_name=name, avatar_url=avatar_url)
    if preferences is not None:
      self.preferences[user_id] = preferences
    return user_id

  def follow(self, follower_id: uuid.UUID, followee_id: uuid.UUID) -> None:
    self.followers.setdefault(followee_id, []).append(follower_id)

  async def list_follower_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
    return list(self.followers.get(user_id, []))

  async def get_preferences(self, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, dict[str, Any]]:
    self.preference_calls.append(list(user_ids))
    return {user_id: self.preferences[user_id] for user_id in user_ids if user_id in self.preferences}

  async def get_actor_profile(self, user_id: uuid.UUID) -> ActorProfile | None:
    return self.profiles.get(user_id)

  async def get_user_by_firebase_uid(self, firebase_uid: str) -> None:
    return None


class RecordingTransport:
  """PushTransport that records sends and answers from a per-credential script."""

  def __init__(self, outcomes: dict[str, SendOutcome | Exception] | None = None) -> None:
    self.outcomes = outcomes or {}
    self.sent: list[tuple[str, NotificationPayload, Platform | None]] = []

  async def send(self, credential: str, payload: NotificationPayload, *, platform: Platform | None = None) -> SendOutcome:
    self.sent.append((credential, payload, platform))
    outcome = self.outcomes.get(credential, SendOutcome.ok("msg-1"))
    if isinstance(outcome, Exception):
      raise outcome
    return outcome


def make_event(event_type: EventType, actor_id: uuid.UUID | None, *, text: str = "hello world", owner_id: uuid.UUID | None = None, subject_id: str = "subject-1", post_id: str | None = None) -> NotificationEvent:
  return NotificationEvent(type=event_type, actor_id=actor_id, subject=SubjectRef(id=subject_id, text=text, post_id=post_id, owner_id=owner_id))

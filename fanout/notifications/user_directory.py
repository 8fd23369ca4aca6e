"""Read-only user lookups backing recipient resolution."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fanout.core.database import require_session_factory
from fanout.notifications.contracts import ActorProfile
from fanout.schema.sql import User, UserFollow

logger = logging.getLogger(__name__)

# Stable namespace for ids derived from Firebase uids when no user table exists.
FIREBASE_USER_NAMESPACE = uuid.UUID("7c1f0f2e-3d5b-5a8e-9b1a-4f6c2d8e0a91")


def user_id_for_firebase_uid(firebase_uid: str) -> uuid.UUID:
  """Deterministic user id for a Firebase identity; publishers can compute the same value."""
  return uuid.uuid5(FIREBASE_USER_NAMESPACE, firebase_uid)


class SqlUserDirectory:
  """Query users and follow edges from Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory

  def _factory(self) -> async_sessionmaker[AsyncSession]:
    return require_session_factory(self._session_factory)

  async def list_follower_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
    """Users whose following set contains user_id."""
    async with self._factory()() as session:
      stmt = select(UserFollow.follower_id).where(UserFollow.followee_id == user_id).distinct()
      result = await session.execute(stmt)
      return list(result.scalars().all())

  async def get_preferences(self, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, dict[str, Any]]:
    if not user_ids:
      return {}

    async with self._factory()() as session:
      stmt = select(User.id, User.notification_preferences).where(User.id.in_(user_ids))
      result = await session.execute(stmt)
      return {row_id: dict(preferences or {}) for row_id, preferences in result.all()}

  async def get_actor_profile(self, user_id: uuid.UUID) -> ActorProfile | None:
    async with self._factory()() as session:
      stmt = select(User.id, User.display_name, User.avatar_url).where(User.id == user_id)
      result = await session.execute(stmt)
      row = result.one_or_none()
      if row is None:
        return None
      return ActorProfile(user_id=row.id, display_name=row.display_name, avatar_url=row.avatar_url or None)

  async def get_user_by_firebase_uid(self, firebase_uid: str) -> User | None:
    """Resolve the local user for a verified Firebase identity."""
    async with self._factory()() as session:
      result = await session.execute(select(User).where(User.firebase_uid == firebase_uid))
      return result.scalar_one_or_none()


class NullUserDirectory:
  """Directory used when no database is configured.

  It knows no followers, preferences or profiles. Authenticated callers still
  get a transient user so devices can be registered in memory; the id is
  derived from the Firebase uid and is stable across restarts.
  """

  async def list_follower_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
    logger.debug("User directory disabled; no followers for user_id=%s", user_id)
    return []

  async def get_preferences(self, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, dict[str, Any]]:
    return {}

  async def get_actor_profile(self, user_id: uuid.UUID) -> ActorProfile | None:
    return None

  async def get_user_by_firebase_uid(self, firebase_uid: str) -> User | None:
    # Never persisted; there is no users table to add it to.
    return User(id=user_id_for_firebase_uid(firebase_uid), firebase_uid=firebase_uid, display_name=firebase_uid, notification_preferences={})

from __future__ import annotations

import uuid
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from fanout.core.database import DatabaseNotConfiguredError
from fanout.notifications.user_directory import NullUserDirectory, SqlUserDirectory, user_id_for_firebase_uid
from fanout.schema.sql import User


@pytest.mark.anyio
async def test_list_follower_ids_returns_scalars(mock_session_factory, mock_db_session):
  followers = [uuid.uuid4(), uuid.uuid4()]
  result = MagicMock()
  result.scalars.return_value.all.return_value = followers
  mock_db_session.execute.return_value = result

  assert await SqlUserDirectory(session_factory=mock_session_factory).list_follower_ids(uuid.uuid4()) == followers


@pytest.mark.anyio
async def test_get_preferences_maps_rows_and_skips_empty_input(mock_session_factory, mock_db_session):
  bob = uuid.uuid4()
  carol = uuid.uuid4()
  result = MagicMock()
  result.all.return_value = [(bob, {"follows": False}), (carol, None)]
  mock_db_session.execute.return_value = result
  directory = SqlUserDirectory(session_factory=mock_session_factory)

  assert await directory.get_preferences([]) == {}
  mock_session_factory.assert_not_called()

  assert await directory.get_preferences([bob, carol]) == {bob: {"follows": False}, carol: {}}


@pytest.mark.anyio
async def test_get_actor_profile(mock_session_factory, mock_db_session):
  actor = uuid.uuid4()
  result = MagicMock()
  result.one_or_none.return_value = SimpleNamespace(id=actor, display_name="Alice", avatar_url="")
  mock_db_session.execute.return_value = result

  profile = await SqlUserDirectory(session_factory=mock_session_factory).get_actor_profile(actor)

  assert profile.display_name == "Alice"
  assert profile.avatar_url is None


@pytest.mark.anyio
async def test_get_actor_profile_missing(mock_session_factory, mock_db_session):
  result = MagicMock()
  result.one_or_none.return_value = None
  mock_db_session.execute.return_value = result

  assert await SqlUserDirectory(session_factory=mock_session_factory).get_actor_profile(uuid.uuid4()) is None


@pytest.mark.anyio
async def test_null_directory_knows_nobody():
  directory = NullUserDirectory()
  assert await directory.list_follower_ids(uuid.uuid4()) == []
  assert await directory.get_preferences([uuid.uuid4()]) == {}
  assert await directory.get_actor_profile(uuid.uuid4()) is None


@pytest.mark.anyio
async def test_sql_directory_without_database_raises(monkeypatch):
  monkeypatch.setattr("fanout.core.database.get_session_factory", lambda: None)
  with pytest.raises(DatabaseNotConfiguredError):
    await SqlUserDirectory().list_follower_ids(uuid.uuid4())


@pytest.mark.anyio
async def test_sql_directory_resolves_user_by_firebase_uid(mock_session_factory, mock_db_session):
  user = User(id=uuid.uuid4(), firebase_uid="uid-alice", display_name="Alice")
  mock_db_session.execute.return_value.scalar_one_or_none.return_value = user

  assert await SqlUserDirectory(session_factory=mock_session_factory).get_user_by_firebase_uid("uid-alice") is user


@pytest.mark.anyio
async def test_null_directory_derives_a_stable_transient_user():
  first = await NullUserDirectory().get_user_by_firebase_uid("uid-alice")
  second = await NullUserDirectory().get_user_by_firebase_uid("uid-alice")
  other = await NullUserDirectory().get_user_by_firebase_uid("uid-bob")

  assert first.id == second.id == user_id_for_firebase_uid("uid-alice")
  assert first.firebase_uid == "uid-alice"
  assert other.id != first.id

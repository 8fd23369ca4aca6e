from __future__ import annotations

import uuid

import pytest

from fanout.notifications.contracts import EventType, EventValidationError, NotificationEvent, PreferenceCategory, SubjectRef
from fanout.notifications.recipients import RecipientResolver, is_opted_in
from tests.fakes import make_event


def test_is_opted_in_defaults_to_true():
  assert is_opted_in(None, PreferenceCategory.FOLLOWS)
  assert is_opted_in({}, PreferenceCategory.FOLLOWS)
  assert is_opted_in({"likesOnMyPosts": False}, PreferenceCategory.FOLLOWS)
  assert is_opted_in({"follows": True}, PreferenceCategory.FOLLOWS)
  assert not is_opted_in({"follows": False}, PreferenceCategory.FOLLOWS)


@pytest.mark.anyio
async def test_new_post_resolves_followers_with_default_opt_in(directory):
  alice = directory.add_user("A")
  bob = directory.add_user("B")
  carol = directory.add_user("C", preferences={"postsFromFollowed": False})
  directory.follow(bob, alice)
  directory.follow(carol, alice)

  recipients = await RecipientResolver(directory).resolve(make_event(EventType.NEW_POST, alice))

  assert recipients == [bob]


@pytest.mark.anyio
async def test_new_post_deduplicates_followers_and_uses_one_bulk_lookup(directory):
  alice = directory.add_user("A")
  bob = directory.add_user("B")
  carol = directory.add_user("C")
  for follower in (bob, carol, bob):
    directory.follow(follower, alice)

  recipients = await RecipientResolver(directory).resolve(make_event(EventType.NEW_POST, alice))

  assert recipients == [bob, carol]
  assert directory.preference_calls == [[bob, carol]]


@pytest.mark.anyio
async def test_actor_is_never_a_recipient(directory):
  alice = directory.add_user("A")
  directory.follow(alice, alice)
  resolver = RecipientResolver(directory)

  assert await resolver.resolve(make_event(EventType.NEW_POST, alice)) == []
  assert await resolver.resolve(make_event(EventType.COMMENT, alice, owner_id=alice, post_id="p1")) == []
  assert await resolver.resolve(make_event(EventType.LIKE, alice, owner_id=alice)) == []


@pytest.mark.parametrize(
  ("event_type", "category"),
  [
    (EventType.COMMENT, "commentsOnMyPosts"),
    (EventType.REPLY, "repliesToMyComments"),
    (EventType.LIKE, "likesOnMyPosts"),
    (EventType.FOLLOW, "follows"),
  ],
)
@pytest.mark.anyio
async def test_owner_events_respect_their_category(directory, event_type, category):
  actor = directory.add_user("A")
  owner = directory.add_user("O")
  resolver = RecipientResolver(directory)
  event = make_event(event_type, actor, owner_id=owner, post_id="post-1")

  assert await resolver.resolve(event) == [owner]

  directory.preferences[owner] = {category: False}
  assert await resolver.resolve(event) == []


@pytest.mark.anyio
async def test_invalid_event_is_rejected(directory):
  resolver = RecipientResolver(directory)

  with pytest.raises(EventValidationError):
    await resolver.resolve(NotificationEvent(type=EventType.NEW_POST, actor_id=None, subject=SubjectRef(id="p1")))

  with pytest.raises(EventValidationError):
    await resolver.resolve(NotificationEvent(type=EventType.COMMENT, actor_id=uuid.uuid4(), subject=SubjectRef(id="c1", post_id="p1")))

  with pytest.raises(EventValidationError):
    await resolver.resolve(NotificationEvent(type=EventType.LIKE, actor_id=uuid.uuid4(), subject=None))

"""End-to-end fan-out through the HTTP surface, the queue and the dispatcher."""

from __future__ import annotations

import uuid

import httpx
import pytest

from fanout.api.deps import get_device_registry, get_notification_queue, get_web_push_available
from fanout.core.security import get_current_user
from fanout.main import app
from fanout.notifications.background import NotificationTaskQueue
from fanout.notifications.contracts import DeliveryFailureReason, EventType, SendOutcome, TransportKind
from fanout.notifications.devices import InMemoryDeviceRegistry
from fanout.notifications.dispatcher import FanOutDispatcher
from fanout.notifications.payloads import PayloadBuilder
from fanout.notifications.publisher import HttpEventPublisher
from fanout.notifications.recipients import RecipientResolver
from fanout.notifications.transports import TransportRouter
from fanout.schema.sql import User
from tests.fakes import RecordingTransport, make_event

_SUBSCRIPTION = {"endpoint": "https://updates.push.services.mozilla.com/wpush/v2/abc", "keys": {"p256dh": "BEl6f5Y8X5Y_u7d8mV_AbpZfXfTLT3s1O3L4wM1x8QY2_5qWQ-jxJq7uKjv8mQ4I", "auth": "gq8Yh5xA9l2mQ6pR"}}
_FIREFOX_WINDOWS = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:127.0) Gecko/20100101 Firefox/127.0"


class _Pipeline:
  def __init__(self, directory) -> None:
    self.registry = InMemoryDeviceRegistry()
    self.fcm = RecordingTransport()
    self.web_push = RecordingTransport()
    self.reports = []
    dispatcher = FanOutDispatcher(
      resolver=RecipientResolver(directory),
      registry=self.registry,
      directory=directory,
      payload_builder=PayloadBuilder(),
      router=TransportRouter({TransportKind.FCM: self.fcm, TransportKind.WEB_PUSH: self.web_push}),
    )
    dispatch = dispatcher.dispatch

    async def _recording_dispatch(event):
      report = await dispatch(event)
      self.reports.append(report)
      return report

    dispatcher.dispatch = _recording_dispatch
    self.queue = NotificationTaskQueue(dispatcher, maxsize=10, workers=2)


@pytest.fixture
async def pipeline(directory):
  built = _Pipeline(directory)
  built.queue.start()
  app.dependency_overrides[get_device_registry] = lambda: built.registry
  app.dependency_overrides[get_notification_queue] = lambda: built.queue
  app.dependency_overrides[get_web_push_available] = lambda: True
  try:
    yield built
  finally:
    app.dependency_overrides.clear()
    await built.queue.stop(timeout=1.0)


def _client() -> httpx.AsyncClient:
  return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://fanout.test")


async def _register_as(user_id: uuid.UUID, body: dict, *, user_agent: str | None = None) -> httpx.Response:
  app.dependency_overrides[get_current_user] = lambda: User(id=user_id, firebase_uid=str(user_id), display_name="user")
  headers = {"user-agent": user_agent} if user_agent else {}
  async with _client() as client:
    return await client.post("/v1/push/devices", json=body, headers=headers)


@pytest.mark.anyio
async def test_new_post_fans_out_to_followers_across_channels(pipeline, directory):
  alice = directory.add_user("Alice")
  bob = directory.add_user("Bob")
  carol = directory.add_user("Carol", preferences={"postsFromFollowed": False})
  dave = directory.add_user("Dave")
  for follower in (bob, carol, dave):
    directory.follow(follower, alice)

  assert (await _register_as(bob, {"deviceId": "bob-phone", "platform": "android", "fcmToken": "bob-token"})).status_code == 200
  assert (await _register_as(bob, {"deviceId": "bob-laptop", "webPushSubscription": _SUBSCRIPTION}, user_agent=_FIREFOX_WINDOWS)).json()["transportKind"] == "web_push"
  assert (await _register_as(carol, {"deviceId": "carol-phone", "platform": "ios", "fcmToken": "carol-token"})).status_code == 200

  publisher = HttpEventPublisher(base_url="http://fanout.test", task_secret="test-task-secret", transport=httpx.ASGITransport(app=app))
  assert await publisher.publish(make_event(EventType.NEW_POST, alice, subject_id="post-1", text="Hello from Alice")) is True
  await pipeline.queue.join()

  [report] = pipeline.reports
  assert report.total_recipients == 2
  assert report.successful == 2
  assert report.failed == 0
  assert [credential for credential, _, _ in pipeline.fcm.sent] == ["bob-token"]
  assert len(pipeline.web_push.sent) == 1
  payload = pipeline.fcm.sent[0][1]
  assert payload.title == "New post from Alice"
  assert payload.url == "/feed"
  assert report.unreached == {dave: "no_enabled_devices"}


@pytest.mark.anyio
async def test_disabled_device_receives_nothing(pipeline, directory):
  alice = directory.add_user("Alice")
  bob = directory.add_user("Bob")

  await _register_as(bob, {"deviceId": "bob-phone", "platform": "android", "fcmToken": "bob-token"})
  async with _client() as client:
    assert (await client.patch("/v1/push/devices/bob-phone", json={"enabled": False})).status_code == 200
    response = await client.post("/internal/notifications/events", json={"type": "like", "actorId": str(alice), "subject": {"id": "post-9", "ownerId": str(bob)}}, headers={"x-fanout-task-secret": "test-task-secret"})
  assert response.json() == {"status": "accepted"}
  await pipeline.queue.join()

  [report] = pipeline.reports
  assert pipeline.fcm.sent == []
  assert report.successful == 0
  assert list(report.unreached) == [bob]


@pytest.mark.anyio
async def test_rejected_credential_is_flagged_not_pruned(pipeline, directory):
  alice = directory.add_user("Alice")
  bob = directory.add_user("Bob")
  pipeline.fcm.outcomes["stale-token"] = SendOutcome.failed(DeliveryFailureReason.TRANSPORT_ERROR, "UNREGISTERED", invalid_credential=True)

  await _register_as(bob, {"deviceId": "old-phone", "platform": "android", "fcmToken": "stale-token"})
  await _register_as(bob, {"deviceId": "new-phone", "platform": "android", "fcmToken": "fresh-token"})
  async with _client() as client:
    await client.post("/internal/notifications/events", json={"type": "follow", "actorId": str(alice), "subject": {"id": str(bob), "ownerId": str(bob)}}, headers={"authorization": "Bearer test-task-secret"})
  await pipeline.queue.join()

  [report] = pipeline.reports
  assert report.successful == 1
  assert report.failed == 1
  assert {device.device_id for device in await pipeline.registry.list_devices(bob)} == {"old-phone", "new-phone"}

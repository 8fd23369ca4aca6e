from __future__ import annotations

import asyncio
import datetime
import json
import threading
import time
import uuid

import pytest
from firebase_admin import exceptions as firebase_exceptions, messaging

from fanout.notifications.contracts import DeliveryFailureReason, DeviceRecord, NotificationPayload, Platform, SendOutcome, TransportKind
from fanout.notifications.transports import FcmPushTransport, NullPushTransport, TransportRouter, VapidConfig, WebPushTransport, build_fcm_message, parse_web_push_subscription
from tests.fakes import RecordingTransport

_SUBSCRIPTION = {"endpoint": "https://fcm.googleapis.com/fcm/send/abc", "keys": {"p256dh": "BEl6f5Y8X5Y_u7d8mV_AbpZfXfTLT3s1O3L4wM1x8QY2_5qWQ-jxJq7uKjv8mQ4I", "auth": "gq8Yh5xA9l2mQ6pR"}}


class _FakeResponse:
  def __init__(self, status_code: int) -> None:
    self.status_code = status_code


class _FakeWebPushError(Exception):
  def __init__(self, status_code: int) -> None:
    super().__init__(f"status={status_code}")
    self.response = _FakeResponse(status_code)


def _payload() -> NotificationPayload:
  return NotificationPayload(title="New post from Alice", body="hello", icon="/icon-192x192.png", badge="/badge-72x72.png", data={"type": "new_post", "url": "/feed", "authorId": "a1", "postId": "p1"})


def _device(*, kind: TransportKind = TransportKind.FCM, credential: str = "token-1", enabled: bool = True, platform: Platform = Platform.ANDROID) -> DeviceRecord:
  return DeviceRecord(user_id=uuid.uuid4(), device_id="D1", platform=platform, transport_kind=kind, transport_credential=credential, enabled=enabled, last_active_at=datetime.datetime.now(datetime.UTC))


def test_fcm_message_shapes_platform_blocks():
  android = build_fcm_message("tok", _payload(), platform=Platform.ANDROID, link_base_url="https://app.example.com")
  assert android.token == "tok"
  assert android.android is not None
  assert android.android.priority == "high"
  assert android.apns is None
  assert android.webpush.fcm_options.link == "https://app.example.com/feed"
  assert android.data["title"] == "New post from Alice"
  assert android.data["url"] == "/feed"
  assert android.data["postId"] == "p1"

  ios = build_fcm_message("tok", _payload(), platform=Platform.IOS)
  assert ios.android is None
  assert ios.apns.headers["apns-priority"] == "10"
  assert ios.apns.payload.aps.badge == 1
  assert ios.webpush.fcm_options is None

  unknown = build_fcm_message("tok", _payload())
  assert unknown.android is not None and unknown.apns is not None


@pytest.mark.anyio
async def test_fcm_send_returns_message_id(monkeypatch):
  calls = {}

  def _send(message, dry_run=False, app=None):
    calls["token"] = message.token
    calls["dry_run"] = dry_run
    return "projects/p/messages/1"

  monkeypatch.setattr("fanout.notifications.transports.messaging.send", _send)
  transport = FcmPushTransport(app=None, dry_run=True)

  outcome = await transport.send("token-1", _payload(), platform=Platform.ANDROID)

  assert outcome == SendOutcome.ok("projects/p/messages/1")
  assert calls == {"token": "token-1", "dry_run": True}


@pytest.mark.anyio
async def test_fcm_unregistered_token_is_flagged_invalid(monkeypatch):
  def _send(message, dry_run=False, app=None):
    raise messaging.UnregisteredError("Requested entity was not found.")

  monkeypatch.setattr("fanout.notifications.transports.messaging.send", _send)

  outcome = await FcmPushTransport(app=None).send("token-1", _payload())

  assert outcome.success is False
  assert outcome.failure is DeliveryFailureReason.TRANSPORT_ERROR
  assert outcome.invalid_credential is True
  assert outcome.error_reason.startswith("transport_error: ")


@pytest.mark.anyio
async def test_fcm_provider_error_is_transient(monkeypatch):
  def _send(message, dry_run=False, app=None):
    raise firebase_exceptions.UnavailableError("backend down")

  monkeypatch.setattr("fanout.notifications.transports.messaging.send", _send)

  outcome = await FcmPushTransport(app=None).send("token-1", _payload())

  assert outcome.failure is DeliveryFailureReason.TRANSPORT_ERROR
  assert outcome.invalid_credential is False
  assert "backend down" in (outcome.detail or "")


@pytest.mark.anyio
async def test_fcm_timeout_is_a_transport_error(monkeypatch):
  release = threading.Event()

  def _hang(message, dry_run=False, app=None):
    release.wait(5)
    return "late"

  monkeypatch.setattr("fanout.notifications.transports.messaging.send", _hang)

  try:
    outcome = await FcmPushTransport(app=None, timeout_seconds=0.05).send("token-1", _payload())
  finally:
    release.set()

  assert outcome.failure is DeliveryFailureReason.TRANSPORT_ERROR
  assert outcome.detail == "timeout"


@pytest.mark.anyio
async def test_fcm_sends_beyond_the_default_thread_pool_do_not_time_out(monkeypatch):
  """More concurrent sends than anyio's 40 default threads all finish within their deadline."""

  def _slow_send(message, dry_run=False, app=None):
    time.sleep(0.6)
    return f"id-{message.token}"

  monkeypatch.setattr("fanout.notifications.transports.messaging.send", _slow_send)
  transport = FcmPushTransport(app=None, timeout_seconds=1.0, max_concurrent_sends=60)

  outcomes = await asyncio.gather(*(transport.send(f"token-{index}", _payload()) for index in range(60)))

  assert [outcome.detail for outcome in outcomes if not outcome.success] == []
  assert len(outcomes) == 60


@pytest.mark.anyio
async def test_waiting_for_a_send_slot_does_not_count_against_the_deadline(monkeypatch):
  def _slow_send(message, dry_run=False, app=None):
    time.sleep(0.3)
    return "ok"

  monkeypatch.setattr("fanout.notifications.transports.messaging.send", _slow_send)
  transport = FcmPushTransport(app=None, timeout_seconds=0.5, max_concurrent_sends=2)

  # Five sends through two slots take three rounds, longer than one deadline.
  outcomes = await asyncio.gather(*(transport.send(f"token-{index}", _payload()) for index in range(5)))

  assert all(outcome.success for outcome in outcomes)


@pytest.mark.anyio
async def test_fcm_unexpected_error_never_raises(monkeypatch):
  def _boom(message, dry_run=False, app=None):
    raise RuntimeError("socket closed")

  monkeypatch.setattr("fanout.notifications.transports.messaging.send", _boom)

  outcome = await FcmPushTransport(app=None).send("token-1", _payload())

  assert outcome.success is False
  assert outcome.detail == "RuntimeError: socket closed"


@pytest.mark.anyio
async def test_web_push_sends_json_payload_once(monkeypatch):
  calls = []
  monkeypatch.setattr("fanout.notifications.transports.WebPushException", _FakeWebPushError)
  monkeypatch.setattr("fanout.notifications.transports.webpush", lambda **kwargs: calls.append(kwargs))

  transport = WebPushTransport(vapid_config=VapidConfig(public_key="pub", private_key="priv", sub="mailto:ops@example.com"), ttl_seconds=60)
  outcome = await transport.send(json.dumps(_SUBSCRIPTION), _payload())

  assert outcome.success is True
  assert len(calls) == 1
  assert calls[0]["subscription_info"]["endpoint"] == _SUBSCRIPTION["endpoint"]
  assert calls[0]["ttl"] == 60
  assert calls[0]["vapid_claims"] == {"sub": "mailto:ops@example.com"}
  body = json.loads(calls[0]["data"])
  assert body["title"] == "New post from Alice"
  assert body["data"]["url"] == "/feed"


@pytest.mark.parametrize("status_code", [404, 410])
@pytest.mark.anyio
async def test_web_push_gone_subscription_is_flagged_invalid(monkeypatch, status_code):
  attempts = {"count": 0}
  monkeypatch.setattr("fanout.notifications.transports.WebPushException", _FakeWebPushError)

  def _raise(**kwargs):
    attempts["count"] += 1
    raise _FakeWebPushError(status_code)

  monkeypatch.setattr("fanout.notifications.transports.webpush", _raise)
  transport = WebPushTransport(vapid_config=VapidConfig(public_key="pub", private_key="priv", sub="mailto:ops@example.com"))

  outcome = await transport.send(json.dumps(_SUBSCRIPTION), _payload())

  assert outcome.invalid_credential is True
  assert outcome.detail == f"status={status_code}"
  assert attempts["count"] == 1


@pytest.mark.anyio
async def test_web_push_5xx_is_not_retried(monkeypatch):
  attempts = {"count": 0}
  monkeypatch.setattr("fanout.notifications.transports.WebPushException", _FakeWebPushError)

  def _raise(**kwargs):
    attempts["count"] += 1
    raise _FakeWebPushError(503)

  monkeypatch.setattr("fanout.notifications.transports.webpush", _raise)
  transport = WebPushTransport(vapid_config=VapidConfig(public_key="pub", private_key="priv", sub="mailto:ops@example.com"))

  outcome = await transport.send(json.dumps(_SUBSCRIPTION), _payload())

  assert outcome.error_reason == "transport_error: status=503"
  assert outcome.invalid_credential is False
  assert attempts["count"] == 1


@pytest.mark.anyio
async def test_web_push_malformed_credential_is_no_credential():
  transport = WebPushTransport(vapid_config=VapidConfig(public_key="pub", private_key="priv", sub="mailto:ops@example.com"))
  outcome = await transport.send("not-json", _payload())
  assert outcome.failure is DeliveryFailureReason.NO_CREDENTIAL


def test_parse_web_push_subscription_requires_keys():
  assert parse_web_push_subscription(json.dumps(_SUBSCRIPTION)) == _SUBSCRIPTION
  assert parse_web_push_subscription(json.dumps({"endpoint": "https://x"})) is None
  assert parse_web_push_subscription("[]") is None


@pytest.mark.anyio
async def test_null_transport_reports_unavailable():
  outcome = await NullPushTransport(TransportKind.WEB_PUSH).send("cred", _payload())
  assert outcome.error_reason == "transport_error: web_push transport unavailable"


@pytest.mark.anyio
async def test_router_short_circuits_disabled_and_blank_devices():
  fcm = RecordingTransport()
  router = TransportRouter({TransportKind.FCM: fcm})

  disabled = await router.deliver(_device(enabled=False), _payload())
  blank = await router.deliver(_device(credential=" "), _payload())

  assert disabled.failure is DeliveryFailureReason.DISABLED
  assert blank.failure is DeliveryFailureReason.NO_CREDENTIAL
  assert fcm.sent == []


@pytest.mark.anyio
async def test_router_routes_by_transport_kind():
  fcm = RecordingTransport()
  web = RecordingTransport()
  router = TransportRouter({TransportKind.FCM: fcm, TransportKind.WEB_PUSH: web})

  await router.deliver(_device(kind=TransportKind.WEB_PUSH, credential="sub-json", platform=Platform.MAC), _payload())

  assert fcm.sent == []
  assert web.sent[0][0] == "sub-json"
  assert web.sent[0][2] is Platform.MAC


@pytest.mark.anyio
async def test_router_without_transport_uses_null():
  outcome = await TransportRouter({}).deliver(_device(), _payload())
  assert outcome.failure is DeliveryFailureReason.TRANSPORT_ERROR

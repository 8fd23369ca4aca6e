"""Push transport implementations and per-device routing."""

from __future__ import annotations

import datetime
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, TypeVar

import anyio
import anyio.to_thread
from firebase_admin import App, exceptions as firebase_exceptions, messaging
from pywebpush import WebPushException, webpush

from fanout.notifications.contracts import (
  DeliveryFailureReason,
  DeviceRecord,
  InvalidPushSubscriptionError,
  NotificationPayload,
  NotificationProviderError,
  Platform,
  PushTransport,
  SendOutcome,
  TransientPushProviderError,
  TransportKind,
)

logger = logging.getLogger(__name__)

_APNS_PLATFORMS = frozenset({Platform.IOS, Platform.MAC})
_MAX_DETAIL_CHARS = 200
_DEFAULT_MAX_CONCURRENT_SENDS = 40

T = TypeVar("T")


class BlockingSendRunner:
  """Run blocking provider SDK calls on worker threads under a deadline.

  A send first takes one of `size` slots and then runs on a thread limiter of
  the same size, so a thread is always free once a slot is held. The deadline
  starts after that point and bounds only the provider call, never the wait
  for a slot.
  """

  def __init__(self, *, size: int = _DEFAULT_MAX_CONCURRENT_SENDS, timeout_seconds: float = 10.0) -> None:
    self._slots = anyio.CapacityLimiter(size)
    self._threads = anyio.CapacityLimiter(size)
    self.timeout_seconds = timeout_seconds

  async def run(self, func: Callable[..., T], *args: Any) -> T:
    async with self._slots:
      # A timed out call is abandoned; its worker thread finishes in the background.
      with anyio.fail_after(self.timeout_seconds):
        return await anyio.to_thread.run_sync(func, *args, limiter=self._threads, abandon_on_cancel=True)


def _preview(credential: str) -> str:
  """Short credential prefix that is safe to log."""
  return f"{credential[:12]}..." if len(credential) > 12 else "***"


def _clip(detail: str) -> str:
  return detail if len(detail) <= _MAX_DETAIL_CHARS else detail[: _MAX_DETAIL_CHARS - 3] + "..."


def _flat_data(payload: NotificationPayload) -> dict[str, str]:
  """Data block read by the client service worker on click.

  Title, body and url are duplicated from the notification block so clients
  that only receive data messages can still render and deep link.
  """
  data = {"title": payload.title, "body": payload.body, "icon": payload.icon, "badge": payload.badge, "type": "notification", "url": "/", "postId": "", "authorId": ""}
  data.update(payload.data)
  return {key: str(value) for key, value in data.items()}


def build_fcm_message(credential: str, payload: NotificationPayload, *, platform: Platform | None = None, ttl_seconds: int = 86400, link_base_url: str | None = None) -> messaging.Message:
  """Shape one FCM message with the platform hints the device needs."""
  webpush_options = messaging.WebpushFCMOptions(link=f"{link_base_url}{payload.url}") if link_base_url else None
  webpush_config = messaging.WebpushConfig(
    headers={"TTL": str(ttl_seconds), "Urgency": "normal"},
    notification=messaging.WebpushNotification(title=payload.title, body=payload.body, icon=payload.icon, badge=payload.badge),
    fcm_options=webpush_options,
  )

  android_config = None
  if platform is None or platform is Platform.ANDROID:
    android_config = messaging.AndroidConfig(
      priority="high",
      ttl=datetime.timedelta(seconds=ttl_seconds),
      notification=messaging.AndroidNotification(title=payload.title, body=payload.body, click_action=payload.url, sound="default"),
    )

  apns_config = None
  if platform is None or platform in _APNS_PLATFORMS:
    apns_config = messaging.APNSConfig(
      headers={"apns-priority": "10", "apns-expiration": str(int(time.time()) + ttl_seconds)},
      payload=messaging.APNSPayload(aps=messaging.Aps(alert=messaging.ApsAlert(title=payload.title, body=payload.body), badge=1, sound="default")),
    )

  return messaging.Message(
    token=credential,
    notification=messaging.Notification(title=payload.title, body=payload.body),
    data=_flat_data(payload),
    webpush=webpush_config,
    android=android_config,
    apns=apns_config,
  )


class FcmPushTransport(PushTransport):
  """Firebase Cloud Messaging sender backed by firebase_admin."""

  def __init__(self, *, app: App | None, timeout_seconds: float = 10.0, ttl_seconds: int = 86400, dry_run: bool = False, link_base_url: str | None = None, max_concurrent_sends: int = _DEFAULT_MAX_CONCURRENT_SENDS) -> None:
    self._app = app
    self._runner = BlockingSendRunner(size=max_concurrent_sends, timeout_seconds=timeout_seconds)
    self._ttl_seconds = ttl_seconds
    self._dry_run = dry_run
    self._link_base_url = link_base_url

  def _send_sync(self, message: messaging.Message) -> str:
    try:
      return messaging.send(message, dry_run=self._dry_run, app=self._app)
    # Unregistered and mismatched tokens will never succeed again.
    except (messaging.UnregisteredError, messaging.SenderIdMismatchError) as exc:
      raise InvalidPushSubscriptionError(f"{exc.code}: {exc}") from exc
    # Everything else from Firebase may succeed on a later event.
    except firebase_exceptions.FirebaseError as exc:
      raise TransientPushProviderError(f"{exc.code}: {exc}") from exc

  async def send(self, credential: str, payload: NotificationPayload, *, platform: Platform | None = None) -> SendOutcome:
    # Skip the provider round trip for blank tokens.
    if not credential.strip():
      return SendOutcome.failed(DeliveryFailureReason.NO_CREDENTIAL)

    try:
      message = build_fcm_message(credential, payload, platform=platform, ttl_seconds=self._ttl_seconds, link_base_url=self._link_base_url)
      message_id = await self._runner.run(self._send_sync, message)
    except TimeoutError:
      logger.warning("FCM send timed out token=%s after %.1fs", _preview(credential), self._runner.timeout_seconds)
      return SendOutcome.failed(DeliveryFailureReason.TRANSPORT_ERROR, "timeout")
    except InvalidPushSubscriptionError as exc:
      # Stale tokens are reported, not pruned; cleanup stays a manual decision.
      logger.info("FCM token rejected as invalid token=%s: %s", _preview(credential), exc)
      return SendOutcome.failed(DeliveryFailureReason.TRANSPORT_ERROR, _clip(str(exc)), invalid_credential=True)
    except NotificationProviderError as exc:
      logger.warning("FCM send failed token=%s: %s", _preview(credential), exc)
      return SendOutcome.failed(DeliveryFailureReason.TRANSPORT_ERROR, _clip(str(exc)))
    except Exception as exc:  # noqa: BLE001
      # Never let one device's failure escape into the fan-out.
      logger.error("FCM send raised unexpectedly token=%s: %s", _preview(credential), exc, exc_info=True)
      return SendOutcome.failed(DeliveryFailureReason.TRANSPORT_ERROR, _clip(f"{type(exc).__name__}: {exc}"))

    logger.debug("FCM send ok token=%s message_id=%s", _preview(credential), message_id)
    return SendOutcome.ok(message_id)


@dataclass(frozen=True)
class VapidConfig:
  """Configuration required to sign Web Push requests."""

  public_key: str
  private_key: str
  sub: str


class WebPushTransport(PushTransport):
  """Native Web Push sender backed by pywebpush. One attempt per send."""

  def __init__(self, *, vapid_config: VapidConfig, timeout_seconds: float = 10.0, ttl_seconds: int = 86400, max_concurrent_sends: int = _DEFAULT_MAX_CONCURRENT_SENDS) -> None:
    self._vapid_config = vapid_config
    self._runner = BlockingSendRunner(size=max_concurrent_sends, timeout_seconds=timeout_seconds)
    self._ttl_seconds = ttl_seconds

  def _send_sync(self, subscription_info: dict[str, Any], payload: NotificationPayload) -> None:
    body = json.dumps(payload.to_dict())
    try:
      webpush(subscription_info=subscription_info, data=body, vapid_private_key=self._vapid_config.private_key, vapid_claims={"sub": self._vapid_config.sub}, timeout=self._runner.timeout_seconds, ttl=self._ttl_seconds, headers={"Urgency": "normal"})
    except WebPushException as exc:
      status_code = _extract_status_code(exc)
      # The push service forgot this subscription; the browser must resubscribe.
      if status_code in {HTTPStatus.GONE, HTTPStatus.NOT_FOUND}:
        raise InvalidPushSubscriptionError(f"status={int(status_code)}") from exc
      raise TransientPushProviderError(f"status={status_code if status_code is not None else 'unknown'}") from exc

  async def send(self, credential: str, payload: NotificationPayload, *, platform: Platform | None = None) -> SendOutcome:
    # Stored subscriptions are JSON; reject unusable ones before touching the network.
    subscription_info = parse_web_push_subscription(credential)
    if subscription_info is None:
      return SendOutcome.failed(DeliveryFailureReason.NO_CREDENTIAL, "malformed web push subscription")

    endpoint = subscription_info["endpoint"]
    try:
      await self._runner.run(self._send_sync, subscription_info, payload)
    except TimeoutError:
      logger.warning("Web Push send timed out endpoint=%s", _preview(endpoint))
      return SendOutcome.failed(DeliveryFailureReason.TRANSPORT_ERROR, "timeout")
    except InvalidPushSubscriptionError as exc:
      logger.info("Web Push subscription rejected as invalid endpoint=%s: %s", _preview(endpoint), exc)
      return SendOutcome.failed(DeliveryFailureReason.TRANSPORT_ERROR, str(exc), invalid_credential=True)
    except NotificationProviderError as exc:
      logger.warning("Web Push send failed endpoint=%s: %s", _preview(endpoint), exc)
      return SendOutcome.failed(DeliveryFailureReason.TRANSPORT_ERROR, str(exc))
    except Exception as exc:  # noqa: BLE001
      # Never let one device's failure escape into the fan-out.
      logger.error("Web Push send raised unexpectedly endpoint=%s: %s", _preview(endpoint), exc, exc_info=True)
      return SendOutcome.failed(DeliveryFailureReason.TRANSPORT_ERROR, _clip(f"{type(exc).__name__}: {exc}"))

    return SendOutcome.ok()


class NullPushTransport(PushTransport):
  """Stand-in for a channel that is disabled or unconfigured."""

  def __init__(self, kind: TransportKind) -> None:
    self._kind = kind

  async def send(self, credential: str, payload: NotificationPayload, *, platform: Platform | None = None) -> SendOutcome:
    logger.debug("Push channel %s unavailable; dropping send", self._kind.value)
    return SendOutcome.failed(DeliveryFailureReason.TRANSPORT_ERROR, f"{self._kind.value} transport unavailable")


class TransportRouter:
  """Resolve the concrete transport for a device and deliver through it."""

  def __init__(self, transports: dict[TransportKind, PushTransport]) -> None:
    self._transports = dict(transports)

  def resolve(self, kind: TransportKind) -> PushTransport:
    transport = self._transports.get(kind)
    # Unwired channels still produce an outcome instead of a KeyError.
    if transport is None:
      return NullPushTransport(kind)
    return transport

  async def deliver(self, device: DeviceRecord, payload: NotificationPayload) -> SendOutcome:
    # Disabled devices never reach a provider.
    if not device.enabled:
      return SendOutcome.failed(DeliveryFailureReason.DISABLED)
    # A device without a credential cannot be addressed.
    if not device.transport_credential.strip():
      return SendOutcome.failed(DeliveryFailureReason.NO_CREDENTIAL)
    return await self.resolve(device.transport_kind).send(device.transport_credential, payload, platform=device.platform)


def parse_web_push_subscription(credential: str) -> dict[str, Any] | None:
  """Decode a stored browser subscription; None when it is unusable."""
  try:
    subscription = json.loads(credential)
  except (TypeError, ValueError):
    return None

  if not isinstance(subscription, dict):
    return None
  # Both encryption keys are required to encrypt the payload.
  keys = subscription.get("keys")
  if not subscription.get("endpoint") or not isinstance(keys, dict) or not keys.get("p256dh") or not keys.get("auth"):
    return None
  return {"endpoint": subscription["endpoint"], "keys": {"p256dh": keys["p256dh"], "auth": keys["auth"]}}


def _extract_status_code(exc: WebPushException) -> int | None:
  """Extract an HTTP status code from a pywebpush exception when available."""
  response = getattr(exc, "response", None)
  if response is None:
    return None

  status = getattr(response, "status_code", None)
  if isinstance(status, int):
    return status

  return None

"""Factory helpers for the fan-out pipeline."""

from __future__ import annotations

import logging

from firebase_admin import App

from fanout.config import Settings
from fanout.notifications.background import NotificationTaskQueue
from fanout.notifications.contracts import DeviceRegistry, PushTransport, TransportKind, UserDirectory
from fanout.notifications.delivery_log_repo import DeliveryLogRepository, NullDeliveryLogRepository
from fanout.notifications.devices import InMemoryDeviceRegistry, SqlDeviceRegistry
from fanout.notifications.dispatcher import FanOutDispatcher
from fanout.notifications.payloads import PayloadBuilder
from fanout.notifications.publisher import HttpEventPublisher
from fanout.notifications.recipients import RecipientResolver
from fanout.notifications.transports import FcmPushTransport, NullPushTransport, TransportRouter, VapidConfig, WebPushTransport
from fanout.notifications.user_directory import NullUserDirectory, SqlUserDirectory

logger = logging.getLogger(__name__)


def web_push_available(settings: Settings) -> bool:
  return bool(settings.web_push_enabled and settings.push_vapid_public_key and settings.push_vapid_private_key and settings.push_vapid_sub)


def build_device_registry(settings: Settings) -> DeviceRegistry:
  """Postgres-backed registry, or a process-local one when no DSN is set."""
  if settings.pg_dsn:
    return SqlDeviceRegistry()

  logger.warning("FANOUT_PG_DSN not set; devices are kept in memory and lost on restart.")
  return InMemoryDeviceRegistry()


def build_user_directory(settings: Settings) -> UserDirectory:
  if settings.pg_dsn:
    return SqlUserDirectory()
  return NullUserDirectory()


def build_transport_router(settings: Settings, *, firebase_app: App | None) -> TransportRouter:
  """Construct one transport per channel; unconfigured channels get a null transport."""
  transports: dict[TransportKind, PushTransport] = {}

  # FCM needs an initialized Firebase app; the handle is created once at startup.
  if settings.fcm_enabled and firebase_app is not None:
    transports[TransportKind.FCM] = FcmPushTransport(app=firebase_app, timeout_seconds=settings.push_timeout_seconds, ttl_seconds=settings.push_ttl_seconds, dry_run=settings.fcm_dry_run, link_base_url=settings.public_base_url, max_concurrent_sends=settings.max_concurrent_sends)
  else:
    transports[TransportKind.FCM] = NullPushTransport(TransportKind.FCM)

  if web_push_available(settings):
    vapid_config = VapidConfig(public_key=settings.push_vapid_public_key or "", private_key=settings.push_vapid_private_key or "", sub=settings.push_vapid_sub or "")
    transports[TransportKind.WEB_PUSH] = WebPushTransport(vapid_config=vapid_config, timeout_seconds=settings.push_timeout_seconds, ttl_seconds=settings.push_ttl_seconds, max_concurrent_sends=settings.max_concurrent_sends)
  else:
    transports[TransportKind.WEB_PUSH] = NullPushTransport(TransportKind.WEB_PUSH)

  return TransportRouter(transports)


def build_notification_dispatcher(
  settings: Settings,
  *,
  firebase_app: App | None = None,
  registry: DeviceRegistry | None = None,
  directory: UserDirectory | None = None,
  router: TransportRouter | None = None,
) -> FanOutDispatcher:
  """Wire the dispatcher from configuration; explicit collaborators win."""
  registry = registry or build_device_registry(settings)
  directory = directory or build_user_directory(settings)
  router = router or build_transport_router(settings, firebase_app=firebase_app)

  # Persist delivery logs only when Postgres is configured.
  if settings.pg_dsn and settings.delivery_log_enabled:
    delivery_log_repo: DeliveryLogRepository = DeliveryLogRepository()
  else:
    delivery_log_repo = NullDeliveryLogRepository()

  return FanOutDispatcher(
    resolver=RecipientResolver(directory),
    registry=registry,
    directory=directory,
    payload_builder=PayloadBuilder(default_icon=settings.push_default_icon, default_badge=settings.push_default_badge),
    router=router,
    delivery_log_repo=delivery_log_repo,
    max_concurrent_sends=settings.max_concurrent_sends,
  )


def build_notification_queue(settings: Settings, dispatcher: FanOutDispatcher) -> NotificationTaskQueue:
  return NotificationTaskQueue(dispatcher, maxsize=settings.dispatch_queue_size, workers=settings.dispatch_workers)


def build_event_publisher(settings: Settings) -> HttpEventPublisher:
  """Publisher for callers that run outside this process."""
  if not settings.service_url:
    raise RuntimeError("FANOUT_SERVICE_URL is not configured.")
  return HttpEventPublisher(base_url=settings.service_url, task_secret=settings.task_secret or "", timeout_seconds=settings.push_timeout_seconds)

"""Request-scoped accessors for objects wired by the lifespan."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from fanout.config import get_settings
from fanout.notifications.background import NotificationTaskQueue
from fanout.notifications.contracts import DeviceRegistry, UserDirectory
from fanout.notifications.factory import web_push_available


def get_device_registry(request: Request) -> DeviceRegistry:
  registry = getattr(request.app.state, "device_registry", None)
  if registry is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Device registry not initialized.")
  return registry


def get_user_directory(request: Request) -> UserDirectory:
  directory = getattr(request.app.state, "user_directory", None)
  if directory is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="User directory not initialized.")
  return directory


def get_notification_queue(request: Request) -> NotificationTaskQueue:
  queue = getattr(request.app.state, "notification_queue", None)
  if queue is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Notification queue not initialized.")
  return queue


def get_web_push_available(request: Request) -> bool:
  """Whether this server can send native Web Push, used to pick a device's channel."""
  available = getattr(request.app.state, "web_push_available", None)
  if available is None:
    return web_push_available(get_settings())
  return bool(available)

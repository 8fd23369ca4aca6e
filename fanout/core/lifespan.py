import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from fanout.core.database import dispose_engine
from fanout.core.firebase import initialize_firebase
from fanout.core.logging import initialize_logging
from fanout.notifications.factory import build_device_registry, build_notification_dispatcher, build_notification_queue, build_user_directory, web_push_available

_DRAIN_TIMEOUT_SECONDS = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Wire the fan-out pipeline once and tear it down on shutdown."""
  from fanout.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("fanout.core.lifespan")

  try:
    initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
  except Exception:  # noqa: BLE001
    logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

  # The Firebase app handle is created once here and injected into the FCM transport.
  firebase_app = initialize_firebase(settings)

  # Routes and the dispatcher share one registry and directory so in-memory mode stays consistent.
  registry = build_device_registry(settings)
  directory = build_user_directory(settings)
  dispatcher = build_notification_dispatcher(settings, firebase_app=firebase_app, registry=registry, directory=directory)
  queue = build_notification_queue(settings, dispatcher)
  queue.start()

  app.state.device_registry = registry
  app.state.user_directory = directory
  app.state.notification_dispatcher = dispatcher
  app.state.notification_queue = queue
  app.state.web_push_available = web_push_available(settings)

  try:
    yield
  finally:
    await queue.stop(timeout=_DRAIN_TIMEOUT_SECONDS)
    await dispose_engine()
    logger.info("Shutdown complete.")

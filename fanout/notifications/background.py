"""In-process background queue that runs dispatches off the request path."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from fanout.notifications.contracts import EventValidationError, NotificationEvent
from fanout.notifications.dispatcher import FanOutDispatcher

logger = logging.getLogger(__name__)


class NotificationTaskQueue:
  """Bounded queue drained by a fixed pool of worker tasks.

  submit() never blocks the caller; when the queue is full the event is
  dropped with a warning. Delivery is best effort and nothing is persisted,
  so events still queued when stop() times out are lost.
  """

  def __init__(self, dispatcher: FanOutDispatcher, *, maxsize: int = 1000, workers: int = 4) -> None:
    self._dispatcher = dispatcher
    self._queue: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=maxsize)
    self._worker_count = max(1, workers)
    self._workers: list[asyncio.Task[None]] = []

  @property
  def running(self) -> bool:
    return bool(self._workers)

  def pending(self) -> int:
    return self._queue.qsize()

  def start(self) -> None:
    if self._workers:
      return
    self._workers = [asyncio.create_task(self._worker(index), name=f"fanout-worker-{index}") for index in range(self._worker_count)]
    for task in self._workers:
      task.add_done_callback(self._log_task_error)
    logger.info("Notification queue started workers=%s maxsize=%s", self._worker_count, self._queue.maxsize)

  def submit(self, event: NotificationEvent) -> bool:
    """Enqueue an event; returns False when it was dropped."""
    if not self._workers:
      logger.warning("Notification queue not running; dropping event_type=%s", event.type.value)
      return False

    try:
      self._queue.put_nowait(event)
    except asyncio.QueueFull:
      logger.warning("Notification queue full (%s); dropping event_type=%s actor_id=%s", self._queue.maxsize, event.type.value, event.actor_id)
      return False
    return True

  async def join(self) -> None:
    """Wait until every queued event has been processed."""
    await self._queue.join()

  async def stop(self, *, timeout: float = 10.0) -> None:
    """Drain queued events, then cancel the workers."""
    if not self._workers:
      return

    try:
      await asyncio.wait_for(self._queue.join(), timeout=timeout)
    except TimeoutError:
      logger.warning("Notification queue drain timed out; abandoning %s events", self._queue.qsize())

    for task in self._workers:
      task.cancel()
    for task in self._workers:
      with contextlib.suppress(asyncio.CancelledError):
        await task
    self._workers = []
    logger.info("Notification queue stopped")

  async def _worker(self, index: int) -> None:
    while True:
      event = await self._queue.get()
      try:
        await self._dispatcher.dispatch(event)
      except EventValidationError as exc:
        logger.warning("Dropping invalid event worker=%s event_type=%s: %s", index, event.type.value, exc)
      except Exception as exc:  # noqa: BLE001
        logger.error("Dispatch failed worker=%s event_type=%s: %s", index, event.type.value, exc, exc_info=True)
      finally:
        self._queue.task_done()

  @staticmethod
  def _log_task_error(task: asyncio.Task[None]) -> None:
    """Log worker exits that were not requested by stop()."""
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Notification worker %s exited: %s", task.get_name(), exc, exc_info=exc)

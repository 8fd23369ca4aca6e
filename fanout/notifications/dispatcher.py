"""Fan a content event out to every eligible device of every recipient."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import AbstractAsyncContextManager, nullcontext

from fanout.notifications.contracts import (
  ActorProfile,
  DeliveryFailureReason,
  DeliveryReport,
  DeviceOutcome,
  DeviceRecord,
  DeviceRegistry,
  NotificationEvent,
  NotificationPayload,
  UserDirectory,
)
from fanout.notifications.delivery_log_repo import DeliveryLogRepository, NullDeliveryLogRepository, entries_for_report
from fanout.notifications.payloads import PayloadBuilder
from fanout.notifications.recipients import RecipientResolver
from fanout.notifications.transports import TransportRouter

logger = logging.getLogger(__name__)

_FALLBACK_ACTOR_NAME = "Someone"


class FanOutDispatcher:
  """Orchestrates resolve, build, send and aggregate for one event at a time.

  Every send is isolated: a failing device or recipient never prevents the
  others from being attempted, and only EventValidationError escapes
  dispatch(). There are no retries; each device gets exactly one attempt.
  """

  def __init__(
    self,
    *,
    resolver: RecipientResolver,
    registry: DeviceRegistry,
    directory: UserDirectory,
    payload_builder: PayloadBuilder,
    router: TransportRouter,
    delivery_log_repo: DeliveryLogRepository | None = None,
    max_concurrent_sends: int | None = None,
  ) -> None:
    self._resolver = resolver
    self._registry = registry
    self._directory = directory
    self._payload_builder = payload_builder
    self._router = router
    self._delivery_log_repo = delivery_log_repo or NullDeliveryLogRepository()
    self._semaphore = asyncio.Semaphore(max_concurrent_sends) if max_concurrent_sends else None

  async def dispatch(self, event: NotificationEvent) -> DeliveryReport:
    # Validation errors are the caller's bug and abort before anything is sent.
    event.validate()

    try:
      recipients = await self._resolver.resolve(event)
    except Exception as exc:  # noqa: BLE001
      # A broken directory yields an empty report rather than an exception.
      logger.error("Recipient resolution failed event_type=%s actor_id=%s: %s", event.type.value, event.actor_id, exc, exc_info=True)
      return DeliveryReport.empty(event.type, error=f"recipient resolution failed: {exc}")

    # Nobody to notify; skip the actor lookup and every send.
    if not recipients:
      logger.debug("No recipients for event_type=%s actor_id=%s", event.type.value, event.actor_id)
      return DeliveryReport.empty(event.type)

    # One payload is rendered per event and shared by every device.
    actor = await self._load_actor(event)
    payload = self._payload_builder.build(event, actor)
    report = DeliveryReport(event_type=event.type, total_recipients=len(recipients))

    results = await asyncio.gather(*(self._deliver_to_recipient(user_id, payload) for user_id in recipients))
    for user_id, (outcomes, unreached_reason) in zip(recipients, results, strict=True):
      # Lookup failures and users without devices never produced an outcome.
      if unreached_reason is not None:
        report.unreached[user_id] = unreached_reason
        continue

      report.outcomes.extend(outcomes)
      # One delivered device is enough to count the recipient as reached.
      if any(outcome.success for outcome in outcomes):
        report.recipients_reached += 1
      else:
        report.unreached[user_id] = DeliveryFailureReason.ALL_DEVICES_FAILED.value

    report.successful = sum(1 for outcome in report.outcomes if outcome.success)
    report.failed = len(report.outcomes) - report.successful

    await self._record(event, report)
    self._log_summary(event, report)
    return report

  async def _load_actor(self, event: NotificationEvent) -> ActorProfile:
    actor_id = event.actor_id
    assert actor_id is not None
    try:
      actor = await self._directory.get_actor_profile(actor_id)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Actor lookup failed actor_id=%s: %s", actor_id, exc)
      actor = None

    # Deleted or unknown actors still get a readable notification.
    if actor is None:
      logger.warning("Actor profile unavailable actor_id=%s; using fallback name", actor_id)
      return ActorProfile(user_id=actor_id, display_name=_FALLBACK_ACTOR_NAME)
    return actor

  async def _deliver_to_recipient(self, user_id: uuid.UUID, payload: NotificationPayload) -> tuple[list[DeviceOutcome], str | None]:
    """Send to every eligible device of one user; returns outcomes or an unreached reason."""
    try:
      devices = await self._registry.list_eligible_devices(user_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Device lookup failed user_id=%s: %s", user_id, exc, exc_info=True)
      return [], DeliveryFailureReason.RECIPIENT_LOOKUP_FAILED.value

    # Disabled devices were filtered out by the registry.
    if not devices:
      return [], DeliveryFailureReason.NO_ENABLED_DEVICES.value

    # Devices of one user are sent in parallel; each returns its own outcome.
    outcomes = await asyncio.gather(*(self._deliver_to_device(device, payload) for device in devices))
    return list(outcomes), None

  async def _deliver_to_device(self, device: DeviceRecord, payload: NotificationPayload) -> DeviceOutcome:
    try:
      async with self._send_slot():
        outcome = await self._router.deliver(device, payload)
    except Exception as exc:  # noqa: BLE001
      logger.error("Transport raised user_id=%s device_id=%s: %s", device.user_id, device.device_id, exc, exc_info=True)
      reason = f"{DeliveryFailureReason.TRANSPORT_ERROR.value}: {type(exc).__name__}: {exc}"
      return DeviceOutcome(user_id=device.user_id, device_id=device.device_id, transport_kind=device.transport_kind, success=False, failure=DeliveryFailureReason.TRANSPORT_ERROR, error_reason=reason)

    # Failures are logged per device and counted, never raised.
    if not outcome.success:
      logger.warning("Push delivery failed user_id=%s device_id=%s transport=%s reason=%s", device.user_id, device.device_id, device.transport_kind.value, outcome.error_reason)

    return DeviceOutcome(
      user_id=device.user_id,
      device_id=device.device_id,
      transport_kind=device.transport_kind,
      success=outcome.success,
      failure=outcome.failure,
      error_reason=outcome.error_reason,
      invalid_credential=outcome.invalid_credential,
    )

  def _send_slot(self) -> AbstractAsyncContextManager[object]:
    if self._semaphore is None:
      return nullcontext()
    return self._semaphore

  async def _record(self, event: NotificationEvent, report: DeliveryReport) -> None:
    try:
      await self._delivery_log_repo.insert_many(entries_for_report(event, report))
    except Exception as exc:  # noqa: BLE001
      # The audit log is best effort; sends already happened.
      logger.error("Delivery log insert failed event_type=%s: %s", event.type.value, exc, exc_info=True)

  @staticmethod
  def _log_summary(event: NotificationEvent, report: DeliveryReport) -> None:
    invalid = sum(1 for outcome in report.outcomes if outcome.invalid_credential)
    logger.info(
      "Fan-out complete event_type=%s actor_id=%s recipients=%s reached=%s successful=%s failed=%s unreached=%s invalid_credentials=%s",
      event.type.value,
      event.actor_id,
      report.total_recipients,
      report.recipients_reached,
      report.successful,
      report.failed,
      len(report.unreached),
      invalid,
    )

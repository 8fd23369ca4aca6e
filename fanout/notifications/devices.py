"""Device registry implementations keyed by (user_id, device_id)."""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import replace

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fanout.core.database import require_session_factory
from fanout.notifications.contracts import DeviceNotFoundError, DeviceRecord, Platform, TransportKind
from fanout.schema.sql import UserDevice

logger = logging.getLogger(__name__)

_DESKTOP_PLATFORMS = frozenset({Platform.WEB, Platform.MAC, Platform.WINDOWS})


def select_transport_kind(platform: Platform, *, has_fcm_token: bool, has_web_push: bool, web_push_available: bool) -> TransportKind:
  """Pick the channel for a device once, at registration time.

  Desktop browsers prefer native Web Push when a subscription was supplied and
  the server has VAPID keys; everything else goes through FCM when a token is
  present. A lone Web Push subscription is kept as Web Push even when the
  server cannot currently send it, so the device reports a transport error
  rather than silently switching channel.
  """
  # Native Web Push only when the browser subscribed and VAPID keys are loaded.
  if has_web_push and web_push_available and platform in _DESKTOP_PLATFORMS:
    return TransportKind.WEB_PUSH

  # Mobile apps and FCM-registered browsers.
  if has_fcm_token:
    return TransportKind.FCM

  if has_web_push:
    return TransportKind.WEB_PUSH

  raise ValueError("A device needs an FCM token or a Web Push subscription.")


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def _to_record(row: UserDevice) -> DeviceRecord:
  return DeviceRecord(
    user_id=row.user_id,
    device_id=row.device_id,
    platform=Platform(row.platform),
    transport_kind=TransportKind(row.transport_kind),
    transport_credential=row.transport_credential or "",
    enabled=bool(row.enabled),
    last_active_at=row.last_active_at,
    browser=row.browser,
  )


class SqlDeviceRegistry:
  """Persist devices in Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory

  def _factory(self) -> async_sessionmaker[AsyncSession]:
    return require_session_factory(self._session_factory)

  async def register_device(self, user_id: uuid.UUID, device_id: str, platform: Platform, credential: str, *, transport_kind: TransportKind = TransportKind.FCM, browser: str | None = None) -> DeviceRecord:
    """Insert a device or refresh the existing row for the same device id."""
    async with self._factory()() as session:
      return await self._register_with_session(session=session, user_id=user_id, device_id=device_id, platform=platform, credential=credential, transport_kind=transport_kind, browser=browser)

  async def _register_with_session(self, *, session: AsyncSession, user_id: uuid.UUID, device_id: str, platform: Platform, credential: str, transport_kind: TransportKind, browser: str | None, retry: bool = True) -> DeviceRecord:
    stmt = select(UserDevice).where(UserDevice.user_id == user_id, UserDevice.device_id == device_id)
    result = await session.execute(stmt)
    row = result.scalar_one_or_none()
    now = _utcnow()

    # First registration for this device id.
    if row is None:
      row = UserDevice(user_id=user_id, device_id=device_id, platform=platform.value, transport_kind=transport_kind.value, transport_credential=credential, browser=browser, enabled=True, last_active_at=now)
      session.add(row)
    else:
      # Credentials rotate over a device's lifetime; replace in place.
      row.platform = platform.value
      row.transport_kind = transport_kind.value
      row.transport_credential = credential
      row.browser = browser
      row.enabled = True
      row.last_active_at = now

    try:
      await session.commit()
    except IntegrityError:
      await session.rollback()
      if not retry:
        raise
      # A concurrent registration inserted the same device first; update that row.
      logger.debug("Device insert raced user_id=%s device_id=%s; retrying as update", user_id, device_id)
      return await self._register_with_session(session=session, user_id=user_id, device_id=device_id, platform=platform, credential=credential, transport_kind=transport_kind, browser=browser, retry=False)

    return _to_record(row)

  async def unregister_device(self, user_id: uuid.UUID, device_id: str) -> bool:
    """Delete a device owned by the user. Missing devices are not an error."""
    async with self._factory()() as session:
      return await self._unregister_with_session(session=session, user_id=user_id, device_id=device_id)

  async def _unregister_with_session(self, *, session: AsyncSession, user_id: uuid.UUID, device_id: str) -> bool:
    # Scope the delete to the owner so users cannot remove other users' devices.
    stmt = delete(UserDevice).where(UserDevice.user_id == user_id, UserDevice.device_id == device_id)
    result = await session.execute(stmt)
    await session.commit()
    return bool(result.rowcount)

  async def set_enabled(self, user_id: uuid.UUID, device_id: str, enabled: bool) -> DeviceRecord:
    """Toggle a device's kill switch."""
    async with self._factory()() as session:
      return await self._set_enabled_with_session(session=session, user_id=user_id, device_id=device_id, enabled=enabled)

  async def _set_enabled_with_session(self, *, session: AsyncSession, user_id: uuid.UUID, device_id: str, enabled: bool) -> DeviceRecord:
    stmt = select(UserDevice).where(UserDevice.user_id == user_id, UserDevice.device_id == device_id)
    result = await session.execute(stmt)
    row = result.scalar_one_or_none()
    # Owner scoping makes another user's device look missing.
    if row is None:
      raise DeviceNotFoundError(user_id, device_id)

    # The kill switch is not a registration; last_active_at stays put.
    row.enabled = enabled
    await session.commit()
    return _to_record(row)

  async def list_devices(self, user_id: uuid.UUID) -> list[DeviceRecord]:
    async with self._factory()() as session:
      stmt = select(UserDevice).where(UserDevice.user_id == user_id).order_by(UserDevice.created_at)
      result = await session.execute(stmt)
      return [_to_record(row) for row in result.scalars().all()]

  async def list_eligible_devices(self, user_id: uuid.UUID) -> list[DeviceRecord]:
    """Enabled devices that hold a credential."""
    async with self._factory()() as session:
      return await self._list_eligible_with_session(session=session, user_id=user_id)

  async def _list_eligible_with_session(self, *, session: AsyncSession, user_id: uuid.UUID) -> list[DeviceRecord]:
    stmt = select(UserDevice).where(UserDevice.user_id == user_id, UserDevice.enabled.is_(True), UserDevice.transport_credential != "")
    result = await session.execute(stmt)
    # Whitespace-only credentials pass the SQL filter; drop them here.
    return [record for record in (_to_record(row) for row in result.scalars().all()) if record.is_eligible]


class InMemoryDeviceRegistry:
  """Process-local registry used when no database is configured."""

  def __init__(self) -> None:
    self._devices: dict[uuid.UUID, dict[str, DeviceRecord]] = {}

  async def register_device(self, user_id: uuid.UUID, device_id: str, platform: Platform, credential: str, *, transport_kind: TransportKind = TransportKind.FCM, browser: str | None = None) -> DeviceRecord:
    devices = self._devices.setdefault(user_id, {})
    existing = devices.get(device_id)
    now = _utcnow()
    # Same upsert semantics as the SQL registry.
    if existing is None:
      record = DeviceRecord(user_id=user_id, device_id=device_id, platform=platform, transport_kind=transport_kind, transport_credential=credential, enabled=True, last_active_at=now, browser=browser)
    else:
      record = replace(existing, platform=platform, transport_kind=transport_kind, transport_credential=credential, enabled=True, last_active_at=now, browser=browser)
    devices[device_id] = record
    return record

  async def unregister_device(self, user_id: uuid.UUID, device_id: str) -> bool:
    devices = self._devices.get(user_id, {})
    return devices.pop(device_id, None) is not None

  async def set_enabled(self, user_id: uuid.UUID, device_id: str, enabled: bool) -> DeviceRecord:
    devices = self._devices.get(user_id, {})
    existing = devices.get(device_id)
    if existing is None:
      raise DeviceNotFoundError(user_id, device_id)
    # Toggling leaves last_active_at untouched.
    record = replace(existing, enabled=enabled)
    devices[device_id] = record
    return record

  async def list_devices(self, user_id: uuid.UUID) -> list[DeviceRecord]:
    return list(self._devices.get(user_id, {}).values())

  async def list_eligible_devices(self, user_id: uuid.UUID) -> list[DeviceRecord]:
    return [record for record in self._devices.get(user_id, {}).values() if record.is_eligible]

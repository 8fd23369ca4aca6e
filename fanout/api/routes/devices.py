"""Routes for push device registration and lifecycle management."""

from __future__ import annotations

import datetime
import json
import re
import urllib.parse
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Response, status
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

from fanout.api.deps import get_device_registry, get_web_push_available
from fanout.core.security import get_current_user
from fanout.notifications.contracts import DeviceRecord, DeviceRegistry, Platform, TransportKind
from fanout.notifications.devices import select_transport_kind
from fanout.schema.sql import User

_BASE64_RE = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")
_KNOWN_BROWSERS = {"chrome", "firefox", "safari", "edge", "other"}

router = APIRouter()


def detect_browser(user_agent: str | None) -> str:
  """Best-effort browser family from a User-Agent header."""
  if not user_agent:
    return "other"
  # Edge and Chrome both advertise "Chrome"; Chrome and Safari both advertise "Safari".
  if "Edg" in user_agent:
    return "edge"
  if "Firefox" in user_agent or "FxiOS" in user_agent:
    return "firefox"
  if "Chrome" in user_agent or "CriOS" in user_agent:
    return "chrome"
  if "Safari" in user_agent:
    return "safari"
  return "other"


def detect_platform(user_agent: str | None) -> Platform:
  """Best-effort platform from a User-Agent header; unknown agents are web."""
  if not user_agent:
    return Platform.WEB
  # iOS agents also contain "Mac OS X", so check them first.
  if "iPhone" in user_agent or "iPad" in user_agent:
    return Platform.IOS
  if "Android" in user_agent:
    return Platform.ANDROID
  if "Macintosh" in user_agent or "Mac OS X" in user_agent:
    return Platform.MAC
  if "Windows" in user_agent:
    return Platform.WINDOWS
  return Platform.WEB


class WebPushSubscriptionKeys(BaseModel):
  """Browser-provided key material for Web Push encryption."""

  p256dh: str = Field(min_length=40, max_length=512)
  auth: str = Field(min_length=16, max_length=256)
  model_config = ConfigDict(extra="forbid")

  @field_validator("p256dh", "auth")
  @classmethod
  def validate_key(cls, value: str) -> str:
    normalized = value.strip()
    if not _BASE64_RE.fullmatch(normalized):
      raise PydanticCustomError("push_key_format", "Web Push keys must be base64url encoded.")
    return normalized


class WebPushSubscriptionIn(BaseModel):
  """Standard browser PushSubscription object."""

  endpoint: str = Field(min_length=1, max_length=2048)
  expiration_time: int | None = Field(default=None, alias="expirationTime")
  keys: WebPushSubscriptionKeys
  model_config = ConfigDict(extra="forbid", populate_by_name=True)

  @field_validator("endpoint")
  @classmethod
  def validate_endpoint(cls, value: str) -> str:
    normalized = value.strip()
    parsed = urllib.parse.urlparse(normalized)
    if parsed.scheme.lower() != "https" or not parsed.hostname:
      raise PydanticCustomError("push_endpoint_https", "endpoint must be an https URL.")
    return normalized

  def to_credential(self) -> str:
    return json.dumps({"endpoint": self.endpoint, "keys": {"p256dh": self.keys.p256dh, "auth": self.keys.auth}}, separators=(",", ":"))


class DeviceInfo(BaseModel):
  """Client-reported device hints; override User-Agent detection."""

  browser: str | None = Field(default=None, max_length=32)
  platform: Platform | None = None
  model_config = ConfigDict(extra="ignore")


class DeviceRegisterRequest(BaseModel):
  """Register or refresh one device of the authenticated user."""

  device_id: str = Field(alias="deviceId", min_length=1, max_length=256)
  platform: Platform | None = None
  fcm_token: str | None = Field(default=None, alias="fcmToken", max_length=4096)
  web_push_subscription: WebPushSubscriptionIn | None = Field(default=None, alias="webPushSubscription")
  device_info: DeviceInfo | None = Field(default=None, alias="deviceInfo")
  model_config = ConfigDict(extra="forbid", populate_by_name=True)

  @field_validator("device_id", "fcm_token")
  @classmethod
  def strip_value(cls, value: str | None) -> str | None:
    if value is None:
      return None
    return value.strip() or None

  @model_validator(mode="after")
  def require_credential(self) -> DeviceRegisterRequest:
    if not self.device_id:
      raise PydanticCustomError("device_id_blank", "deviceId must not be blank.")
    if not self.fcm_token and self.web_push_subscription is None:
      raise PydanticCustomError("device_credential_missing", "Provide fcmToken or webPushSubscription.")
    return self


class DeviceEnabledRequest(BaseModel):
  enabled: bool
  model_config = ConfigDict(extra="forbid")


class DeviceResponse(BaseModel):
  """Sanitized device view; credentials are never returned."""

  device_id: str = Field(serialization_alias="deviceId")
  platform: Platform
  transport_kind: TransportKind = Field(serialization_alias="transportKind")
  browser: str | None
  enabled: bool
  last_active_at: datetime.datetime = Field(serialization_alias="lastActiveAt")

  @classmethod
  def from_record(cls, record: DeviceRecord) -> DeviceResponse:
    return cls(device_id=record.device_id, platform=record.platform, transport_kind=record.transport_kind, browser=record.browser, enabled=record.enabled, last_active_at=record.last_active_at)


class DeviceListResponse(BaseModel):
  devices: list[DeviceResponse]


DeviceIdPath = Annotated[str, Path(min_length=1, max_length=256)]


@router.post("/devices", response_model=DeviceResponse, response_model_by_alias=True)
async def register_device(
  payload: DeviceRegisterRequest,
  current_user: User = Depends(get_current_user),  # noqa: B008
  registry: DeviceRegistry = Depends(get_device_registry),  # noqa: B008
  web_push_available: bool = Depends(get_web_push_available),  # noqa: B008
  user_agent: str | None = Header(default=None),
) -> DeviceResponse:
  """Upsert a device keyed by (user, deviceId); the channel is fixed here."""
  info = payload.device_info or DeviceInfo()
  platform = payload.platform or info.platform or detect_platform(user_agent)
  browser = (info.browser or "").strip().lower() or detect_browser(user_agent)
  if browser not in _KNOWN_BROWSERS:
    browser = "other"

  try:
    transport_kind = select_transport_kind(platform, has_fcm_token=bool(payload.fcm_token), has_web_push=payload.web_push_subscription is not None, web_push_available=web_push_available)
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

  if transport_kind is TransportKind.WEB_PUSH and payload.web_push_subscription is not None:
    credential = payload.web_push_subscription.to_credential()
  else:
    credential = payload.fcm_token or ""

  record = await registry.register_device(current_user.id, payload.device_id, platform, credential, transport_kind=transport_kind, browser=browser)
  return DeviceResponse.from_record(record)


@router.get("/devices", response_model=DeviceListResponse, response_model_by_alias=True)
async def list_devices(current_user: User = Depends(get_current_user), registry: DeviceRegistry = Depends(get_device_registry)) -> DeviceListResponse:  # noqa: B008
  records = await registry.list_devices(current_user.id)
  return DeviceListResponse(devices=[DeviceResponse.from_record(record) for record in records])


@router.patch("/devices/{device_id}", response_model=DeviceResponse, response_model_by_alias=True)
async def set_device_enabled(device_id: DeviceIdPath, payload: DeviceEnabledRequest, current_user: User = Depends(get_current_user), registry: DeviceRegistry = Depends(get_device_registry)) -> DeviceResponse:  # noqa: B008
  """Toggle a device's kill switch; unknown devices raise DeviceNotFoundError (404)."""
  record = await registry.set_enabled(current_user.id, device_id, payload.enabled)
  return DeviceResponse.from_record(record)


@router.delete("/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_device(device_id: DeviceIdPath, current_user: User = Depends(get_current_user), registry: DeviceRegistry = Depends(get_device_registry)) -> Response:  # noqa: B008
  """Remove a device; idempotent."""
  await registry.unregister_device(current_user.id, device_id)
  return Response(status_code=status.HTTP_204_NO_CONTENT)

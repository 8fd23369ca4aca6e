"""Contracts shared by the push fan-out pipeline."""

from __future__ import annotations

import datetime
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
  from fanout.schema.sql import User


class EventType(str, Enum):
  """Content events that can trigger a notification."""

  NEW_POST = "new_post"
  COMMENT = "comment"
  REPLY = "reply"
  LIKE = "like"
  FOLLOW = "follow"


class PreferenceCategory(str, Enum):
  """Keys of a user's notification_preferences map."""

  FOLLOWS = "follows"
  POSTS_FROM_FOLLOWED = "postsFromFollowed"
  COMMENTS_ON_MY_POSTS = "commentsOnMyPosts"
  LIKES_ON_MY_POSTS = "likesOnMyPosts"
  REPLIES_TO_MY_COMMENTS = "repliesToMyComments"


class Platform(str, Enum):
  """Device platform, used only for payload shaping hints."""

  WEB = "web"
  ANDROID = "android"
  IOS = "ios"
  MAC = "mac"
  WINDOWS = "windows"


class TransportKind(str, Enum):
  """Delivery channel chosen for a device when it registers."""

  FCM = "fcm"
  WEB_PUSH = "web_push"


class DeliveryFailureReason(str, Enum):
  """Why a device or recipient was not reached."""

  DISABLED = "disabled"
  NO_CREDENTIAL = "no_credential"
  TRANSPORT_ERROR = "transport_error"
  NO_ENABLED_DEVICES = "no_enabled_devices"
  ALL_DEVICES_FAILED = "all_devices_failed"
  RECIPIENT_LOOKUP_FAILED = "recipient_lookup_failed"


class NotificationError(Exception):
  """Base class for notification pipeline failures."""


class EventValidationError(NotificationError):
  """Raised when an event is malformed; aborts a dispatch before any send."""


class DeviceNotFoundError(NotificationError):
  """Raised when a device id is unknown for the given user."""

  def __init__(self, user_id: uuid.UUID, device_id: str) -> None:
    super().__init__(f"Device {device_id!r} not found for user {user_id}")
    self.user_id = user_id
    self.device_id = device_id


class NotificationProviderError(NotificationError):
  """Raised inside a transport when the push provider rejects a send."""


class InvalidPushSubscriptionError(NotificationProviderError):
  """Raised when a provider reports the credential as permanently invalid."""


class TransientPushProviderError(NotificationProviderError):
  """Raised for provider failures that may succeed on a later event."""


@dataclass(frozen=True)
class DeviceRecord:
  """A registered device as seen by the fan-out pipeline."""

  user_id: uuid.UUID
  device_id: str
  platform: Platform
  transport_kind: TransportKind
  transport_credential: str
  enabled: bool
  last_active_at: datetime.datetime
  browser: str | None = None

  @property
  def is_eligible(self) -> bool:
    return self.enabled and bool(self.transport_credential.strip())


@dataclass(frozen=True)
class SubjectRef:
  """The post, comment or user an event is about."""

  id: str
  text: str = ""
  post_id: str | None = None
  owner_id: uuid.UUID | None = None


@dataclass(frozen=True)
class NotificationEvent:
  """A content event to fan out. Never persisted."""

  type: EventType
  actor_id: uuid.UUID | None
  subject: SubjectRef | None

  @property
  def post_id(self) -> str | None:
    if self.subject is None:
      return None
    if self.subject.post_id:
      return self.subject.post_id
    if self.type in {EventType.NEW_POST, EventType.LIKE}:
      return self.subject.id
    return None

  def validate(self) -> None:
    """Raise EventValidationError unless the event can be dispatched."""
    if self.actor_id is None:
      raise EventValidationError("Event is missing its actor.")
    if self.subject is None or not str(self.subject.id).strip():
      raise EventValidationError("Event is missing its subject.")
    if self.type is not EventType.NEW_POST and self.subject.owner_id is None:
      raise EventValidationError(f"{self.type.value} events require the subject owner.")
    if self.type in {EventType.COMMENT, EventType.REPLY, EventType.LIKE} and not self.post_id:
      raise EventValidationError(f"{self.type.value} events require a post id.")


@dataclass(frozen=True)
class ActorProfile:
  """Display data for the user who triggered an event."""

  user_id: uuid.UUID
  display_name: str
  avatar_url: str | None = None


@dataclass(frozen=True)
class NotificationPayload:
  """Transport-agnostic notification content; data values are always strings."""

  title: str
  body: str
  icon: str
  badge: str
  data: dict[str, str]

  @property
  def url(self) -> str:
    return self.data.get("url", "/")

  def to_dict(self) -> dict[str, Any]:
    return {"title": self.title, "body": self.body, "icon": self.icon, "badge": self.badge, "data": dict(self.data)}


@dataclass(frozen=True)
class SendOutcome:
  """Result of one transport send. Transports return it instead of raising."""

  success: bool
  failure: DeliveryFailureReason | None = None
  detail: str | None = None
  message_id: str | None = None
  invalid_credential: bool = False

  @classmethod
  def ok(cls, message_id: str | None = None) -> SendOutcome:
    return cls(success=True, message_id=message_id)

  @classmethod
  def failed(cls, failure: DeliveryFailureReason, detail: str | None = None, *, invalid_credential: bool = False) -> SendOutcome:
    return cls(success=False, failure=failure, detail=detail, invalid_credential=invalid_credential)

  @property
  def error_reason(self) -> str | None:
    if self.success or self.failure is None:
      return None
    if self.detail:
      return f"{self.failure.value}: {self.detail}"
    return self.failure.value


@dataclass(frozen=True)
class DeviceOutcome:
  """Per-device entry of a DeliveryReport."""

  user_id: uuid.UUID
  device_id: str
  transport_kind: TransportKind
  success: bool
  failure: DeliveryFailureReason | None = None
  error_reason: str | None = None
  invalid_credential: bool = False


@dataclass
class DeliveryReport:
  """Advisory outcome of one fan-out run."""

  event_type: EventType
  total_recipients: int = 0
  recipients_reached: int = 0
  successful: int = 0
  failed: int = 0
  outcomes: list[DeviceOutcome] = field(default_factory=list)
  unreached: dict[uuid.UUID, str] = field(default_factory=dict)
  error: str | None = None

  @classmethod
  def empty(cls, event_type: EventType, *, error: str | None = None) -> DeliveryReport:
    return cls(event_type=event_type, error=error)

  @property
  def is_partial(self) -> bool:
    return self.failed > 0 and self.successful > 0

  def to_log_dict(self) -> dict[str, Any]:
    return {
      "event_type": self.event_type.value,
      "total_recipients": self.total_recipients,
      "recipients_reached": self.recipients_reached,
      "successful": self.successful,
      "failed": self.failed,
      "unreached": {str(user_id): reason for user_id, reason in self.unreached.items()},
      "error": self.error,
    }


class PushTransport(Protocol):
  """Delivery contract for one push channel."""

  async def send(self, credential: str, payload: NotificationPayload, *, platform: Platform | None = None) -> SendOutcome:
    """Deliver one payload to one credential. Must not raise."""


class DeviceRegistry(Protocol):
  """Source of truth for a user's devices."""

  async def register_device(self, user_id: uuid.UUID, device_id: str, platform: Platform, credential: str, *, transport_kind: TransportKind = TransportKind.FCM, browser: str | None = None) -> DeviceRecord: ...

  async def unregister_device(self, user_id: uuid.UUID, device_id: str) -> bool: ...

  async def set_enabled(self, user_id: uuid.UUID, device_id: str, enabled: bool) -> DeviceRecord: ...

  async def list_devices(self, user_id: uuid.UUID) -> list[DeviceRecord]: ...

  async def list_eligible_devices(self, user_id: uuid.UUID) -> list[DeviceRecord]: ...


class UserDirectory(Protocol):
  """Read-only view of users needed to resolve recipients and actors."""

  async def list_follower_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]: ...

  async def get_preferences(self, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, dict[str, Any]]: ...

  async def get_actor_profile(self, user_id: uuid.UUID) -> ActorProfile | None: ...

  async def get_user_by_firebase_uid(self, firebase_uid: str) -> User | None: ...

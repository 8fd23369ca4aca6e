"""SQLAlchemy models for users, follows, devices and delivery logs."""

from __future__ import annotations

import datetime
import uuid
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from fanout.core.database import Base


class User(Base):
  """Social user row; owned by the content service, read here for fan-out."""

  __tablename__ = "users"

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  firebase_uid: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
  display_name: Mapped[str] = mapped_column(String, nullable=False)
  avatar_url: Mapped[str | None] = mapped_column(String, nullable=True)
  notification_preferences: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict, server_default="{}")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class UserFollow(Base):
  """Directed follow edge: follower_id follows followee_id."""

  __tablename__ = "user_follows"
  __table_args__ = (UniqueConstraint("follower_id", "followee_id", name="uq_user_follows_pair"),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  follower_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
  followee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class UserDevice(Base):
  """A push-capable device registered by a user."""

  __tablename__ = "user_devices"
  __table_args__ = (UniqueConstraint("user_id", "device_id", name="uq_user_devices_user_device"),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
  device_id: Mapped[str] = mapped_column(String(256), nullable=False)
  platform: Mapped[str] = mapped_column(String(16), nullable=False)
  transport_kind: Mapped[str] = mapped_column(String(16), nullable=False, server_default="fcm")
  transport_credential: Mapped[str] = mapped_column(Text, nullable=False)
  browser: Mapped[str | None] = mapped_column(String(32), nullable=True)
  enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  last_active_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class NotificationDeliveryLog(Base):
  """One row per device send attempt made by a fan-out run."""

  __tablename__ = "notification_delivery_logs"
  __table_args__ = (Index("ix_notification_delivery_logs_recipient_status", "recipient_id", "status"),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  event_type: Mapped[str] = mapped_column(String(32), nullable=False)
  actor_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
  subject_id: Mapped[str] = mapped_column(String(256), index=True, nullable=False)
  recipient_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
  device_id: Mapped[str] = mapped_column(String(256), nullable=False)
  transport_kind: Mapped[str] = mapped_column(String(16), nullable=False)
  status: Mapped[str] = mapped_column(String(16), nullable=False)
  error_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

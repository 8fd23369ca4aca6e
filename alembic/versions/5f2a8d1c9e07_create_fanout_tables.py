"""Create users, follows, devices and delivery log tables.

Revision ID: 5f2a8d1c9e07
Revises:
Create Date: 2026-10-19 09:12:40.118204
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "5f2a8d1c9e07"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "users",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("firebase_uid", sa.String(), nullable=False),
    sa.Column("display_name", sa.String(), nullable=False),
    sa.Column("avatar_url", sa.String(), nullable=True),
    sa.Column("notification_preferences", postgresql.JSONB(astext_type=sa.Text()), server_default="{}", nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_users_firebase_uid"), "users", ["firebase_uid"], unique=True)

  op.create_table(
    "user_follows",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("follower_id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("followee_id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["follower_id"], ["users.id"], ondelete="CASCADE"),
    sa.ForeignKeyConstraint(["followee_id"], ["users.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("follower_id", "followee_id", name="uq_user_follows_pair"),
  )
  op.create_index(op.f("ix_user_follows_follower_id"), "user_follows", ["follower_id"], unique=False)
  op.create_index(op.f("ix_user_follows_followee_id"), "user_follows", ["followee_id"], unique=False)

  op.create_table(
    "user_devices",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("device_id", sa.String(length=256), nullable=False),
    sa.Column("platform", sa.String(length=16), nullable=False),
    sa.Column("transport_kind", sa.String(length=16), server_default="fcm", nullable=False),
    sa.Column("transport_credential", sa.Text(), nullable=False),
    sa.Column("browser", sa.String(length=32), nullable=True),
    sa.Column("enabled", sa.Boolean(), server_default="true", nullable=False),
    sa.Column("last_active_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("user_id", "device_id", name="uq_user_devices_user_device"),
  )
  op.create_index(op.f("ix_user_devices_user_id"), "user_devices", ["user_id"], unique=False)

  op.create_table(
    "notification_delivery_logs",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("event_type", sa.String(length=32), nullable=False),
    sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("subject_id", sa.String(length=256), nullable=False),
    sa.Column("recipient_id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("device_id", sa.String(length=256), nullable=False),
    sa.Column("transport_kind", sa.String(length=16), nullable=False),
    sa.Column("status", sa.String(length=16), nullable=False),
    sa.Column("error_reason", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_notification_delivery_logs_subject_id"), "notification_delivery_logs", ["subject_id"], unique=False)
  op.create_index(op.f("ix_notification_delivery_logs_created_at"), "notification_delivery_logs", ["created_at"], unique=False)
  op.create_index("ix_notification_delivery_logs_recipient_status", "notification_delivery_logs", ["recipient_id", "status"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index("ix_notification_delivery_logs_recipient_status", table_name="notification_delivery_logs")
  op.drop_index(op.f("ix_notification_delivery_logs_created_at"), table_name="notification_delivery_logs")
  op.drop_index(op.f("ix_notification_delivery_logs_subject_id"), table_name="notification_delivery_logs")
  op.drop_table("notification_delivery_logs")
  op.drop_index(op.f("ix_user_devices_user_id"), table_name="user_devices")
  op.drop_table("user_devices")
  op.drop_index(op.f("ix_user_follows_followee_id"), table_name="user_follows")
  op.drop_index(op.f("ix_user_follows_follower_id"), table_name="user_follows")
  op.drop_table("user_follows")
  op.drop_index(op.f("ix_users_firebase_uid"), table_name="users")
  op.drop_table("users")

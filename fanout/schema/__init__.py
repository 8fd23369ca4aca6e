"""Schema package exports."""

from .sql import Base, NotificationDeliveryLog, User, UserDevice, UserFollow

__all__ = ["Base", "NotificationDeliveryLog", "User", "UserDevice", "UserFollow"]

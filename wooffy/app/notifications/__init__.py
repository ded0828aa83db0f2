"""Member notifications and role assignment."""

from .delivery import (
    MEMBER_ROLE,
    LoggingNotificationEmitter,
    LoggingRoleAssigner,
    NotificationEmitter,
    PostgresNotificationEmitter,
    PostgresRoleAssigner,
    RoleAssigner,
    dispatch_notification,
)
from .models import (
    GiftMembershipNotification,
    GiftMembershipUpdatedNotification,
    MembershipExpiryNotification,
    MembershipNotification,
    parse_notification,
)

__all__ = [
    "GiftMembershipNotification",
    "GiftMembershipUpdatedNotification",
    "LoggingNotificationEmitter",
    "LoggingRoleAssigner",
    "MEMBER_ROLE",
    "MembershipExpiryNotification",
    "MembershipNotification",
    "NotificationEmitter",
    "PostgresNotificationEmitter",
    "PostgresRoleAssigner",
    "RoleAssigner",
    "dispatch_notification",
    "parse_notification",
]

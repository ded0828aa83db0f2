"""Expiry reminder sweep for memberships approaching their end date."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from ..notifications.delivery import NotificationEmitter, dispatch_notification
from ..notifications.models import MembershipExpiryNotification
from .exceptions import ConflictError, MembershipError
from .lifecycle import LifecycleEngine
from .models import Membership

logger = logging.getLogger("memberships.reminders")

REMINDER_WINDOW = timedelta(days=30)

# (max days left, reminder type, title), checked in order
REMINDER_TIERS: Tuple[Tuple[int, str, str], ...] = (
    (3, "expiry_3_days", "⚠️ Membership Expiring in 3 Days!"),
    (7, "expiry_7_days", "📅 Membership Expiring Soon"),
    (30, "expiry_30_days", "🔔 Membership Renewal Reminder"),
)


def days_until(expires_at: datetime, now: datetime) -> int:
    return max(0, math.ceil((expires_at - now).total_seconds() / 86400))


def select_tier(days_left: int) -> Optional[Tuple[str, str]]:
    for limit, reminder_type, title in REMINDER_TIERS:
        if days_left <= limit:
            return reminder_type, title
    return None


def _reminder_message(reminder_type: str, days_left: int, expires_at: datetime) -> str:
    expiry = expires_at.date().isoformat()
    if reminder_type == "expiry_3_days":
        return f"Your Wooffy membership expires on {expiry}. Renew now to keep enjoying exclusive discounts!"
    if reminder_type == "expiry_7_days":
        return f"Your membership expires in {days_left} days. Renew early and save with our loyalty discount!"
    return f"Your Wooffy membership expires on {expiry}. Plan ahead and renew to continue saving!"


@dataclass
class ReminderSummary:
    checked: int = 0
    sent: int = 0
    skipped: int = 0
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": list(self.failed),
        }


@dataclass
class ExpiryReminderService:
    """Sends at most one reminder per tier for each membership nearing expiry.

    Runs on demand; scheduling belongs to whoever calls it. A failure for one
    member is logged and the sweep moves on.
    """

    engine: LifecycleEngine
    notifier: NotificationEmitter
    window: timedelta = REMINDER_WINDOW

    def send_due_reminders(self) -> ReminderSummary:
        now = self.engine.now()
        with self.engine.store.transaction() as txn:
            candidates = [
                membership
                for membership in txn.list_memberships_expiring(now, now + self.window)
                if membership.is_entitled(now)
            ]

        summary = ReminderSummary(checked=len(candidates))
        for membership in candidates:
            days_left = days_until(membership.expires_at, now)
            tier = select_tier(days_left)
            if tier is None:
                summary.skipped += 1
                continue
            reminder_type, title = tier
            try:
                delivered = self._remind(membership, reminder_type, title, days_left)
            except ConflictError:
                logger.info(
                    "Expiry reminder already claimed by another sweep",
                    extra={"membership_id": membership.id, "reminder_type": reminder_type},
                )
                summary.skipped += 1
                continue
            except MembershipError:
                logger.warning(
                    "Could not record expiry reminder",
                    extra={"membership_id": membership.id, "reminder_type": reminder_type},
                )
                summary.failed.append(membership.id)
                continue
            except Exception:
                logger.exception(
                    "Failed to send expiry reminder",
                    extra={"membership_id": membership.id, "reminder_type": reminder_type},
                )
                summary.failed.append(membership.id)
                continue
            if delivered:
                summary.sent += 1
            else:
                summary.skipped += 1

        logger.info("Expiry reminder sweep finished", extra=summary.to_dict())
        return summary

    def _remind(self, membership: Membership, reminder_type: str, title: str, days_left: int) -> bool:
        """Claim the tier, then send once the claim has committed.

        A failed delivery releases the claim so a later sweep can try again.
        """

        with self.engine.store.transaction() as txn:
            if txn.reminder_sent(membership.id, reminder_type):
                return False
            if not txn.record_reminder(membership.id, membership.owner_id, reminder_type, days_left):
                return False

        try:
            dispatch_notification(
                self.notifier,
                membership.owner_id,
                MembershipExpiryNotification(
                    title=title,
                    message=_reminder_message(reminder_type, days_left, membership.expires_at),
                    membership_id=membership.id,
                    days_left=days_left,
                    reminder_type=reminder_type,
                    expires_at=membership.expires_at,
                ),
            )
        except Exception:
            self._release(membership, reminder_type)
            raise
        return True

    def _release(self, membership: Membership, reminder_type: str) -> None:
        try:
            with self.engine.store.transaction() as txn:
                txn.release_reminder(membership.id, reminder_type)
        except MembershipError:
            logger.exception(
                "Could not release expiry reminder after failed delivery",
                extra={"membership_id": membership.id, "reminder_type": reminder_type},
            )


__all__ = ["ExpiryReminderService", "REMINDER_TIERS", "ReminderSummary", "days_until", "select_tier"]

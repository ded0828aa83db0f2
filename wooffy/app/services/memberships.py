"""Application wiring for the membership services."""
from __future__ import annotations

import logging
from functools import lru_cache

from wooffy.config import MembershipConfig, load_membership_config

from ..memberships import InMemoryMembershipStore, LifecycleEngine, MembershipStore
from ..memberships.grants import GrantAdministrator
from ..memberships.reminders import ExpiryReminderService
from ..memberships.repository import PostgresMembershipStore
from ..memberships.verification import MemberVerifier
from ..notifications import (
    LoggingNotificationEmitter,
    LoggingRoleAssigner,
    NotificationEmitter,
    PostgresNotificationEmitter,
    PostgresRoleAssigner,
    RoleAssigner,
)

logger = logging.getLogger("memberships")


@lru_cache(maxsize=1)
def get_membership_config() -> MembershipConfig:
    return load_membership_config()


def _uses_memory_store() -> bool:
    return get_membership_config().store_backend == "memory"


@lru_cache(maxsize=1)
def get_membership_store() -> MembershipStore:
    config = get_membership_config()
    if _uses_memory_store():
        logger.warning("Using the in-memory membership store; data will not survive a restart")
        return InMemoryMembershipStore()
    return PostgresMembershipStore(
        statement_timeout_ms=config.statement_timeout_ms,
        lock_timeout_ms=config.lock_timeout_ms,
    )


@lru_cache(maxsize=1)
def get_notification_emitter() -> NotificationEmitter:
    if _uses_memory_store():
        return LoggingNotificationEmitter()
    return PostgresNotificationEmitter()


@lru_cache(maxsize=1)
def get_role_assigner() -> RoleAssigner:
    if _uses_memory_store():
        return LoggingRoleAssigner()
    return PostgresRoleAssigner()


@lru_cache(maxsize=1)
def get_lifecycle_engine() -> LifecycleEngine:
    config = get_membership_config()
    return LifecycleEngine(
        store=get_membership_store(),
        term=config.term,
        conflict_retries=config.conflict_retries,
        member_number_prefix=config.member_number_prefix,
    )


@lru_cache(maxsize=1)
def get_grant_administrator() -> GrantAdministrator:
    return GrantAdministrator(
        engine=get_lifecycle_engine(),
        notifier=get_notification_emitter(),
        roles=get_role_assigner(),
    )


@lru_cache(maxsize=1)
def get_reminder_service() -> ExpiryReminderService:
    return ExpiryReminderService(engine=get_lifecycle_engine(), notifier=get_notification_emitter())


@lru_cache(maxsize=1)
def get_member_verifier() -> MemberVerifier:
    return MemberVerifier(engine=get_lifecycle_engine())


__all__ = [
    "get_grant_administrator",
    "get_lifecycle_engine",
    "get_member_verifier",
    "get_membership_config",
    "get_membership_store",
    "get_notification_emitter",
    "get_reminder_service",
    "get_role_assigner",
]

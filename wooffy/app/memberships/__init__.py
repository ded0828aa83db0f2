"""Membership plans, quotas and lifecycle transitions."""

from .catalog import PLAN_CATALOG, PlanDefinition, get_plan, list_plans
from .exceptions import (
    AlreadyActiveError,
    ConflictError,
    MembershipError,
    NotFoundError,
    QuotaExceeded,
    QuotaReached,
    StoreUnavailable,
    ValidationError,
)
from .lifecycle import LifecycleEngine
from .memory import InMemoryMembershipStore
from .models import (
    EffectiveStatus,
    LifecycleState,
    Membership,
    MembershipStatusView,
    PlanKey,
    PromoGrant,
    PromoGrantReason,
)
from .quota import (
    QuotaEvaluation,
    assert_can_add_pet,
    assert_downgrade_allowed,
    validate_add_pet,
    validate_downgrade,
)
from .store import MembershipStore, MembershipTransaction

__all__ = [
    "AlreadyActiveError",
    "ConflictError",
    "EffectiveStatus",
    "InMemoryMembershipStore",
    "LifecycleEngine",
    "LifecycleState",
    "Membership",
    "MembershipError",
    "MembershipStatusView",
    "MembershipStore",
    "MembershipTransaction",
    "NotFoundError",
    "PLAN_CATALOG",
    "PlanDefinition",
    "PlanKey",
    "PromoGrant",
    "PromoGrantReason",
    "QuotaEvaluation",
    "QuotaExceeded",
    "QuotaReached",
    "StoreUnavailable",
    "ValidationError",
    "assert_can_add_pet",
    "assert_downgrade_allowed",
    "get_plan",
    "list_plans",
    "validate_add_pet",
    "validate_downgrade",
]

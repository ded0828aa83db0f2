"""Member number lookups used by partner businesses at the counter."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .exceptions import ValidationError
from .lifecycle import LifecycleEngine
from .models import PlanKey

logger = logging.getLogger("memberships.verification")

MEMBER_NUMBER_MAX_LENGTH = 50


class VerificationStatus(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    INVALID = "invalid"


@dataclass(frozen=True)
class VerificationResult:
    status: VerificationStatus
    member_number: str
    plan_key: Optional[PlanKey] = None
    pet_count: Optional[int] = None
    expires_at: Optional[datetime] = None

    @property
    def is_valid(self) -> bool:
        return self.status is VerificationStatus.VALID


@dataclass
class MemberVerifier:
    engine: LifecycleEngine

    def verify(self, member_number: str) -> VerificationResult:
        """Report whether ``member_number`` currently carries member benefits."""

        if not isinstance(member_number, str):
            raise ValidationError("Invalid member ID format.", code="invalid_member_number")
        cleaned = member_number.strip()
        if not cleaned or len(cleaned) > MEMBER_NUMBER_MAX_LENGTH:
            raise ValidationError(
                "Invalid member ID format.",
                code="invalid_member_number",
                detail={"max_length": MEMBER_NUMBER_MAX_LENGTH},
            )

        now = self.engine.now()
        with self.engine.store.transaction() as txn:
            membership = txn.get_membership_by_number(cleaned)
            pet_count = txn.count_pets(membership.id) if membership is not None else None

        if membership is None:
            logger.info("Member verification failed", extra={"member_number": cleaned})
            return VerificationResult(status=VerificationStatus.INVALID, member_number=cleaned)

        status = VerificationStatus.VALID if membership.is_entitled(now) else VerificationStatus.EXPIRED
        return VerificationResult(
            status=status,
            member_number=membership.member_number,
            plan_key=membership.plan_key,
            pet_count=pet_count,
            expires_at=membership.expires_at,
        )


__all__ = ["MEMBER_NUMBER_MAX_LENGTH", "MemberVerifier", "VerificationResult", "VerificationStatus"]

"""Error taxonomy raised by the membership lifecycle engine."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class MembershipError(Exception):
    """Base class for actionable membership failures surfaced to callers."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class ValidationError(MembershipError):
    """Malformed input such as an empty plan id or a negative month count."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "validation_error",
        detail: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )


class NotFoundError(MembershipError):
    """A membership, promo grant or plan id that does not exist."""

    def __init__(self, entity: str, identifier: object) -> None:
        super().__init__(
            code="not_found",
            message=f"{entity.replace('_', ' ').capitalize()} {identifier} was not found.",
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"entity": entity, "id": str(identifier)},
        )

    @property
    def entity(self) -> str:
        return str(self.payload["entity"])


class QuotaExceeded(MembershipError):
    """A plan change that would leave more pets than the target plan allows."""

    def __init__(self, *, excess: int, pet_count: int, max_pets: int, plan_key: str) -> None:
        noun = "pet" if excess == 1 else "pets"
        super().__init__(
            code="quota_exceeded",
            message=(
                f"Your membership has {pet_count} pets but the {plan_key} plan allows "
                f"{max_pets}. Remove {excess} {noun} before switching plans."
            ),
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "excess": excess,
                "pet_count": pet_count,
                "max_pets": max_pets,
                "plan": plan_key,
            },
        )

    @property
    def excess(self) -> int:
        return int(self.payload["excess"])


class QuotaReached(MembershipError):
    """Adding another pet would exceed the membership's pet quota."""

    def __init__(self, *, max_pets: int, pet_count: int) -> None:
        super().__init__(
            code="pet_quota_reached",
            message="You've reached your pet limit. Upgrade your plan to add more pets!",
            status_code=status.HTTP_409_CONFLICT,
            detail={"max_pets": max_pets, "pet_count": pet_count},
        )


class AlreadyActiveError(MembershipError):
    """The owner already holds an effectively active membership."""

    def __init__(
        self,
        *,
        owner_id: str,
        membership_id: str,
        member_number: str,
        plan_key: str,
        expires_at: datetime,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            code="membership_already_active",
            message=message
            or (
                f"You already have an active {plan_key} membership until "
                f"{expires_at.date().isoformat()}."
            ),
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "owner_id": owner_id,
                "membership_id": membership_id,
                "member_number": member_number,
                "plan": plan_key,
                "expires_at": expires_at.isoformat(),
            },
        )


class ConflictError(MembershipError):
    """A concurrent write changed the record between read and commit."""

    def __init__(self, entity: str, identifier: object, message: Optional[str] = None) -> None:
        super().__init__(
            code="conflict",
            message=message
            or f"The {entity.replace('_', ' ')} was modified concurrently. Reload and try again.",
            status_code=status.HTTP_409_CONFLICT,
            detail={"entity": entity, "id": str(identifier)},
        )


class StoreUnavailable(MembershipError):
    """Persistence is unreachable or a statement timed out."""

    def __init__(self, message: str = "Membership storage is temporarily unavailable. Please retry.") -> None:
        super().__init__(
            code="store_unavailable",
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


__all__ = [
    "AlreadyActiveError",
    "ConflictError",
    "MembershipError",
    "NotFoundError",
    "QuotaExceeded",
    "QuotaReached",
    "StoreUnavailable",
    "ValidationError",
]

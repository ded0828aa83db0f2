"""Pet quota evaluation for plan changes and pet additions."""
from __future__ import annotations

from dataclasses import dataclass

from .catalog import PlanDefinition
from .exceptions import QuotaExceeded, QuotaReached, ValidationError
from .models import Membership


@dataclass(frozen=True)
class QuotaEvaluation:
    """Represents the outcome of a pet quota check."""

    max_pets: int
    pet_count: int
    excess: int
    allowed: bool

    def to_dict(self) -> dict[str, int | bool]:
        """Serialize the evaluation for logging."""

        return {
            "max_pets": self.max_pets,
            "pet_count": self.pet_count,
            "excess": self.excess,
            "allowed": self.allowed,
        }


def _check_count(pet_count: int) -> None:
    if pet_count < 0:
        raise ValidationError(
            "Pet count cannot be negative.",
            code="invalid_pet_count",
            detail={"pet_count": pet_count},
        )


def validate_downgrade(current_pet_count: int, target_plan: PlanDefinition) -> QuotaEvaluation:
    """Determine whether the current pets fit into ``target_plan``."""

    _check_count(current_pet_count)
    excess = max(0, current_pet_count - target_plan.max_pets)
    return QuotaEvaluation(
        max_pets=target_plan.max_pets,
        pet_count=current_pet_count,
        excess=excess,
        allowed=excess == 0,
    )


def validate_add_pet(membership: Membership, current_pet_count: int) -> QuotaEvaluation:
    """Determine whether one more pet fits under the membership's quota."""

    _check_count(current_pet_count)
    projected = current_pet_count + 1
    return QuotaEvaluation(
        max_pets=membership.max_pets,
        pet_count=current_pet_count,
        excess=max(0, projected - membership.max_pets),
        allowed=projected <= membership.max_pets,
    )


def assert_downgrade_allowed(current_pet_count: int, target_plan: PlanDefinition) -> QuotaEvaluation:
    """Raise when switching to ``target_plan`` would exceed its pet quota."""

    evaluation = validate_downgrade(current_pet_count, target_plan)
    if not evaluation.allowed:
        raise QuotaExceeded(
            excess=evaluation.excess,
            pet_count=current_pet_count,
            max_pets=target_plan.max_pets,
            plan_key=target_plan.key.value,
        )
    return evaluation


def assert_can_add_pet(membership: Membership, current_pet_count: int) -> QuotaEvaluation:
    """Raise when the membership has no free pet slot left."""

    evaluation = validate_add_pet(membership, current_pet_count)
    if not evaluation.allowed:
        raise QuotaReached(max_pets=membership.max_pets, pet_count=current_pet_count)
    return evaluation

"""Static catalog definitions for membership plans."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Tuple, Union

from .exceptions import NotFoundError, ValidationError
from .models import PlanKey


@dataclass(frozen=True)
class PlanDefinition:
    """Describes a plan tier, its pet quota and pricing."""

    key: PlanKey
    display_name: str
    max_pets: int
    price_new: Decimal
    price_renewal: Decimal

    def allows(self, pet_count: int) -> bool:
        return pet_count <= self.max_pets


PLAN_CATALOG: Dict[PlanKey, PlanDefinition] = {
    PlanKey.SINGLE: PlanDefinition(
        key=PlanKey.SINGLE,
        display_name="Solo Paw",
        max_pets=1,
        price_new=Decimal("59.00"),
        price_renewal=Decimal("53.10"),
    ),
    PlanKey.DUO: PlanDefinition(
        key=PlanKey.DUO,
        display_name="Dynamic Duo",
        max_pets=2,
        price_new=Decimal("99.00"),
        price_renewal=Decimal("89.10"),
    ),
    PlanKey.FAMILY: PlanDefinition(
        key=PlanKey.FAMILY,
        display_name="Pack Leader",
        max_pets=5,
        price_new=Decimal("129.00"),
        price_renewal=Decimal("116.10"),
    ),
}


def get_plan(plan_id: Union[PlanKey, str]) -> PlanDefinition:
    """Return a plan definition.

    Raises :class:`ValidationError` for malformed identifiers and
    :class:`NotFoundError` for well-formed identifiers outside the catalog.
    """

    if isinstance(plan_id, PlanKey):
        return PLAN_CATALOG[plan_id]
    if not isinstance(plan_id, str) or not plan_id.strip():
        raise ValidationError(
            "A plan id is required.",
            code="invalid_plan_id",
            detail={"plan_id": repr(plan_id)},
        )
    try:
        key = PlanKey(plan_id.strip().lower())
    except ValueError as exc:
        raise NotFoundError("plan", plan_id) from exc
    return PLAN_CATALOG[key]


def list_plans() -> Tuple[PlanDefinition, ...]:
    """Return every plan ordered by pet quota."""

    return tuple(sorted(PLAN_CATALOG.values(), key=lambda plan: plan.max_pets))

"""Administrative routes for memberships and promotional grants."""
from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Any, Callable, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Response, status

from wooffy import app_context

from ..memberships import MembershipError
from ..schemas.memberships import (
    ExpiringMembershipListResponse,
    ExpiringMembershipResponse,
    MembershipActiveRequest,
    MembershipResponse,
    PromoGrantCreateRequest,
    PromoGrantExtendRequest,
    PromoGrantResponse,
    ReminderSweepResponse,
)
from ..services.memberships import get_grant_administrator, get_lifecycle_engine, get_reminder_service

ADMIN_ROLE = "admin"

logger = logging.getLogger("memberships.admin")

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


def _require_admin(current_user=Depends(_get_current_user)):
    roles = getattr(current_user, "roles", None) or ()
    if ADMIN_ROLE not in roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


router = APIRouter(prefix="/api/admin", tags=["admin", "memberships"])


def _run(operation: Callable[[], Any]) -> Any:
    try:
        return operation()
    except MembershipError as exc:
        raise exc.to_http_exception() from exc


@router.post("/promo-grants", response_model=PromoGrantResponse, status_code=status.HTTP_201_CREATED)
def create_promo_grant(
    payload: PromoGrantCreateRequest,
    *,
    current_user=Depends(_require_admin),
) -> PromoGrantResponse:
    administrator = get_grant_administrator()
    grant = _run(
        lambda: administrator.grant(
            payload.owner_id,
            payload.plan_id,
            payload.reason,
            payload.months,
            payload.notes,
            str(current_user.id),
        )
    )
    return PromoGrantResponse.from_grant(grant)


@router.post("/promo-grants/{promo_grant_id}/extend", response_model=PromoGrantResponse)
def extend_promo_grant(
    promo_grant_id: str,
    payload: PromoGrantExtendRequest,
    *,
    current_user=Depends(_require_admin),
) -> PromoGrantResponse:
    administrator = get_grant_administrator()
    grant = _run(
        lambda: administrator.extend(
            promo_grant_id,
            extra_months=payload.extra_months,
            new_plan_id=payload.plan_id,
            notes=payload.notes,
        )
    )
    return PromoGrantResponse.from_grant(grant)


@router.delete("/promo-grants/{promo_grant_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_promo_grant(
    promo_grant_id: str,
    *,
    current_user=Depends(_require_admin),
) -> Response:
    administrator = get_grant_administrator()
    _run(lambda: administrator.revoke(promo_grant_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/memberships/expiry-reminders", response_model=ReminderSweepResponse)
def send_expiry_reminders(*, current_user=Depends(_require_admin)) -> ReminderSweepResponse:
    summary = _run(lambda: get_reminder_service().send_due_reminders())
    return ReminderSweepResponse.from_summary(summary)


@router.get("/memberships/expiring", response_model=ExpiringMembershipListResponse)
def list_expiring_memberships(
    days: int = Query(default=30, ge=1, le=365),
    *,
    current_user=Depends(_require_admin),
) -> ExpiringMembershipListResponse:
    engine = get_lifecycle_engine()
    memberships = _run(lambda: engine.list_expiring(timedelta(days=days)))
    now = engine.now()
    return ExpiringMembershipListResponse(
        within_days=days,
        memberships=[ExpiringMembershipResponse.from_expiring(membership, now) for membership in memberships],
    )


@router.post("/memberships/{membership_id}/active", response_model=MembershipResponse)
def set_membership_active(
    membership_id: str,
    payload: MembershipActiveRequest,
    *,
    current_user=Depends(_require_admin),
) -> MembershipResponse:
    engine = get_lifecycle_engine()
    membership = _run(lambda: engine.set_active(membership_id, payload.is_active))
    logger.info(
        "Admin changed membership active flag",
        extra={"membership_id": membership_id, "is_active": payload.is_active, "admin_id": str(current_user.id)},
    )
    return MembershipResponse.from_membership(membership, engine.now())

"""API routes for members managing their own membership."""
from __future__ import annotations

import os
from typing import Any, Callable, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, status

from wooffy import app_context

from ..memberships import LifecycleEngine, Membership, MembershipError, list_plans
from ..schemas.memberships import (
    ChangePlanRequest,
    CreateMembershipRequest,
    MembershipResponse,
    MembershipStatusResponse,
    PlanListResponse,
    PlanResponse,
    RenewMembershipRequest,
    VerificationResponse,
)
from ..services.memberships import get_lifecycle_engine, get_member_verifier


_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


router = APIRouter(prefix="/api/memberships", tags=["memberships"])


def _run(operation: Callable[[], Any]) -> Any:
    try:
        return operation()
    except MembershipError as exc:
        raise exc.to_http_exception() from exc


def _owned_membership(engine: LifecycleEngine, membership_id: str, current_user) -> Membership:
    membership = _run(lambda: engine.get_membership(membership_id))
    if membership.owner_id != str(current_user.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot manage another member's membership")
    return membership


@router.get("/plans", response_model=PlanListResponse)
def get_plans() -> PlanListResponse:
    return PlanListResponse(plans=[PlanResponse.from_plan(plan) for plan in list_plans()])


@router.get("/me", response_model=MembershipStatusResponse)
def get_my_membership(*, current_user=Depends(_get_current_user)) -> MembershipStatusResponse:
    engine = get_lifecycle_engine()
    view = _run(lambda: engine.status_for_owner(str(current_user.id)))
    return MembershipStatusResponse.from_view(view, engine.now())


@router.post("", response_model=MembershipResponse, status_code=status.HTTP_201_CREATED)
def create_membership(
    payload: CreateMembershipRequest,
    *,
    current_user=Depends(_get_current_user),
) -> MembershipResponse:
    engine = get_lifecycle_engine()
    membership = _run(lambda: engine.create(str(current_user.id), payload.plan_id))
    return MembershipResponse.from_membership(membership, engine.now())


@router.post("/{membership_id}/change-plan", response_model=MembershipResponse)
def change_plan(
    membership_id: str,
    payload: ChangePlanRequest,
    *,
    current_user=Depends(_get_current_user),
) -> MembershipResponse:
    engine = get_lifecycle_engine()
    _owned_membership(engine, membership_id, current_user)
    membership = _run(lambda: engine.change_plan(membership_id, payload.plan_id))
    return MembershipResponse.from_membership(membership, engine.now())


@router.post("/{membership_id}/renew", response_model=MembershipResponse)
def renew_membership(
    membership_id: str,
    payload: Optional[RenewMembershipRequest] = None,
    *,
    current_user=Depends(_get_current_user),
) -> MembershipResponse:
    engine = get_lifecycle_engine()
    _owned_membership(engine, membership_id, current_user)
    plan_id = payload.plan_id if payload is not None else None
    membership = _run(lambda: engine.renew(membership_id, plan_id))
    return MembershipResponse.from_membership(membership, engine.now())


@router.post("/{membership_id}/reactivate", response_model=MembershipResponse)
def reactivate_membership(
    membership_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> MembershipResponse:
    engine = get_lifecycle_engine()
    _owned_membership(engine, membership_id, current_user)
    membership = _run(lambda: engine.reactivate(membership_id))
    return MembershipResponse.from_membership(membership, engine.now())


@router.get("/verify/{member_number}", response_model=VerificationResponse)
def verify_member(
    member_number: str,
    *,
    current_user=Depends(_get_current_user),
) -> VerificationResponse:
    verifier = get_member_verifier()
    result = _run(lambda: verifier.verify(member_number))
    return VerificationResponse.from_result(result)

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import psycopg2
from fastapi import Cookie, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from jose import JWTError, jwt
from pydantic import BaseModel, Field

from wooffy import app_context
from wooffy.config import load_membership_config

CONFIG = load_membership_config()

JWT_SECRET_KEY = CONFIG.jwt_secret_key
JWT_ALGORITHM = "HS256"
JWT_EXP_MINUTES = CONFIG.jwt_exp_minutes
SESSION_COOKIE_NAME = CONFIG.session_cookie_name

logger = logging.getLogger("wooffy")


class SessionUser(BaseModel):
    id: str
    roles: List[str] = Field(default_factory=list)


def get_conn():
    return psycopg2.connect(**CONFIG.db_settings)


def create_access_token(
    *,
    subject: str,
    roles: Sequence[str] = (),
    expires_delta: Optional[timedelta] = None,
) -> str:
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXP_MINUTES)
    payload = {
        "sub": subject,
        "roles": list(roles),
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def resolve_user_from_session_token(session_token: str) -> Optional[SessionUser]:
    try:
        payload = jwt.decode(session_token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    roles = payload.get("roles") or []
    if not isinstance(roles, list):
        return None
    return SessionUser(id=str(subject), roles=[str(role) for role in roles])


def get_current_user(session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME)) -> SessionUser:
    if not session_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = resolve_user_from_session_token(session_token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


app_context.configure(get_conn=get_conn, get_current_user=get_current_user)

from wooffy.app.routes.admin_memberships import router as admin_memberships_router  # noqa: E402
from wooffy.app.routes.memberships import router as memberships_router  # noqa: E402

app = FastAPI(title="Wooffy Membership API")

# Vite dev server origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(memberships_router)
app.include_router(admin_memberships_router)

logger.info("Membership API configured store=%s term_days=%s", CONFIG.store_backend, CONFIG.term_days)


@app.get("/api/health")
def health() -> dict:
    return {"ok": True}

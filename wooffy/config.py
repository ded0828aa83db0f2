"""Runtime configuration for the membership service."""
from __future__ import annotations

import math
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class MembershipConfig:
    """Settings read once at startup from the environment."""

    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str
    db_connect_timeout: int
    statement_timeout_ms: int
    lock_timeout_ms: int
    store_backend: str
    term_days: int
    member_number_prefix: str
    conflict_retries: int
    jwt_secret_key: str
    jwt_exp_minutes: int
    session_cookie_name: str

    @property
    def term(self) -> timedelta:
        return timedelta(days=self.term_days)

    @property
    def db_settings(self) -> Dict[str, Any]:
        """Keyword arguments for ``psycopg2.connect``."""

        return dict(
            host=self.db_host,
            port=self.db_port,
            dbname=self.db_name,
            user=self.db_user,
            password=self.db_password,
            connect_timeout=self.db_connect_timeout,
        )


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_timeout(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        timeout = float(value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def load_membership_config(env: Optional[Mapping[str, str]] = None) -> MembershipConfig:
    """Load :class:`MembershipConfig` from environment variables.

    When ``env`` is omitted a ``.env`` file is loaded first, without
    overriding variables that are already set.
    """

    if env is None:
        load_dotenv()
    env_mapping = os.environ if env is None else env

    store_backend = (env_mapping.get("MEMBERSHIP_STORE") or "postgres").strip().lower()
    if store_backend not in {"postgres", "memory"}:
        raise ValueError(f"MEMBERSHIP_STORE must be 'postgres' or 'memory', got {store_backend!r}")

    term_days = _to_int(env_mapping.get("MEMBERSHIP_TERM_DAYS"), default=365)
    if term_days < 1:
        raise ValueError("MEMBERSHIP_TERM_DAYS must be at least 1")

    jwt_exp_minutes = _to_int(env_mapping.get("JWT_EXP_MINUTES"), default=60 * 24 * 7)
    if jwt_exp_minutes < 1:
        raise ValueError("JWT_EXP_MINUTES must be at least 1")

    prefix = (env_mapping.get("MEMBER_NUMBER_PREFIX") or "WF").strip() or "WF"

    return MembershipConfig(
        db_host=env_mapping.get("DB_HOST", "127.0.0.1"),
        db_port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        db_name=env_mapping.get("DB_NAME", "wooffy"),
        db_user=env_mapping.get("DB_USER", "wooffy"),
        db_password=env_mapping.get("DB_PASSWORD", "wooffy"),
        db_connect_timeout=_to_timeout(env_mapping.get("DB_CONNECT_TIMEOUT"), default=5),
        statement_timeout_ms=max(0, _to_int(env_mapping.get("DB_STATEMENT_TIMEOUT_MS"), default=5000)),
        lock_timeout_ms=max(0, _to_int(env_mapping.get("DB_LOCK_TIMEOUT_MS"), default=2000)),
        store_backend=store_backend,
        term_days=term_days,
        member_number_prefix=prefix,
        conflict_retries=max(0, _to_int(env_mapping.get("MEMBERSHIP_CONFLICT_RETRIES"), default=1)),
        jwt_secret_key=env_mapping.get("JWT_SECRET_KEY", "dev-secret-change-me"),
        jwt_exp_minutes=jwt_exp_minutes,
        session_cookie_name=env_mapping.get("SESSION_COOKIE_NAME", "session"),
    )


__all__ = ["MembershipConfig", "load_membership_config"]

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, List, Mapping, Optional, Set, Tuple

import pytest

from wooffy.app.memberships import InMemoryMembershipStore, LifecycleEngine
from wooffy.app.memberships.grants import GrantAdministrator
from wooffy.app.notifications import MembershipNotification, parse_notification

START = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, MembershipNotification]] = []
        self.fail_for: Set[str] = set()
        self.fail_all = False

    def send(
        self,
        owner_id: str,
        type: str,
        title: str,
        message: str,
        data: Optional[Mapping[str, Any]] = None,
    ) -> None:
        if self.fail_all or owner_id in self.fail_for:
            raise RuntimeError("notification backend unavailable")
        self.sent.append((owner_id, parse_notification(type, title, message, data)))


class FakeRoleAssigner:
    def __init__(self) -> None:
        self.roles: Set[Tuple[str, str]] = set()
        self.fail = False

    def ensure_role(self, owner_id: str, role: str) -> None:
        if self.fail:
            raise RuntimeError("role service unavailable")
        self.roles.add((owner_id, role))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def membership_components(clock):
    store = InMemoryMembershipStore()
    engine = LifecycleEngine(store=store, clock=clock)
    notifier = FakeNotifier()
    roles = FakeRoleAssigner()
    administrator = GrantAdministrator(engine=engine, notifier=notifier, roles=roles)
    return store, engine, administrator, notifier, roles

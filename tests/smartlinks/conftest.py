from __future__ import annotations

from typing import Union

import pytest
from fastapi.testclient import TestClient

from smartlinks.app.main import create_app
from smartlinks.app.services.membership import MembershipProbeError


class FakeMembershipProbe:
    """Answers member counts from a dict keyed by invite link.

    Links with no entry behave like a provider outage.
    """

    def __init__(self) -> None:
        self.counts: dict[str, Union[int, Exception]] = {}
        self.calls: list[str] = []

    def member_count(self, invite_link: str) -> int:
        self.calls.append(invite_link)
        value = self.counts.get(invite_link)
        if value is None:
            raise MembershipProbeError("group metadata request failed with status 503")
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture()
def probe() -> FakeMembershipProbe:
    return FakeMembershipProbe()


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch, probe: FakeMembershipProbe) -> TestClient:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    monkeypatch.setenv("AUTH_ENABLED", "false")
    app = create_app()
    app.state.membership_probe = probe
    return TestClient(app)

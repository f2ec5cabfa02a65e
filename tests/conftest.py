"""
Pytest configuration and shared fixtures.
"""

import pytest
import requests
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from erpsync.database import Account, Shop, init_database, session_factory
from erpsync.vendor.client import VendorClient
from erpsync.vendor.rate_limiter import CapacityGate


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, body: Any = None, status_code: int = 200, text: Optional[str] = None):
        self._body = body
        self.status_code = status_code
        self.text = text

    def json(self):
        if self.text is not None:
            raise ValueError("No JSON object could be decoded")
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"HTTP {self.status_code}")


class FakeHttp:
    """
    Records every request and answers from a handler or a queue.

    handler(method, url, params, json) -> FakeResponse | dict | Exception
    """

    def __init__(self, handler: Optional[Callable] = None):
        self.handler = handler
        self.queue: List[Any] = []
        self.requests: List[Dict[str, Any]] = []

    def _answer(self, method, url, params=None, json=None, data=None):
        self.requests.append({"method": method, "url": url, "params": params, "json": json, "data": data})
        if self.queue:
            answer = self.queue.pop(0)
        elif self.handler is not None:
            answer = self.handler(method, url, params, json if json is not None else data)
        else:
            answer = {"code": 0, "data": [], "total": 0}
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, FakeResponse):
            return answer
        return FakeResponse(answer)

    def request(self, method, url, params=None, json=None, timeout=None):
        return self._answer(method, url, params=params, json=json)

    def post(self, url, data=None, timeout=None):
        return self._answer("POST", url, data=data)


class RecordingSleep:
    """Sleep replacement that remembers the delays it was asked for."""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def db_path(tmp_path) -> Path:
    path = tmp_path / "erpsync.db"
    init_database(path)
    return path


@pytest.fixture
def sessions(db_path):
    """sessionmaker bound to a fresh temporary database."""
    return session_factory(db_path)


@pytest.fixture
def account(sessions) -> Account:
    """Active account with a cached, unexpired token."""
    acc = Account(
        id="acc-1",
        name="Alpha",
        app_id="ak_test_app_id",
        app_secret="secret",
        access_token="token-1",
        refresh_token="refresh-1",
        token_expires_at=datetime.now() + timedelta(hours=1),
        is_active=True,
    )
    with sessions() as session:
        session.add(acc)
        session.commit()
    return acc


@pytest.fixture
def second_account(sessions) -> Account:
    acc = Account(
        id="acc-2",
        name="Beta",
        app_id="ak_other_app_id",
        app_secret="secret",
        access_token="token-2",
        token_expires_at=datetime.now() + timedelta(hours=1),
        is_active=True,
    )
    with sessions() as session:
        session.add(acc)
        session.commit()
    return acc


@pytest.fixture
def shops(sessions, account) -> List[Shop]:
    """Two active shops and one disabled shop for acc-1."""
    rows = [
        Shop(account_id=account.id, sid=101, name="US", status=1),
        Shop(account_id=account.id, sid=102, name="DE", status=1),
        Shop(account_id=account.id, sid=103, name="Closed", status=0),
    ]
    with sessions() as session:
        session.add_all(rows)
        session.commit()
    return rows


@pytest.fixture
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def gate() -> CapacityGate:
    return CapacityGate(max_wait=0.2)


@pytest.fixture
def client(sessions, fake_http, gate) -> VendorClient:
    return VendorClient(
        "https://vendor.test",
        sessions,
        http=fake_http,
        gate=gate,
        clock=lambda: 1700000000,
    )


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()

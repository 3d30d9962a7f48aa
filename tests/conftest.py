"""
Shared fixtures for the redirect checker tests.

Nothing here touches the network: probes are either scripted fakes or a
TestClient pointed at the local mock redirect site.
"""

import os
import tempfile
from typing import Dict, List, Union

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DB_PATH", os.path.join(tempfile.mkdtemp(), "test.db"))

from db import connect, init_db
from redirect_utils import ProbeError, ProbeResponse


Scripted = Union[ProbeResponse, Exception]


class FakeProbe:
    """Answers from a url -> response table and records every probed URL."""

    def __init__(self, script: Dict[str, Scripted] = None, default: Scripted = None):
        self.script = dict(script or {})
        self.default = default
        self.calls: List[str] = []

    def head(self, url: str, timeout_ms: int) -> ProbeResponse:
        self.calls.append(url)
        answer = self.script.get(url, self.default)
        if answer is None:
            raise ProbeError(f"HTTP request failed: no route to {url}")
        if isinstance(answer, Exception):
            raise answer
        return answer


class EndlessRedirectProbe:
    """Every URL redirects to a brand new one."""

    def __init__(self):
        self.calls: List[str] = []

    def head(self, url: str, timeout_ms: int) -> ProbeResponse:
        self.calls.append(url)
        return redirect(302, f"/next/{len(self.calls)}")


class MockSiteProbe:
    """HttpProbe that sends HEAD requests to the mock redirect site in-process."""

    def __init__(self, client: TestClient):
        self.client = client

    def head(self, url: str, timeout_ms: int) -> ProbeResponse:
        r = self.client.head(url, follow_redirects=False)
        return ProbeResponse(
            status_code=r.status_code,
            status_text=r.reason_phrase,
            headers=dict(r.headers),
        )


def redirect(status_code: int, location: str) -> ProbeResponse:
    return ProbeResponse(status_code=status_code, status_text="Found", headers={"Location": location})


def ok(status_code: int = 200, text: str = "OK") -> ProbeResponse:
    return ProbeResponse(status_code=status_code, status_text=text, headers={"Content-Type": "text/html"})


@pytest.fixture
def con():
    c = connect(":memory:")
    init_db(c)
    yield c
    c.close()


@pytest.fixture
def mock_site_probe():
    from mock_redirect_site import app as mock_app

    with TestClient(mock_app) as c:
        yield MockSiteProbe(c)


@pytest.fixture
def fake_probe():
    return FakeProbe()


@pytest.fixture
def client(con, fake_probe):
    """API client with the database and the probe swapped for test doubles."""
    from main import app, get_db, get_probe

    app.dependency_overrides[get_db] = lambda: con
    app.dependency_overrides[get_probe] = lambda: fake_probe
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

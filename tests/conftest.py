import json
from types import SimpleNamespace
from typing import Iterable, List, Optional, Tuple

import pytest
import requests

from arraypoll.config import VendorConfig


class FakeResponse:
    """Stand-in for requests.Response with just what the transport client reads."""

    def __init__(self, status_code: int = 200, content=b"", cookies: Iterable[Tuple[str, str]] = (),
                 headers: Optional[dict] = None, history: Iterable["FakeResponse"] = ()):
        if isinstance(content, (dict, list)):
            content = json.dumps(content).encode()
        elif isinstance(content, str):
            content = content.encode()
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.cookies = [SimpleNamespace(name=name, value=value) for name, value in cookies]
        self.history = list(history)


class FakeSession:
    """
    Routes requests by method and URL fragment.

    Each route returns its responses in order and keeps repeating the last one.
    The first matching route wins, so register specific fragments first.
    """

    def __init__(self):
        self.routes: List[list] = []
        self.calls: List[SimpleNamespace] = []
        self.closed = False

    def add(self, method: str, fragment: str, *responses) -> "FakeSession":
        self.routes.append([method.upper(), fragment, list(responses)])
        return self

    def request(self, method, url, headers=None, data=None, json=None, timeout=None, verify=None):
        self.calls.append(SimpleNamespace(method=method, url=url, headers=dict(headers or {}), data=data, json=json))
        for route_method, fragment, responses in self.routes:
            if route_method == method.upper() and fragment in url:
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(response, Exception):
                    raise response
                return response
        raise requests.exceptions.ConnectionError(f"no route for {method} {url}")

    def calls_to(self, fragment: str) -> List[SimpleNamespace]:
        return [call for call in self.calls if fragment in call.url]

    def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def make_config(tmp_path):
    def _make(vendor: str, **overrides) -> VendorConfig:
        values = dict(
            vendor=vendor,
            host="https://array.example",
            username="admin",
            password="secret",
            session_file=str(tmp_path / "cookie" / f"{vendor}.cookie"),
        )
        values.update(overrides)
        return VendorConfig(**values)
    return _make


@pytest.fixture
def make_driver(make_config, fake_session):
    """Build a driver whose transport talks to fake_session."""
    def _make(driver_class, session_token: Optional[str] = None, config_overrides=None, **kwargs):
        config = make_config(driver_class.vendor, **(config_overrides or {}))
        driver = driver_class(config, **kwargs)
        driver.transport.session = fake_session
        if session_token:
            driver.session_store.save(session_token)
        return driver
    return _make

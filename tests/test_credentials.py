from __future__ import annotations

import threading
import time
from types import SimpleNamespace
from typing import Any

import pytest
import requests

from farmwatch.services.credentials import CredentialCache, OAuthClientConfig
from farmwatch.services.errors import AuthError, ErrorKind


def _config(**overrides: Any) -> OAuthClientConfig:
    state: dict[str, Any] = {
        "token_url": "https://idp.test/oauth/token",
        "client_id": "client",
        "client_secret": "secret",
        "username": "svc@example.com",
        "password": "pw",
        "client_auth_mode": "body",
        "refresh_margin_s": 60,
        "timeout_s": 5.0,
    }
    state.update(overrides)
    return OAuthClientConfig(**state)


def _response(status: int, body: Any) -> SimpleNamespace:
    def _json() -> Any:
        if isinstance(body, Exception):
            raise body
        return body

    return SimpleNamespace(status_code=status, json=_json)


class FakeIdp:
    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> Any:
        self.calls.append({"url": url, **kwargs})
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


class Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_password_grant_on_first_use() -> None:
    idp = FakeIdp(_response(200, {"access_token": "tok-1", "refresh_token": "r-1", "expires_in": 3600}))
    cache = CredentialCache(_config(), http=idp, clock=Clock())

    assert cache.get_token() == "Bearer tok-1"

    call = idp.calls[0]
    assert call["url"] == "https://idp.test/oauth/token"
    assert call["data"]["grant_type"] == "password"
    assert call["data"]["username"] == "svc@example.com"
    assert call["data"]["client_id"] == "client"
    assert call["auth"] is None


def test_cached_token_is_reused_until_margin() -> None:
    clock = Clock()
    idp = FakeIdp(
        _response(200, {"access_token": "tok-1", "refresh_token": "r-1", "expires_in": 3600}),
        _response(200, {"access_token": "tok-2", "refresh_token": "r-2", "expires_in": 3600}),
    )
    cache = CredentialCache(_config(), http=idp, clock=clock)

    cache.get_token()
    clock.now += 3000
    assert cache.get_token() == "Bearer tok-1"
    assert cache.exchange_count == 1

    # Inside the refresh margin: refresh grant with the stored refresh token.
    clock.now += 550
    assert cache.get_token() == "Bearer tok-2"
    assert idp.calls[1]["data"]["grant_type"] == "refresh_token"
    assert idp.calls[1]["data"]["refresh_token"] == "r-1"


def test_refresh_failure_falls_back_to_password_grant() -> None:
    clock = Clock()
    idp = FakeIdp(
        _response(200, {"access_token": "tok-1", "refresh_token": "r-1", "expires_in": 100}),
        _response(400, {"error": "invalid_grant"}),
        _response(200, {"access_token": "tok-3", "expires_in": 3600}),
    )
    cache = CredentialCache(_config(), http=idp, clock=clock)

    cache.get_token()
    clock.now += 90
    assert cache.get_token() == "Bearer tok-3"
    assert [c["data"]["grant_type"] for c in idp.calls] == ["password", "refresh_token", "password"]


def test_failed_exchange_keeps_previous_token() -> None:
    clock = Clock()
    idp = FakeIdp(
        _response(200, {"access_token": "tok-1", "expires_in": 100}),
        _response(503, ValueError("not json")),
    )
    cache = CredentialCache(_config(refresh_margin_s=60), http=idp, clock=clock)
    cache.get_token()

    clock.now += 50
    with pytest.raises(AuthError) as excinfo:
        cache.get_token()
    assert "HTTP 503" in str(excinfo.value)
    assert excinfo.value.kind is ErrorKind.AUTH

    # The previous token is still held after the failed exchange.
    assert cache._access_token == "tok-1"


def test_basic_client_auth_mode_uses_http_basic() -> None:
    idp = FakeIdp(_response(200, {"access_token": "tok-1"}))
    cache = CredentialCache(_config(client_auth_mode="basic"), http=idp, clock=Clock())

    cache.get_token()
    call = idp.calls[0]
    assert call["auth"] == ("client", "secret")
    assert "client_secret" not in call["data"]


def test_missing_expires_in_defaults_to_one_hour() -> None:
    clock = Clock()
    idp = FakeIdp(_response(200, {"access_token": "tok-1"}))
    cache = CredentialCache(_config(), http=idp, clock=clock)
    cache.get_token()

    clock.now += 3500
    assert cache.get_token() == "Bearer tok-1"
    assert cache.exchange_count == 1


@pytest.mark.parametrize(
    "response",
    [
        _response(401, {"error": "invalid_client"}),
        _response(200, {"error": "access_denied"}),
        _response(200, {"token_type": "bearer"}),
        _response(200, ValueError("html")),
        requests.ConnectionError("down"),
    ],
)
def test_exchange_failures_raise_auth_error(response) -> None:
    cache = CredentialCache(_config(), http=FakeIdp(response), clock=Clock())
    with pytest.raises(AuthError):
        cache.get_token()


def test_missing_service_credentials_raise_auth_error() -> None:
    idp = FakeIdp()
    cache = CredentialCache(_config(username=None), http=idp, clock=Clock())
    with pytest.raises(AuthError):
        cache.get_token()
    assert idp.calls == []


def test_invalidate_forces_new_exchange() -> None:
    idp = FakeIdp(
        _response(200, {"access_token": "tok-1", "expires_in": 3600}),
        _response(200, {"access_token": "tok-2", "expires_in": 3600}),
    )
    cache = CredentialCache(_config(), http=idp, clock=Clock())
    cache.get_token()
    cache.invalidate("Bearer tok-1")
    assert cache.get_token() == "Bearer tok-2"


def test_late_invalidate_for_replaced_token_is_ignored() -> None:
    idp = FakeIdp(
        _response(200, {"access_token": "tok-1", "expires_in": 3600}),
        _response(200, {"access_token": "tok-2", "expires_in": 3600}),
    )
    cache = CredentialCache(_config(), http=idp, clock=Clock())
    stale = cache.get_token()
    cache.invalidate(stale)
    assert cache.get_token() == "Bearer tok-2"

    # A second worker reports the 401 it got with the old token.
    cache.invalidate(stale)

    assert cache.get_token() == "Bearer tok-2"
    assert cache.exchange_count == 2


def test_invalidate_racing_the_fast_path_never_yields_empty_token() -> None:
    class InvalidatingClock(Clock):
        cache: CredentialCache | None = None

        def __call__(self) -> float:
            cache, self.cache = self.cache, None
            if cache is not None:
                cache.invalidate("Bearer tok-1")
            return self.now

    clock = InvalidatingClock()
    idp = FakeIdp(_response(200, {"access_token": "tok-1", "expires_in": 3600}))
    cache = CredentialCache(_config(), http=idp, clock=clock)
    cache.get_token()

    clock.cache = cache
    assert cache.get_token() == "Bearer tok-1"
    assert cache._access_token is None


def test_concurrent_callers_share_one_exchange() -> None:
    class SlowIdp:
        def __init__(self) -> None:
            self.calls = 0

        def post(self, url: str, **kwargs: Any) -> Any:
            self.calls += 1
            time.sleep(0.05)
            return _response(200, {"access_token": f"tok-{self.calls}", "expires_in": 3600})

    idp = SlowIdp()
    cache = CredentialCache(_config(), http=idp)
    results: list[str] = []
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        results.append(cache.get_token())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert idp.calls == 1
    assert results == ["Bearer tok-1"] * 8

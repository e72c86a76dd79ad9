"""Service-account OAuth token cache for the device shadow service.

One token is shared by every device pipeline in the process. Refreshes are
single-flight: the first caller that finds the token stale performs the
exchange while holding the lock; callers queued behind it re-check and reuse the
fresh token instead of issuing their own exchange.

Exchange order when the token is missing or about to expire:
1. refresh grant (when a refresh token is held)
2. password grant (no refresh token, or the refresh grant failed)

A failed exchange never clears a token that is still valid, and `invalidate()`
only drops the token the caller actually had rejected.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

import requests

from ..config import ClientAuthMode, Settings
from .errors import AuthError


logger = logging.getLogger("farmwatch.credentials")

_DEFAULT_EXPIRES_IN_S = 3600


@dataclass(frozen=True)
class OAuthClientConfig:
    token_url: str
    client_id: str | None
    client_secret: str | None
    username: str | None
    password: str | None
    client_auth_mode: ClientAuthMode = "body"
    refresh_margin_s: int = 60
    timeout_s: float = 10.0

    @classmethod
    def from_settings(cls, s: Settings) -> "OAuthClientConfig":
        return cls(
            token_url=s.oauth_token_url,
            client_id=s.oauth_client_id,
            client_secret=s.oauth_client_secret,
            username=s.service_username,
            password=s.service_password,
            client_auth_mode=s.oauth_client_auth_mode,
            refresh_margin_s=s.token_refresh_margin_s,
            timeout_s=s.http_timeout_s,
        )


class CredentialCache:
    def __init__(
        self,
        config: OAuthClientConfig,
        *,
        http: Any = requests,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self._http = http
        self._clock = clock

        self._lock = threading.Lock()
        self._access_token: str | None = None
        self._refresh_token: str | None = None
        self._expires_at: float = 0.0
        self._exchanges = 0

    @property
    def exchange_count(self) -> int:
        return self._exchanges

    def _fresh_token(self) -> str | None:
        token, expires_at = self._access_token, self._expires_at
        if not token or expires_at - self._clock() <= self.config.refresh_margin_s:
            return None
        return token

    def get_token(self) -> str:
        """Return an `Authorization` header value, refreshing when needed."""

        token = self._fresh_token()
        if token:
            return f"Bearer {token}"

        with self._lock:
            # Another caller may have refreshed while we waited.
            token = self._fresh_token()
            if not token:
                token = self._exchange()
            return f"Bearer {token}"

    def invalidate(self, credential: str) -> None:
        """Drop the cached token if it is the one the caller saw rejected."""

        with self._lock:
            if self._access_token and credential == f"Bearer {self._access_token}":
                self._access_token = None
                self._expires_at = 0.0

    def _exchange(self) -> str:
        if self._refresh_token:
            try:
                token = self._store(
                    self._post({"grant_type": "refresh_token", "refresh_token": self._refresh_token})
                )
                logger.info("oauth_token_refreshed")
                return token
            except AuthError as exc:
                logger.warning(
                    "oauth_refresh_failed",
                    extra={"fields": {"error": str(exc), "fallback": "password"}},
                )

        if not self.config.username or not self.config.password:
            raise AuthError("SERVICE_USERNAME/SERVICE_PASSWORD are not configured")

        token = self._store(
            self._post(
                {
                    "grant_type": "password",
                    "username": self.config.username,
                    "password": self.config.password,
                }
            )
        )
        logger.info("oauth_token_acquired")
        return token

    def _post(self, form: dict[str, str]) -> dict[str, Any]:
        cfg = self.config
        if not cfg.client_id or not cfg.client_secret:
            raise AuthError("OAUTH_CLIENT_ID/OAUTH_CLIENT_SECRET are not configured")

        data = dict(form)
        auth: tuple[str, str] | None = None
        if cfg.client_auth_mode == "basic":
            auth = (cfg.client_id, cfg.client_secret)
        else:
            data["client_id"] = cfg.client_id
            data["client_secret"] = cfg.client_secret

        self._exchanges += 1
        try:
            response = self._http.post(
                cfg.token_url,
                data=data,
                auth=auth,
                headers={"Accept": "application/json"},
                timeout=cfg.timeout_s,
            )
        except requests.RequestException as exc:
            raise AuthError(f"identity provider unreachable: {type(exc).__name__}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if not (200 <= response.status_code < 300):
            detail = body.get("error") if isinstance(body, dict) else None
            raise AuthError(f"token exchange rejected (HTTP {response.status_code}): {detail or 'no detail'}")
        if not isinstance(body, dict):
            raise AuthError("token exchange returned a non-JSON body")
        if body.get("error"):
            raise AuthError(f"token exchange rejected: {body.get('error')}")
        if not body.get("access_token"):
            raise AuthError("token exchange response has no access_token")
        return body

    def _store(self, body: dict[str, Any]) -> str:
        expires_in = body.get("expires_in")
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)) or expires_in <= 0:
            expires_in = _DEFAULT_EXPIRES_IN_S
        token = str(body["access_token"])
        self._access_token = token
        self._refresh_token = body.get("refresh_token") or self._refresh_token
        self._expires_at = self._clock() + float(expires_in)
        return token

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from ..config import Settings, settings as global_settings
from ..db import SessionScope, db_session
from .credentials import CredentialCache, OAuthClientConfig
from .diagnostics import DiagnosticFacade
from .pipeline import DevicePipeline
from .poll import PollDriver
from .shadow import ShadowClient
from .store import ProgressStore


@dataclass(frozen=True)
class ReadinessRuntime:
    store: ProgressStore
    credentials: CredentialCache
    shadow: ShadowClient
    pipeline: DevicePipeline
    driver: PollDriver
    diagnostics: DiagnosticFacade


def build_runtime(s: Settings, *, session_scope: SessionScope) -> ReadinessRuntime:
    store = ProgressStore(session_scope, default_window_minutes=s.default_window_minutes)
    credentials = CredentialCache(OAuthClientConfig.from_settings(s))
    shadow = ShadowClient(graphql_url=s.nx_graphql_url, timeout_s=s.http_timeout_s)
    pipeline = DevicePipeline(store=store, credentials=credentials, shadow=shadow)
    return ReadinessRuntime(
        store=store,
        credentials=credentials,
        shadow=shadow,
        pipeline=pipeline,
        driver=PollDriver(
            store=store,
            pipeline=pipeline,
            concurrency=s.poll_concurrency,
            stale_run_after_s=s.stale_run_after_s,
        ),
        diagnostics=DiagnosticFacade(store=store, pipeline=pipeline),
    )


@lru_cache(maxsize=1)
def get_runtime() -> ReadinessRuntime:
    """Process-wide runtime; the credential cache inside it is shared by every caller."""

    return build_runtime(global_settings, session_scope=db_session)

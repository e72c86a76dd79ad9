from __future__ import annotations

from farmwatch.config import load_settings
from farmwatch.main import create_app


def _paths(app) -> set[str]:
    paths: set[str] = set()
    for r in app.router.routes:
        p = getattr(r, "path", None)
        if isinstance(p, str):
            paths.add(p)
    return paths


def _methods(app, path: str) -> set[str]:
    methods: set[str] = set()
    for r in app.router.routes:
        if getattr(r, "path", None) == path:
            methods |= set(getattr(r, "methods", None) or ())
    return methods


def test_readiness_routes_are_mounted(monkeypatch) -> None:
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///./test_routes.db")

    app = create_app(load_settings())
    paths = _paths(app)

    assert "/healthz" in paths
    assert "/api/v1/progress" in paths
    assert "/api/v1/recompute" in paths
    assert "/api/v1/run-status" in paths
    assert {"GET", "POST"} <= _methods(app, "/api/v1/recompute")


def test_docs_follow_enable_docs(monkeypatch) -> None:
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///./test_routes.db")

    app = create_app(load_settings())
    assert "/docs" not in _paths(app)

    monkeypatch.setenv("ENABLE_DOCS", "1")
    app = create_app(load_settings())
    assert "/docs" in _paths(app)

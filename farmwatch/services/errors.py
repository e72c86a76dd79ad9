from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    AUTH = "auth"
    CONFIG_MISSING = "config_missing"
    CONFIG_INVALID = "config_invalid"
    SHADOW_FETCH = "shadow_fetch"
    PERSISTENCE = "persistence"
    INTERNAL = "internal"


class PipelineError(RuntimeError):
    """Base class for per-device pipeline failures."""

    kind: ErrorKind = ErrorKind.INTERNAL


class AuthError(PipelineError):
    """Identity provider rejected the service credentials or was unreachable."""

    kind = ErrorKind.AUTH


class ConfigMissing(PipelineError):
    """No device configuration exists for the requested id."""

    kind = ErrorKind.CONFIG_MISSING

    def __init__(self, device_id: str) -> None:
        super().__init__(f"device config not found: {device_id}")
        self.device_id = device_id


class ConfigInvalid(PipelineError):
    """Stored device configuration failed validation."""

    kind = ErrorKind.CONFIG_INVALID


class ShadowFetchError(PipelineError):
    """The shadow service returned an unusable response."""

    kind = ErrorKind.SHADOW_FETCH

    def __init__(self, status: int | None, detail: str) -> None:
        prefix = f"shadow fetch failed (HTTP {status})" if status is not None else "shadow fetch failed"
        super().__init__(f"{prefix}: {detail}")
        self.status = status
        self.detail = detail


class PersistenceError(PipelineError):
    kind = ErrorKind.PERSISTENCE


class RunInProgress(RuntimeError):
    """A previous poll run is still marked running and is not yet stale."""

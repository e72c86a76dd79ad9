from __future__ import annotations

import tomllib
from importlib import metadata
from pathlib import Path


_DIST_NAME = "farmwatch"


def get_version() -> str:
    """Installed distribution version, falling back to pyproject.toml for source checkouts."""

    try:
        return metadata.version(_DIST_NAME)
    except metadata.PackageNotFoundError:
        pass

    pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
    if not pyproject.exists():
        return "0.0.0"

    try:
        data = tomllib.loads(pyproject.read_text("utf-8"))
    except (OSError, tomllib.TOMLDecodeError):
        return "0.0.0"
    v = (data.get("project") or {}).get("version")
    return str(v) if v else "0.0.0"


__version__ = get_version()

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final

DIST_NAME: Final[str] = "fashion-ai"
UNKNOWN_VERSION: Final[str] = "0+unknown"


@dataclass(frozen=True)
class BuildInfo:
    """Installed distribution version plus optional CI build metadata."""

    version: str
    build: str | None
    commit: str | None

    def describe(self) -> str:
        extras = [f"build {self.build}" if self.build else "", self.commit or ""]
        tail = ", ".join(e for e in extras if e)
        return f"{DIST_NAME} {self.version}" + (f" ({tail})" if tail else "")


def get_build_info() -> BuildInfo:
    commit = os.getenv("GIT_COMMIT") or os.getenv("COMMIT_SHA")
    return BuildInfo(
        version=_dist_version(),
        build=os.getenv("BUILD_ID") or None,
        commit=commit[:12] if commit else None,
    )


def _dist_version() -> str:
    # Source checkouts without an install have no metadata
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version(DIST_NAME)
    except PackageNotFoundError as exc:
        from .logging import get_logger

        get_logger().warning("dist_version_missing dist=%s error=%s", DIST_NAME, exc)
        return UNKNOWN_VERSION

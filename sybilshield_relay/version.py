"""
Version helpers for the SybilShield relay.

- ``__version__`` is the semantic version for packaging.
- ``build_version()`` appends the short git commit (PEP 440 local part) when known.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Bump on release (MAJOR.MINOR.PATCH)
__version__ = "1.0.0"


@dataclass(frozen=True)
class BuildMeta:
    version: str
    commit: Optional[str]


def _commit_short() -> Optional[str]:
    env_commit = os.getenv("GIT_COMMIT") or os.getenv("BUILD_SHA")
    if env_commit:
        return env_commit[:12]
    root = Path(__file__).resolve().parent.parent
    if not (root / ".git").exists():
        return None
    try:
        out = subprocess.check_output(
            ["git", "-C", str(root), "rev-parse", "--short", "HEAD"],
            stderr=subprocess.DEVNULL,
            timeout=1.5,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    return out.decode().strip() or None


def build_version(base: str = __version__) -> str:
    """
    Compose a PEP 440 version that carries the commit when present.

    - "1.0.0"            (no commit information)
    - "1.0.0+gabc1234"   (commit attached)
    """
    commit = _commit_short()
    if not commit:
        return base
    return f"{base}+g{commit}"


def build_meta() -> BuildMeta:
    return BuildMeta(version=build_version(), commit=_commit_short())


__all__ = ["__version__", "BuildMeta", "build_version", "build_meta"]

"""Raising the limit on open file descriptors."""

from __future__ import annotations

from typing import Optional

try:
    import resource
except ImportError:  # pragma: no cover - platforms without rlimits
    resource = None

TARGET_OPEN_FILES = 999999


def raise_limit() -> Optional[int]:
    """Raise the soft limit on open files; return the new limit.

    Returns None on platforms without resource limits. Errors from the
    operating system propagate.
    """
    if resource is None:
        return None

    _, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    resource.setrlimit(resource.RLIMIT_NOFILE, (TARGET_OPEN_FILES, hard))
    soft, _ = resource.getrlimit(resource.RLIMIT_NOFILE)
    return soft
"""Harness settings read from the environment (and the optional ``.env`` file)."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import MutableMapping, Optional

from .errors import ConfigurationError
from .protocol import DEFAULT_MTU, DEFAULT_VERSION

TRUTHY = ("1", "true", "yes", "on")
DEFAULT_TIMEOUT = 10.0
ENV_FILE = Path(__file__).resolve().parent.parent / ".env"


def load_env_file(path: Path = ENV_FILE, environ: Optional[MutableMapping[str, str]] = None) -> int:
    """Copy KEY=VALUE lines from ``path`` into ``environ``; returns how many were set.

    Variables already present win, so the shell overrides the file.
    """
    target = os.environ if environ is None else environ
    if not path.exists():
        return 0

    loaded = 0
    for raw_line in path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key or key in target:
            continue
        target[key] = value.strip().strip('"').strip("'")
        loaded += 1
    return loaded


load_env_file()


def _parse_timeout(raw: Optional[str]) -> Optional[float]:
    if raw is None or raw.strip() == "":
        return DEFAULT_TIMEOUT
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"AVDTP_TIMEOUT must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigurationError(f"AVDTP_TIMEOUT must not be negative, got {raw!r}")
    # 0 keeps the unbounded wait.
    return value or None


def _parse_int(name: str, raw: Optional[str], default: int) -> int:
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw, 0)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class HarnessConfig:
    """Settings shared by every scenario in a run."""

    session_factory: Optional[str] = None
    timeout: Optional[float] = DEFAULT_TIMEOUT
    verbose: bool = False
    mtu: int = DEFAULT_MTU
    version: int = DEFAULT_VERSION

    @classmethod
    def from_env(cls) -> "HarnessConfig":
        return cls(
            session_factory=os.getenv("AVDTP_SESSION_FACTORY") or None,
            timeout=_parse_timeout(os.getenv("AVDTP_TIMEOUT")),
            verbose=os.getenv("AVDTP_VERBOSE", "false").lower() in TRUTHY,
            mtu=_parse_int("AVDTP_MTU", os.getenv("AVDTP_MTU"), DEFAULT_MTU),
            version=_parse_int("AVDTP_VERSION", os.getenv("AVDTP_VERSION"), DEFAULT_VERSION),
        )

    def override(self, **changes) -> "HarnessConfig":
        """Return a copy with the non-``None`` values in ``changes`` applied."""
        return replace(self, **{key: value for key, value in changes.items() if value is not None})

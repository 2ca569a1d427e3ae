"""Resolve client settings from defaults, environment and CLI flags."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from . import token_store

DEFAULT_BASE_URL = "http://localhost:8080"
DEFAULT_REQUEST_TIMEOUT_S = 15.0
PROFILES_DIR = token_store.BASE_DIR / "profiles"

ENV_BASE_URL = "MASTERDOM_API_URL"
ENV_TOKEN_PATH = "MASTERDOM_TOKEN_PATH"
ENV_REQUEST_TIMEOUT = "MASTERDOM_REQUEST_TIMEOUT"
ENV_WATCH_EXPIRY = "MASTERDOM_WATCH_EXPIRY"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ClientConfig:
    base_url: str = DEFAULT_BASE_URL
    token_path: Path = token_store.TOKEN_PATH
    request_timeout_s: Optional[float] = DEFAULT_REQUEST_TIMEOUT_S
    watch_expiry: bool = False


def _ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True, mode=0o700)


def resolve_token_path(profile: str) -> Path:
    if profile == "default":
        return token_store.TOKEN_PATH
    profile_dir = PROFILES_DIR / profile
    _ensure_private_dir(profile_dir)
    return profile_dir / "session.json"


def _parse_timeout(raw: str) -> Optional[float]:
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_REQUEST_TIMEOUT} must be a number, got {raw!r}") from exc
    return value if value > 0 else None


def load_config(
    env: Optional[Mapping[str, str]] = None,
    *,
    profile: str = "default",
    base_url: Optional[str] = None,
    token_path: Optional[str] = None,
    request_timeout_s: Optional[float] = None,
) -> ClientConfig:
    """Build a ``ClientConfig``; explicit arguments override the environment."""

    env = os.environ if env is None else env
    config = ClientConfig()
    if profile != "default":
        config = replace(config, token_path=resolve_token_path(profile))

    if env.get(ENV_BASE_URL):
        config = replace(config, base_url=env[ENV_BASE_URL])
    if env.get(ENV_TOKEN_PATH):
        config = replace(config, token_path=Path(env[ENV_TOKEN_PATH]).expanduser())
    if env.get(ENV_REQUEST_TIMEOUT):
        config = replace(config, request_timeout_s=_parse_timeout(env[ENV_REQUEST_TIMEOUT]))
    if env.get(ENV_WATCH_EXPIRY):
        config = replace(config, watch_expiry=env[ENV_WATCH_EXPIRY].strip().lower() in _TRUTHY)

    if base_url:
        config = replace(config, base_url=base_url)
    if token_path:
        config = replace(config, token_path=Path(token_path).expanduser())
    if request_timeout_s is not None:
        config = replace(config, request_timeout_s=request_timeout_s if request_timeout_s > 0 else None)
    return config

"""Persist the bearer token under a single durable key."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

BASE_DIR = Path.home() / ".masterdom_chat"
TOKEN_PATH = BASE_DIR / "session.json"
TOKEN_KEY = "auth_token"


def _atomic_write_json(path: Path, payload: dict[str, str]) -> None:
    path = path.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    content = json.dumps(payload, indent=2, sort_keys=True)

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


class TokenStore:
    """File-backed storage for exactly one raw bearer token string."""

    def __init__(self, path: Path | str = TOKEN_PATH) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> Optional[str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, ValueError):
            return None

        if not isinstance(data, dict):
            return None
        token = data.get(TOKEN_KEY)
        if not isinstance(token, str) or not token:
            return None
        return token

    def save(self, token: str) -> None:
        _atomic_write_json(self.path, {TOKEN_KEY: token})

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return


class MemoryTokenStore:
    """In-process token storage with the same interface as ``TokenStore``."""

    def __init__(self, token: str | None = None) -> None:
        self._token = token

    def load(self) -> Optional[str]:
        return self._token

    def save(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None

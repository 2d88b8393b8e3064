"""Credential and state storage.

The IDE host normally owns secret storage; :class:`CredentialStore` is the
seam, and :class:`JsonCredentialStore` is the file-backed implementation used
by the CLI.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Protocol

import structlog

log = structlog.get_logger(__name__)

KEY_BASE_URL = "corgeaUrl"
KEY_LOGGED_IN = "isLoggedIn"
KEY_TOKEN = "corgeaApiKey"
KEY_DEBUG_MODE = "debugModeEnabled"
KEY_COMPANY_CONFIGS = "companyConfigs"


class CredentialStore(Protocol):
    async def get_base_url(self) -> str | None: ...

    async def get_token(self) -> str | None: ...

    async def is_logged_in(self) -> bool: ...

    async def set_base_url(self, url: str | None) -> None: ...

    async def set_token(self, token: str | None) -> None: ...

    async def set_logged_in(self, value: bool) -> None: ...

    async def get_value(self, key: str) -> Any: ...

    async def set_value(self, key: str, value: Any) -> None: ...


class JsonCredentialStore:
    """Stores state in a single JSON file readable only by the owner.

    *base_url_override* / *token_override* (from the environment) take
    precedence on reads and are never written back.
    """

    def __init__(
        self,
        path: Path,
        *,
        base_url_override: str | None = None,
        token_override: str | None = None,
    ) -> None:
        self._path = path
        self._base_url_override = base_url_override
        self._token_override = token_override

    async def get_base_url(self) -> str | None:
        return self._base_url_override or self._load().get(KEY_BASE_URL)

    async def get_token(self) -> str | None:
        return self._token_override or self._load().get(KEY_TOKEN) or None

    async def is_logged_in(self) -> bool:
        if self._token_override and self._base_url_override:
            return True
        return bool(self._load().get(KEY_LOGGED_IN))

    async def set_base_url(self, url: str | None) -> None:
        await self.set_value(KEY_BASE_URL, url)

    async def set_token(self, token: str | None) -> None:
        await self.set_value(KEY_TOKEN, token)

    async def set_logged_in(self, value: bool) -> None:
        await self.set_value(KEY_LOGGED_IN, value)

    async def get_value(self, key: str) -> Any:
        return self._load().get(key)

    async def set_value(self, key: str, value: Any) -> None:
        data = self._load()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self._save(data)

    def _load(self) -> dict[str, Any]:
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            log.warning("storage.unreadable", path=str(self._path), error=str(exc))
            return {}

    def _save(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)

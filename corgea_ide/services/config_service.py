"""ConfigService: company-wide settings that gate IDE features."""

from __future__ import annotations

import copy
from typing import Any

import structlog

from corgea_ide.core.storage import KEY_COMPANY_CONFIGS, CredentialStore
from corgea_ide.exceptions import CorgeaError
from corgea_ide.services import ClientFactory, open_client

log = structlog.get_logger(__name__)

DEFAULT_CONFIGS: dict[str, Any] = {"ide": {"ide_scanning_enabled": True}}


class ConfigService:
    def __init__(self, credentials: CredentialStore, client_factory: ClientFactory) -> None:
        self._credentials = credentials
        self._client_factory = client_factory

    async def fetch_and_store(self) -> dict[str, Any]:
        """Fetch configs from the API and persist them.

        Falls back to stored (then default) configs on any failure.
        """
        try:
            async with await open_client(self._credentials, self._client_factory) as client:
                response = await client.get_company_configs()
        except CorgeaError as exc:
            log.warning("config.fetch_failed", error=str(exc))
            return await self.get_stored()

        configs = response.get("configs")
        if response.get("status") != "ok" or not isinstance(configs, dict):
            return await self.get_stored()
        await self._credentials.set_value(KEY_COMPANY_CONFIGS, configs)
        log.debug("config.stored", configs=configs)
        return configs

    async def get_stored(self) -> dict[str, Any]:
        stored = await self._credentials.get_value(KEY_COMPANY_CONFIGS)
        if isinstance(stored, dict):
            return stored
        return copy.deepcopy(DEFAULT_CONFIGS)

    async def is_ide_scanning_enabled(self) -> bool:
        configs = await self.get_stored()
        return bool(configs.get("ide", {}).get("ide_scanning_enabled", True))

    async def clear(self) -> None:
        await self._credentials.set_value(KEY_COMPANY_CONFIGS, None)

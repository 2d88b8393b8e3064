"""AuthService: API-key login, logout and 401 demotion."""

from __future__ import annotations

import structlog

from corgea_ide.core.events import EventBus, EventKind
from corgea_ide.core.notify import Notifier
from corgea_ide.core.storage import KEY_DEBUG_MODE, CredentialStore
from corgea_ide.exceptions import ApiError, AuthenticationError, PreconditionError
from corgea_ide.services import ClientFactory

log = structlog.get_logger(__name__)

# Entering this instead of a URL turns on debug logging.
DEBUG_MAGIC = "corgea_debug"


def normalize_url(url: str) -> str:
    """Add ``https://`` when no scheme is given and drop one trailing slash."""
    fixed = url.strip()
    if "http" not in fixed:
        fixed = f"https://{fixed}"
    if fixed.endswith("/"):
        fixed = fixed[:-1]
    return fixed


class AuthService:
    def __init__(
        self,
        credentials: CredentialStore,
        bus: EventBus,
        notifier: Notifier,
        client_factory: ClientFactory,
    ) -> None:
        self._credentials = credentials
        self._bus = bus
        self._notifier = notifier
        self._client_factory = client_factory

    async def login_with_api_key(self, url: str, api_key: str) -> bool:
        """Verify *api_key* against *url* and store both on success.

        Returns False when *url* is the debug switch (debug mode is enabled
        instead of logging in). Raises :class:`AuthenticationError` for a
        rejected key and :class:`ApiError` when verification could not run.
        """
        if url and url.strip() == DEBUG_MAGIC:
            await self._credentials.set_value(KEY_DEBUG_MODE, True)
            log.info("auth.debug_mode_enabled")
            self._notifier.info(
                "Debug mode enabled. Messages will be printed in the "
                ".vscode/corgea.extension.log file."
            )
            return False

        if not url or not api_key:
            self._notifier.error("API Key or URL is missing.")
            raise PreconditionError("API Key or URL is missing.")

        base_url = normalize_url(url)
        try:
            async with self._client_factory(base_url, api_key) as client:
                valid = await client.verify_token(api_key)
        except AuthenticationError:
            valid = False
        except ApiError:
            self._notifier.error(
                "Failed to verify API Key. Please check your connection and try again."
            )
            raise

        if not valid:
            log.info("auth.login_rejected", base_url=base_url)
            self._notifier.error("Invalid API Key. Please try again.")
            raise AuthenticationError("Invalid API Key.")

        await self._credentials.set_base_url(base_url)
        await self._credentials.set_token(api_key)
        await self._credentials.set_logged_in(True)
        log.info("auth.logged_in", base_url=base_url)
        self._bus.publish(EventKind.LOGIN)
        self._notifier.info(
            "API Key verified successfully. View the Corgea extension to start fixing."
        )
        return True

    async def logout(self) -> None:
        await self._credentials.set_logged_in(False)
        await self._credentials.set_base_url(None)
        await self._credentials.set_token(None)
        log.info("auth.logged_out")
        self._bus.publish(EventKind.LOGOUT)
        self._notifier.info("You have been logged out successfully.")

    async def demote(self) -> None:
        """Mark the session logged out after the server rejected the token.

        URL and token stay stored so the user can re-enter only what changed.
        """
        await self._credentials.set_logged_in(False)
        log.warning("auth.demoted")
        self._bus.publish(EventKind.LOGOUT)

    async def is_debug_mode_enabled(self) -> bool:
        return bool(await self._credentials.get_value(KEY_DEBUG_MODE))

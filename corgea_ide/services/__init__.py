"""Service layer: auth, company configuration and vulnerability views."""

from __future__ import annotations

from collections.abc import Callable

from corgea_ide.core.config import Settings
from corgea_ide.core.notify import Notifier
from corgea_ide.core.storage import CredentialStore
from corgea_ide.engines.issues.client import CorgeaClient
from corgea_ide.exceptions import PreconditionError

ClientFactory = Callable[[str, str], CorgeaClient]


def client_factory(settings: Settings, notifier: Notifier) -> ClientFactory:
    """Return a ``(base_url, token) -> CorgeaClient`` factory bound to *settings*."""

    def _make(base_url: str, token: str) -> CorgeaClient:
        return CorgeaClient(
            base_url,
            token,
            notifier=notifier,
            timeout=settings.http_timeout,
            page_size=settings.page_size,
        )

    return _make


async def open_client(credentials: CredentialStore, factory: ClientFactory) -> CorgeaClient:
    """Build a client from stored credentials; raises when not logged in."""
    base_url = await credentials.get_base_url()
    token = await credentials.get_token()
    if not base_url or not token:
        raise PreconditionError("Not logged in to Corgea.")
    return factory(base_url, token)

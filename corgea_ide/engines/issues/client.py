"""Async client for the Corgea REST API.

Every response is checked for the deprecation warning (``Warning: 299``) and
the end-of-life status (410). 401 is raised as :class:`AuthenticationError`.
No retries: failures surface to the caller.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from corgea_ide.core.config import API_VERSION
from corgea_ide.core.notify import LogNotifier, Notifier
from corgea_ide.engines.issues.models import IssuePage, SCAVulnerability, Vulnerability
from corgea_ide.exceptions import ApiError, AuthenticationError, UnsupportedVersionError

log = structlog.get_logger(__name__)

TOKEN_HEADER = "CORGEA-TOKEN"

DEPRECATION_NOTICE = (
    "This version of the Corgea plugin is deprecated. Please upgrade to the latest "
    "version to ensure continued support and better performance."
)
END_OF_LIFE_NOTICE = (
    "Support for this extension version has dropped. Please upgrade Corgea "
    "extension immediately to continue using it."
)
INVALID_TOKEN_NOTICE = "Token is expired or invalid. Please update it."


class CorgeaClient:
    """Thin async wrapper around the Corgea API rooted at ``<base_url>/api/v1``."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        notifier: Notifier | None = None,
        timeout: float = 30.0,
        page_size: int = 50,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self._notifier = notifier or LogNotifier()
        self._deprecation_notified = False
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/api/{API_VERSION}",
            headers={TOKEN_HEADER: token},
            timeout=timeout,
            transport=transport,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> CorgeaClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def get_issues_page(
        self,
        *,
        project: str | None = None,
        repo: str | None = None,
        page: int = 1,
    ) -> IssuePage[Vulnerability]:
        data = await self._get_json("/issues", self._page_params(project, repo, page))
        return self._parse_page(IssuePage[Vulnerability], data, "/issues")

    async def get_sca_issues_page(
        self,
        *,
        project: str | None = None,
        repo: str | None = None,
        page: int = 1,
    ) -> IssuePage[SCAVulnerability]:
        data = await self._get_json("/issues/sca", self._page_params(project, repo, page))
        return self._parse_page(IssuePage[SCAVulnerability], data, "/issues/sca")

    async def get_issue(self, issue_id: str) -> dict[str, Any]:
        """Full details of one issue (shape owned by the server)."""
        return await self._get_json(f"/issue/{issue_id}")

    async def verify_token(self, api_key: str) -> bool:
        """Return True if the server accepts *api_key* for this base URL.

        A rejected key raises :class:`AuthenticationError` without the
        expired-token notice.
        """
        data = await self._get_json(
            f"/verify/{api_key}",
            {"url": self.base_url},
            headers={TOKEN_HEADER: api_key},
            endpoint="/verify",
            notify_auth=False,
        )
        return data.get("status") == "ok"

    async def get_company_configs(self) -> dict[str, Any]:
        """Return ``{"status": ..., "configs": {...}}`` for the token's company."""
        return await self._get_json("/company/configs")

    # ── internal ───────────────────────────────────────────────────────────

    def _page_params(self, project: str | None, repo: str | None, page: int) -> dict[str, Any]:
        params: dict[str, Any] = {"page": page, "page_size": self.page_size}
        if project is not None:
            params["project"] = project
        if repo is not None:
            params["repo"] = repo
        return params

    @staticmethod
    def _parse_page(model: type[IssuePage], data: dict[str, Any], endpoint: str) -> IssuePage:
        if data.get("issues") is None:
            data = {**data, "issues": []}
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise ApiError(f"Unexpected response from {endpoint}: {exc}") from exc

    async def _get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        headers: dict[str, str] | None = None,
        endpoint: str | None = None,
        notify_auth: bool = True,
    ) -> dict[str, Any]:
        """GET *path* and return the JSON object body.

        *endpoint* is the label used in logs and errors when *path* carries a
        secret.
        """
        endpoint = endpoint or path
        try:
            resp = await self._client.get(path, params=params, headers=headers)
        except httpx.HTTPError as exc:
            log.warning("api.request_failed", endpoint=endpoint, error=str(exc))
            raise ApiError(f"Request to {endpoint} failed: {exc}") from exc

        log.debug("api.response", endpoint=endpoint, status=resp.status_code)
        self._check_warnings(resp)

        if resp.status_code == 410:
            self._notifier.error(END_OF_LIFE_NOTICE)
            raise UnsupportedVersionError(END_OF_LIFE_NOTICE, status_code=410)
        if resp.status_code == 401:
            if notify_auth:
                self._notifier.error(INVALID_TOKEN_NOTICE)
            raise AuthenticationError(INVALID_TOKEN_NOTICE, status_code=401)
        if resp.is_error:
            raise ApiError(
                f"{endpoint} returned HTTP {resp.status_code}", status_code=resp.status_code
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise ApiError(f"Invalid JSON from {endpoint}", status_code=resp.status_code) from exc
        if not isinstance(data, dict):
            raise ApiError(f"Unexpected response from {endpoint}", status_code=resp.status_code)
        return data

    def _check_warnings(self, resp: httpx.Response) -> None:
        for header in resp.headers.get_list("warning"):
            for warning in header.split(","):
                code = warning.strip().split(" ", 1)[0]
                if code == "299" and not self._deprecation_notified:
                    self._deprecation_notified = True
                    log.warning("api.deprecated_client", warning=warning.strip())
                    self._notifier.warning(DEPRECATION_NOTICE)

"""Runtime settings read from ``CORGEA_IDE_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BASE_URL = "https://www.corgea.app"
API_VERSION = "v1"


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.environ.get(key, default))
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.environ.get(key, default))
    except ValueError:
        return default


def _env_path(key: str, default: Path) -> Path:
    value = os.environ.get(key)
    return Path(value).expanduser() if value else default


def _default_home() -> Path:
    return Path.home() / ".corgea-ide"


@dataclass
class Settings:
    """Client configuration.

    ``home`` holds the credential state file and extracted runtimes;
    ``assets_dir`` holds the bundled runtime archives and the scanner CLI
    package. ``cli_command`` short-circuits environment bootstrap entirely.
    """

    home: Path = field(default_factory=_default_home)
    assets_dir: Path | None = None
    cli_command: str | None = None
    cache_ttl: float = 60.0
    http_timeout: float = 30.0
    page_size: int = 50
    kill_grace: float = 3.0
    base_url_override: str | None = None
    token_override: str | None = None

    def __post_init__(self) -> None:
        if self.assets_dir is None:
            self.assets_dir = self.home / "assets"

    @property
    def state_file(self) -> Path:
        return self.home / "state.json"

    @property
    def runtimes_dir(self) -> Path:
        return self.home / "runtimes"

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from the environment (evaluated at call time)."""
        home = _env_path("CORGEA_IDE_HOME", _default_home())
        return cls(
            home=home,
            assets_dir=_env_path("CORGEA_IDE_ASSETS_DIR", home / "assets"),
            cli_command=os.environ.get("CORGEA_IDE_CLI") or None,
            cache_ttl=_env_float("CORGEA_IDE_CACHE_TTL", 60.0),
            http_timeout=_env_float("CORGEA_IDE_HTTP_TIMEOUT", 30.0),
            page_size=max(1, _env_int("CORGEA_IDE_PAGE_SIZE", 50)),
            kill_grace=_env_float("CORGEA_IDE_KILL_GRACE", 3.0),
            base_url_override=os.environ.get("CORGEA_IDE_URL") or None,
            token_override=os.environ.get("CORGEA_IDE_TOKEN") or None,
        )

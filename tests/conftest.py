"""Shared pytest fixtures for corgea-ide tests."""

from __future__ import annotations

import pytest

from corgea_ide.core.events import EventBus
from corgea_ide.core.storage import JsonCredentialStore


class RecordingNotifier:
    """Notifier that keeps every notice for assertions."""

    def __init__(self) -> None:
        self.notices: list[tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.notices.append(("info", message))

    def warning(self, message: str) -> None:
        self.notices.append(("warning", message))

    def error(self, message: str) -> None:
        self.notices.append(("error", message))

    def of(self, level: str) -> list[str]:
        return [m for lvl, m in self.notices if lvl == level]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def store(tmp_path):
    return JsonCredentialStore(tmp_path / "state.json")

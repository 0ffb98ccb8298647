"""
whatsched · Shared Test-Fixtures.

Alle Tests nutzen ein temporäres Verzeichnis statt ~/.whatsched/.
So sind Tests isoliert und reproduzierbar.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from whatsched.channels.base import MessageChannel
from whatsched.config import WhatschedConfig, ensure_directory_structure
from whatsched.core.errors import DeliveryError

if TYPE_CHECKING:
    from pathlib import Path


class FakeChannel(MessageChannel):
    """In-Memory-Channel: merkt sich gesendete Nachrichten.

    Mit ``fail_with`` schlägt jeder Versand mit dieser Meldung fehl.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_with: str | None = None
        self.started = False
        self.logged_out = False

    @property
    def name(self) -> str:
        return "fake"

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def logout(self) -> None:
        self.logged_out = True
        await self.stop()

    async def send_text(self, recipient: str, body: str) -> None:
        if self.fail_with is not None:
            raise DeliveryError(self.fail_with)
        self.sent.append((recipient, body))

    def connection_status(self) -> str:
        return "connected" if self.started else "disconnected"

    def current_user(self) -> dict[str, Any] | None:
        return {"id": "15550001111", "name": "Test"} if self.started else None


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def tmp_whatsched_home(tmp_path: Path) -> Path:
    """Temporäres whatsched-Home-Verzeichnis."""
    return tmp_path / ".whatsched"


@pytest.fixture
def config(tmp_whatsched_home: Path) -> WhatschedConfig:
    """WhatschedConfig mit temporärem Home-Verzeichnis."""
    return WhatschedConfig(whatsched_home=tmp_whatsched_home)


@pytest.fixture
def initialized_config(config: WhatschedConfig) -> WhatschedConfig:
    """WhatschedConfig mit erstellter Verzeichnisstruktur."""
    ensure_directory_structure(config)
    return config

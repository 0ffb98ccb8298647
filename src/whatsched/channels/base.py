"""Abstract base class for all outbound messaging channels.

A channel is the link between the scheduler and the messaging network.
The scheduler only ever calls ``send_text``; ``connection_status`` and
``current_user`` feed the status report.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class MessageChannel(ABC):
    """Abstract base for all messaging channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Eindeutiger Name des Channels (z.B. 'whatsapp')."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Baut die Verbindung auf."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stoppt den Channel sauber."""
        ...

    @abstractmethod
    async def send_text(self, recipient: str, body: str) -> None:
        """Sendet eine Textnachricht.

        Args:
            recipient: Channel-spezifische Adresse (z.B. Telefonnummer).
            body: Nachrichtentext.

        Raises:
            DeliveryError: Wenn die Nachricht nicht zugestellt werden konnte.
        """
        ...

    @abstractmethod
    def connection_status(self) -> str:
        """Aktueller Verbindungsstatus als Klartext."""
        ...

    @abstractmethod
    def current_user(self) -> dict[str, Any] | None:
        """Identität des verbundenen Kontos oder None."""
        ...

    async def logout(self) -> None:
        """Meldet das Konto ab. Default: nur stoppen."""
        await self.stop()

"""WhatsApp Cloud API Channel -- Meta Graph API v21.0.

Ausgehende Zustellung für den Scheduler:
  - Text senden (mit Splitting bei 4096 Zeichen)
  - Verbindungsprüfung über das Telefonnummer-Profil
  - Verbindungsstatus und Identität für /api/status

Dependencies: httpx
"""

from __future__ import annotations

from typing import Any

import httpx

from whatsched.channels.base import MessageChannel
from whatsched.core.errors import ChannelError, DeliveryError
from whatsched.models import normalize_phone
from whatsched.utils.logging import get_logger

log = get_logger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com/v21.0"
MAX_TEXT_LENGTH = 4096

STATUS_NOT_INITIALIZED = "not initialized"
STATUS_CONNECTING = "connecting"
STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"
STATUS_LOGGED_OUT = "logged out"


class WhatsAppChannel(MessageChannel):
    """WhatsApp Business Cloud API Channel.

    Nutzt die offizielle Meta Graph API für ausgehende Nachrichten.
    Eingehende Nachrichten werden nicht verarbeitet.
    """

    def __init__(
        self,
        *,
        api_token: str,
        phone_number_id: str,
        graph_api_base: str = GRAPH_API_BASE,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._api_token = api_token
        self._phone_number_id = phone_number_id
        self._graph_api_base = graph_api_base.rstrip("/")
        self._timeout = timeout_seconds

        self._running = False
        self._state = STATUS_NOT_INITIALIZED
        self._profile: dict[str, Any] | None = None
        self._http: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "whatsapp"

    # -- Verbindung ------------------------------------------------------------

    async def _ensure_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._graph_api_base,
                headers={
                    "Authorization": f"Bearer {self._api_token}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
            )
        return self._http

    async def start(self) -> None:
        """Prüft die Zugangsdaten über das Telefonnummer-Profil.

        Raises:
            ChannelError: Wenn das Profil nicht abgerufen werden kann.
        """
        self._running = True
        self._state = STATUS_CONNECTING
        client = await self._ensure_http()
        try:
            resp = await client.get(
                f"/{self._phone_number_id}",
                params={"fields": "display_phone_number,verified_name"},
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            self._state = STATUS_DISCONNECTED
            log.error("whatsapp_connect_failed", error=str(e))
            raise ChannelError(
                f"WhatsApp-Verbindung fehlgeschlagen: {e}",
                details={"phone_number_id": self._phone_number_id},
            ) from e

        self._profile = {
            "id": data.get("id", self._phone_number_id),
            "name": data.get("verified_name", ""),
            "phone": normalize_phone(data.get("display_phone_number", "")),
        }
        self._state = STATUS_CONNECTED
        log.info("whatsapp_connected", name=self._profile["name"], phone=self._profile["phone"])

    async def stop(self) -> None:
        self._running = False
        if self._http:
            await self._http.aclose()
            self._http = None
        if self._state != STATUS_LOGGED_OUT:
            self._state = STATUS_DISCONNECTED
        log.info("whatsapp_channel_stopped")

    async def logout(self) -> None:
        """Trennt die Verbindung und vergisst die Identität."""
        self._state = STATUS_LOGGED_OUT
        self._profile = None
        await self.stop()
        log.info("whatsapp_logged_out")

    def connection_status(self) -> str:
        return self._state

    def current_user(self) -> dict[str, Any] | None:
        return dict(self._profile) if self._profile else None

    # -- Outbound: Nachrichten senden ------------------------------------------

    async def send_text(self, recipient: str, body: str) -> None:
        """Sendet eine Textnachricht (mit Splitting bei >4096 Zeichen).

        Raises:
            DeliveryError: Channel nicht gestartet, ungültiger Empfänger
                oder HTTP-Fehler der Graph API.
        """
        if not self._running:
            raise DeliveryError("WhatsApp channel not started")

        to = normalize_phone(recipient)
        if not to:
            raise DeliveryError(
                f"Ungültige Telefonnummer: {recipient!r}",
                details={"recipient": recipient},
            )

        client = await self._ensure_http()
        for chunk in self._split_message(body):
            payload = {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": to,
                "type": "text",
                "text": {"body": chunk},
            }
            try:
                resp = await client.post(
                    f"/{self._phone_number_id}/messages",
                    json=payload,
                )
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                if e.response.status_code in (401, 403):
                    self._state = STATUS_DISCONNECTED
                raise DeliveryError(
                    f"WhatsApp: Senden fehlgeschlagen: {e}",
                    details={"recipient": to, "status_code": e.response.status_code},
                ) from e
            except httpx.HTTPError as e:
                raise DeliveryError(
                    f"WhatsApp: Senden fehlgeschlagen: {e}",
                    details={"recipient": to},
                ) from e

        self._state = STATUS_CONNECTED
        log.debug("whatsapp_message_sent", to=to)

    # -- Hilfsmethoden ---------------------------------------------------------

    @staticmethod
    def _split_message(text: str) -> list[str]:
        """Teilt Nachrichten bei MAX_TEXT_LENGTH Zeichen."""
        if len(text) <= MAX_TEXT_LENGTH:
            return [text]

        chunks: list[str] = []
        while text:
            if len(text) <= MAX_TEXT_LENGTH:
                chunks.append(text)
                break
            # Am letzten Newline oder Leerzeichen vor dem Limit splitten
            split_pos = text.rfind("\n", 0, MAX_TEXT_LENGTH)
            if split_pos == -1:
                split_pos = text.rfind(" ", 0, MAX_TEXT_LENGTH)
            if split_pos == -1:
                split_pos = MAX_TEXT_LENGTH
            # Leere Teile lehnt die Graph API ab
            if split_pos > 0:
                chunks.append(text[:split_pos])
            text = text[split_pos:].lstrip()
        return chunks

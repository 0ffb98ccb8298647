"""whatsched · REST-API Routes.

HTTP-Endpunkte für Operator und Web-UI. Basic-Auth auf allen Routen
außer dem Health-Check.

Endpunkte:
  GET    /api/health                → Health-Check (ohne Auth)
  GET    /api/status                → Verbindungsstatus + geplante Jobs
  POST   /api/schedule              → Nachricht planen (einmalig oder CRON)
  DELETE /api/schedule/{id}         → Geplante Nachricht abbrechen
  POST   /api/send                  → Sofort senden
  POST   /api/logout                → WhatsApp abmelden
  GET    /api/contacts              → Kontakte auflisten
  POST   /api/contacts              → Kontakt anlegen
  GET/PATCH/DELETE /api/contacts/{id}
"""

import secrets
from datetime import UTC, datetime
from typing import Any, Literal

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel, Field

from whatsched import __version__
from whatsched.channels.base import MessageChannel
from whatsched.config import ServerConfig
from whatsched.contacts.store import ContactStore
from whatsched.core.errors import (
    ChannelError,
    ContactError,
    DeliveryError,
    DuplicateContactError,
    InvalidScheduleError,
    WhatschedError,
)
from whatsched.models import ContactCreate, ContactUpdate, JobKind
from whatsched.scheduling.scheduler import Scheduler
from whatsched.utils.logging import get_logger

log = get_logger(__name__)

AUTH_REALM = "WhatsApp Scheduler"

# Spezifischste Klasse zuerst
_ERROR_STATUS: tuple[tuple[type[WhatschedError], int], ...] = (
    (InvalidScheduleError, 400),
    (DuplicateContactError, 409),
    (ContactError, 400),
    (DeliveryError, 502),
    (ChannelError, 503),
)

# ============================================================================
# API-Datenmodelle
# ============================================================================


class ScheduleRequest(BaseModel):
    """Schedule-Anfrage.

    ``mode`` darf fehlen: dann entscheidet, ob ``cron`` oder
    ``timestamp``/``when`` gesetzt ist. ``timestamp`` ist in Millisekunden
    seit Epoch.
    """

    to: str = ""
    text: str = ""
    mode: Literal["once", "recurring", "cron"] | None = None
    timestamp: int | None = None
    when: datetime | None = None
    cron: str | None = None


class SendRequest(BaseModel):
    """Sofort-Versand."""

    to: str = Field(default="")
    text: str = Field(default="")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ============================================================================
# App-Factory
# ============================================================================


def create_app(
    *,
    scheduler: Scheduler,
    channel: MessageChannel,
    contacts: ContactStore,
    server: ServerConfig,
) -> FastAPI:
    """Erstellt die FastAPI-Applikation mit allen Routen.

    Args:
        scheduler: Laufender Scheduler.
        channel: Messaging-Channel für Sofort-Versand und Logout.
        contacts: Kontakt-Store.
        server: Server-Konfiguration (Basic-Auth-Zugangsdaten).
    """
    app = FastAPI(
        title="whatsched API",
        version=__version__,
        description="WhatsApp-Nachrichten planen und verwalten",
    )

    security = HTTPBasic(realm=AUTH_REALM)

    def verify_admin(
        credentials: HTTPBasicCredentials = Depends(security),  # noqa: B008
    ) -> str:
        user_ok = secrets.compare_digest(
            credentials.username.encode("utf-8"), server.admin_user.encode("utf-8")
        )
        pass_ok = secrets.compare_digest(
            credentials.password.encode("utf-8"), server.admin_password.encode("utf-8")
        )
        if not (user_ok and pass_ok):
            log.warning("auth_failed", username=credentials.username)
            raise HTTPException(
                status_code=401,
                detail="Unauthorized",
                headers={"WWW-Authenticate": f'Basic realm="{AUTH_REALM}"'},
            )
        return credentials.username

    deps = [Depends(verify_admin)]

    @app.exception_handler(WhatschedError)
    async def handle_whatsched_error(request: Request, exc: WhatschedError) -> JSONResponse:  # noqa: ARG001
        status_code = next(
            (code for cls, code in _ERROR_STATUS if isinstance(exc, cls)),
            503 if exc.error_code == "SCHEDULER_NOT_RUNNING" else 500,
        )
        if status_code >= 500:
            log.error("request_failed", error=str(exc), error_code=exc.error_code)
        return JSONResponse(
            status_code=status_code,
            content={"error": str(exc), "code": exc.error_code},
        )

    # -- Health / Status ---------------------------------------------------

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "version": __version__, "scheduler_running": scheduler.running}

    @app.get("/api/status", dependencies=deps)
    async def status() -> dict[str, Any]:
        return scheduler.status().model_dump(mode="json")

    # -- Scheduling --------------------------------------------------------

    @app.post("/api/schedule", dependencies=deps)
    async def schedule_message(req: ScheduleRequest) -> Any:
        if not req.to.strip() or not req.text.strip():
            return _error(400, "Phone number and message are required")

        mode = req.mode
        if mode is None:
            if req.cron:
                mode = "recurring"
            elif req.timestamp is not None or req.when is not None:
                mode = "once"
            else:
                return _error(400, "Either cron or timestamp must be provided")

        if mode == "once":
            if req.when is not None:
                time_spec: datetime | str = req.when
            elif req.timestamp is not None:
                time_spec = datetime.fromtimestamp(req.timestamp / 1000, tz=UTC)
            else:
                return _error(400, "Timestamp is required for one-time messages")
            kind = JobKind.ONCE
        else:
            if not req.cron:
                return _error(400, "CRON expression is required for recurring messages")
            time_spec = req.cron
            kind = JobKind.RECURRING

        job_id = scheduler.schedule(req.to.strip(), req.text, kind, time_spec)
        return {"success": True, "id": job_id}

    @app.delete("/api/schedule/{job_id}", dependencies=deps)
    async def cancel_job(job_id: str) -> Any:
        if not scheduler.cancel(job_id):
            return _error(404, "Job not found")
        return {"success": True}

    # -- Sofort-Versand / Session -----------------------------------------

    @app.post("/api/send", dependencies=deps)
    async def send_now(req: SendRequest) -> Any:
        if not req.to.strip() or not req.text.strip():
            return _error(400, "to and text required")
        await channel.send_text(req.to.strip(), req.text)
        log.info("immediate_message_sent", recipient=req.to.strip())
        return {"ok": True}

    @app.post("/api/logout", dependencies=deps)
    async def logout() -> dict[str, Any]:
        await channel.logout()
        return {"success": True, "message": "Logged out successfully"}

    # -- Kontakte ----------------------------------------------------------

    @app.get("/api/contacts", dependencies=deps)
    async def list_contacts() -> list[dict[str, Any]]:
        return [c.model_dump(mode="json") for c in await contacts.list_contacts()]

    @app.post("/api/contacts", dependencies=deps, status_code=201)
    async def create_contact(req: ContactCreate) -> dict[str, Any]:
        contact = await contacts.create_contact(req.name, req.phone)
        return contact.model_dump(mode="json")

    @app.get("/api/contacts/{contact_id}", dependencies=deps)
    async def get_contact(contact_id: int) -> Any:
        contact = await contacts.get_contact(contact_id)
        if contact is None:
            return _error(404, "Contact not found")
        return contact.model_dump(mode="json")

    @app.patch("/api/contacts/{contact_id}", dependencies=deps)
    async def update_contact(contact_id: int, req: ContactUpdate) -> Any:
        contact = await contacts.update_contact(contact_id, name=req.name, phone=req.phone)
        if contact is None:
            return _error(404, "Contact not found")
        return contact.model_dump(mode="json")

    @app.delete("/api/contacts/{contact_id}", dependencies=deps)
    async def delete_contact(contact_id: int) -> Any:
        if not await contacts.delete_contact(contact_id):
            return _error(404, "Contact not found")
        return {"success": True}

    return app

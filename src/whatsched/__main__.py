"""
whatsched · Entry Point.

Usage: whatsched
       whatsched --config /path/to/config.yaml
       whatsched --version
       python -m whatsched
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from whatsched import __version__

if TYPE_CHECKING:
    from whatsched.config import WhatschedConfig


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Kommandozeilen-Argumente parsen."""
    parser = argparse.ArgumentParser(
        prog="whatsched",
        description="whatsched -- WhatsApp-Nachrichten planen (einmalig oder per CRON)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"whatsched v{__version__}",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Pfad zur config.yaml (Default: ~/.whatsched/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log-Level überschreiben",
    )
    parser.add_argument(
        "--init-only",
        action="store_true",
        help="Nur Verzeichnisstruktur erstellen, nicht starten",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="HTTP-Port überschreiben (Default: server.port aus der Config)",
    )
    return parser.parse_args(argv)


async def run(config: WhatschedConfig, *, port: int) -> None:
    """Startet Channel, Scheduler, Kontakt-Store und HTTP-Server."""
    import uvicorn

    from whatsched.api.routes import create_app
    from whatsched.channels.whatsapp import WhatsAppChannel
    from whatsched.contacts.store import ContactStore
    from whatsched.core.errors import ChannelError
    from whatsched.scheduling.scheduler import Scheduler
    from whatsched.utils.logging import get_logger

    log = get_logger("whatsched")

    channel = WhatsAppChannel(
        api_token=config.whatsapp.api_token,
        phone_number_id=config.whatsapp.phone_number_id,
        graph_api_base=config.whatsapp.graph_api_base,
        timeout_seconds=config.whatsapp.timeout_seconds,
    )
    if config.whatsapp.configured:
        try:
            await channel.start()
        except ChannelError as exc:
            # Server läuft trotzdem; Zustellungen schlagen bis zur Verbindung fehl
            log.warning("whatsapp_unavailable", error=str(exc))
    else:
        log.warning("whatsapp_not_configured")

    scheduler = Scheduler(
        channel,
        timezone=config.scheduler.timezone,
        misfire_grace_seconds=config.scheduler.misfire_grace_seconds,
        max_failures_kept=config.scheduler.max_failures_kept,
    )
    contacts = ContactStore(config.db_path)
    app = create_app(
        scheduler=scheduler,
        channel=channel,
        contacts=contacts,
        server=config.server,
    )
    server = uvicorn.Server(
        uvicorn.Config(app, host=config.server.host, port=port, log_level="warning")
    )

    try:
        await scheduler.start()
        log.info("whatsched_ready", host=config.server.host, port=port)
        await server.serve()
    finally:
        await scheduler.stop()
        await channel.stop()
        await contacts.close()
        log.info("whatsched_stopped")


def main(argv: list[str] | None = None) -> None:
    """Haupteintrittspunkt für whatsched."""
    args = parse_args(argv)

    # 0. .env-Datei laden (Projekt-.env, dann User-.env)
    load_dotenv(Path(".env"), override=False)
    load_dotenv(Path.home() / ".whatsched" / ".env", override=True)

    # 1. Konfiguration laden
    from whatsched.config import ensure_directory_structure, load_config

    config = load_config(args.config)

    # 2. Verzeichnisstruktur sicherstellen
    created = ensure_directory_structure(config)

    # 3. Logging initialisieren
    from whatsched.utils.logging import get_logger, setup_logging

    log_level = args.log_level or config.logging.level
    setup_logging(
        level=log_level,
        log_dir=config.logs_dir,
        json_logs=config.logging.json_logs,
        console=config.logging.console,
    )
    log = get_logger("whatsched")

    log.info(
        "whatsched_starting",
        version=__version__,
        home=str(config.whatsched_home),
        log_level=log_level,
    )
    for path in created:
        log.info("created_path", path=path)

    if args.init_only:
        log.info(
            "init_complete",
            config_file=str(config.config_file),
            paths_created=len(created),
        )
        return

    port = args.port or config.server.port
    try:
        asyncio.run(run(config, port=port))
    except KeyboardInterrupt:
        log.info("whatsched_shutdown_by_user")


if __name__ == "__main__":
    main()

"""
whatsched · Configuration system.

Loads configuration from:
  1. Defaults (defined here)
  2. ~/.whatsched/config.yaml (overrides defaults)
  3. Environment variables WHATSCHED_* (overrides everything)

Creates the ~/.whatsched/ directory structure on first start.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator

log = logging.getLogger(__name__)

ENV_PREFIX = "WHATSCHED_"

# ============================================================================
# Konfigurationsmodelle
# ============================================================================


class SchedulerConfig(BaseModel):
    """Scheduler-Einstellungen."""

    # IANA-Zeitzone, in der CRON-Ausdrücke ausgewertet werden
    timezone: str = "UTC"
    # Wie spät ein Trigger noch feuern darf (z.B. nach Event-Loop-Stau)
    misfire_grace_seconds: int = Field(default=30, ge=1, le=3600)
    # Anzahl der gemerkten Zustellfehler (für /api/status)
    max_failures_kept: int = Field(default=50, ge=0, le=1000)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            msg = f"Unbekannte Zeitzone: {value}"
            raise ValueError(msg) from exc
        return value


class WhatsAppConfig(BaseModel):
    """WhatsApp Cloud API Zugangsdaten."""

    api_token: str = ""
    phone_number_id: str = ""
    graph_api_base: str = "https://graph.facebook.com/v21.0"
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    connection_name: str = "Message scheduler"

    @property
    def configured(self) -> bool:
        return bool(self.api_token and self.phone_number_id)


class ServerConfig(BaseModel):
    """HTTP-Server und Basic-Auth."""

    host: str = "127.0.0.1"
    port: int = Field(default=3000, ge=1, le=65535)
    admin_user: str = "admin"
    admin_password: str = "password"


class DatabaseConfig(BaseModel):
    """Kontakt-Datenbank (SQLite)."""

    path: str = "contacts.db"  # Relativ zu whatsched_home


class LoggingConfig(BaseModel):
    """Logging-Konfiguration."""

    level: str = "INFO"
    json_logs: bool = False
    console: bool = True


# ============================================================================
# Haupt-Konfiguration
# ============================================================================


class WhatschedConfig(BaseModel):
    """Complete whatsched configuration.

    Loaded once at startup and then handed to every subsystem.
    """

    version: str = "0.3.0"

    # Basis-Pfad
    whatsched_home: Path = Field(default_factory=lambda: Path.home() / ".whatsched")

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def config_file(self) -> Path:
        """Pfad zur Konfigurationsdatei."""
        return self.whatsched_home / "config.yaml"

    @property
    def logs_dir(self) -> Path:
        """Verzeichnis für Log-Dateien."""
        return self.whatsched_home / "logs"

    @property
    def db_path(self) -> Path:
        """Pfad zur Kontakt-Datenbank."""
        path = Path(self.database.path).expanduser()
        if path.is_absolute():
            return path
        return self.whatsched_home / path


# ============================================================================
# Config-Laden
# ============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Tiefes Mergen von zwei Dicts. Override gewinnt bei Konflikten."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Wendet WHATSCHED_* Umgebungsvariablen an.

    Konvention: WHATSCHED_SECTION_KEY → data["section"]["key"]
    Beispiel: WHATSCHED_WHATSAPP_API_TOKEN → data["whatsapp"]["api_token"]

    Bekannte Sektionen werden anhand der Modellfelder erkannt, damit
    Schlüssel mit Unterstrichen (api_token, phone_number_id) korrekt
    zusammengesetzt werden.
    """
    sections = {
        name
        for name, field in WhatschedConfig.model_fields.items()
        if isinstance(field.annotation, type) and issubclass(field.annotation, BaseModel)
    }
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        parts = key[len(ENV_PREFIX):].lower().split("_")
        if len(parts) >= 2 and parts[0] in sections:
            overrides.setdefault(parts[0], {})["_".join(parts[1:])] = value
        else:
            overrides["_".join(parts)] = value
    return _deep_merge(data, overrides)


def load_config(config_path: Path | None = None) -> WhatschedConfig:
    """Lädt die Konfiguration.

    Reihenfolge (spätere überschreiben frühere):
      1. Defaults (in den Pydantic-Modellen)
      2. config.yaml (wenn vorhanden)
      3. WHATSCHED_* Umgebungsvariablen

    Args:
        config_path: Expliziter Pfad zur config.yaml. Wenn None: ~/.whatsched/config.yaml

    Returns:
        Vollständig validierte WhatschedConfig.
    """
    data: dict[str, Any] = {}

    if config_path is None:
        config_path = Path.home() / ".whatsched" / "config.yaml"

    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            if isinstance(file_data, dict):
                data = file_data
        except yaml.YAMLError as exc:
            log.warning("Fehlerhafte config.yaml wird ignoriert: %s", exc)

    data = _apply_env_overrides(data)

    return WhatschedConfig(**data)


# ============================================================================
# Verzeichnisstruktur erstellen
# ============================================================================


_DEFAULT_CONFIG = """\
# whatsched Konfiguration
# Umgebungsvariablen (WHATSCHED_SECTION_KEY) überschreiben diese Werte.

scheduler:
  timezone: UTC

whatsapp:
  api_token: ""
  phone_number_id: ""

server:
  host: 127.0.0.1
  port: 3000
  admin_user: admin
  admin_password: password

logging:
  level: INFO
  json_logs: false
"""


def ensure_directory_structure(config: WhatschedConfig) -> list[str]:
    """Erstellt die ~/.whatsched/ Verzeichnisstruktur.

    Idempotent -- kann beliebig oft aufgerufen werden.
    Erstellt nur was fehlt, überschreibt nie vorhandene Dateien.

    Returns:
        Liste der neu erstellten Pfade (für Logging).
    """
    created: list[str] = []

    for d in (config.whatsched_home, config.logs_dir, config.db_path.parent):
        if not d.exists():
            d.mkdir(parents=True, exist_ok=True)
            created.append(str(d))

    if not config.config_file.exists():
        config.config_file.write_text(_DEFAULT_CONFIG, encoding="utf-8")
        created.append(str(config.config_file))

    return created

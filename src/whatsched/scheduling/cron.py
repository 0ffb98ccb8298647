"""CRON-Ausdrücke: Validieren und in APScheduler-Trigger übersetzen.

Unterstützt das Standard-5-Feld-Format ``minute hour day month day_of_week``.
Pro Feld erlaubt: ``*``, ``*/n``, ``n``, ``n/step``, ``a-b``, ``a-b/n`` sowie
Komma-Listen davon. Wochentage folgen der crontab-Zählung (0 = Sonntag)
und werden vor dem Bau des CronTriggers in Namen übersetzt, weil
APScheduler numerische Wochentage ab Montag zählt.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from apscheduler.triggers.cron import CronTrigger

from whatsched.core.errors import InvalidScheduleError

if TYPE_CHECKING:
    from datetime import tzinfo

# (APScheduler-Feldname, Minimum, Maximum) in Ausdrucksreihenfolge
CRON_FIELDS: tuple[tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("day_of_week", 0, 6),
)

_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

_ITEM_RE = re.compile(r"^(?P<base>\*|[0-9]+|[0-9]+-[0-9]+)(?:/(?P<step>[0-9]+))?$")


def _expand_item(item: str, name: str, low: int, high: int) -> set[int]:
    """Expandiert ein einzelnes Listenelement zu konkreten Werten."""
    match = _ITEM_RE.match(item)
    if match is None:
        msg = f"Ungültiges CRON-Feld '{name}': '{item}'"
        raise InvalidScheduleError(msg, details={"field": name, "value": item})

    base = match.group("base")
    step_text = match.group("step")
    step = int(step_text) if step_text is not None else 1
    if step < 1:
        msg = f"Schrittweite muss >= 1 sein in '{name}': '{item}'"
        raise InvalidScheduleError(msg, details={"field": name, "value": item})

    if base == "*":
        start, end = low, high
    elif "-" in base:
        first, last = (int(part) for part in base.split("-", 1))
        if first > last:
            msg = f"Umgekehrter Bereich in '{name}': '{item}'"
            raise InvalidScheduleError(msg, details={"field": name, "value": item})
        start, end = first, last
    else:
        start = int(base)
        # "n/step" läuft bis zum Feldmaximum, "n" ist ein einzelner Wert
        end = high if step_text is not None else start

    if start < low or end > high:
        msg = f"Wert außerhalb {low}-{high} in '{name}': '{item}'"
        raise InvalidScheduleError(msg, details={"field": name, "value": item})

    return set(range(start, end + 1, step))


def _expand_field(value: str, name: str, low: int, high: int) -> set[int]:
    values: set[int] = set()
    for item in value.split(","):
        values |= _expand_item(item, name, low, high)
    return values


def parse_cron_fields(expression: str) -> dict[str, str]:
    """Parst und validiert einen Cron-Ausdruck in APScheduler-kompatible Felder.

    Eingeschränkte Felder werden als explizite, sortierte Werteliste
    zurückgegeben, ``*`` bleibt ``*``.

    Args:
        expression: Cron-Ausdruck (z.B. "0 9 * * 1-5")

    Returns:
        Dict mit APScheduler CronTrigger-Feldern.

    Raises:
        InvalidScheduleError: Bei ungültigem Cron-Ausdruck.
    """
    if not isinstance(expression, str):
        msg = "CRON-Ausdruck muss ein String sein"
        raise InvalidScheduleError(msg)

    parts = expression.strip().split()
    if len(parts) != len(CRON_FIELDS):
        msg = f"Cron-Ausdruck muss 5 Felder haben, hat {len(parts)}: '{expression}'"
        raise InvalidScheduleError(msg, details={"pattern": expression})

    fields: dict[str, str] = {}
    for part, (name, low, high) in zip(parts, CRON_FIELDS, strict=True):
        values = _expand_field(part, name, low, high)
        if part == "*":
            fields[name] = "*"
        elif name == "day_of_week":
            fields[name] = ",".join(_WEEKDAY_NAMES[v] for v in sorted(values))
        else:
            fields[name] = ",".join(str(v) for v in sorted(values))
    return fields


def is_valid_cron(expression: str) -> bool:
    """True wenn der Ausdruck syntaktisch gültig ist."""
    try:
        parse_cron_fields(expression)
    except InvalidScheduleError:
        return False
    return True


def build_cron_trigger(expression: str, timezone: tzinfo | str = "UTC") -> CronTrigger:
    """Erzeugt einen CronTrigger aus einem validierten Ausdruck.

    Raises:
        InvalidScheduleError: Bei ungültigem Cron-Ausdruck.
    """
    fields = parse_cron_fields(expression)
    return CronTrigger(**fields, timezone=timezone)

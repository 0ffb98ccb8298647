"""whatsched · Unified Error Hierarchy.

All custom exceptions inherit from WhatschedError, which carries an
error_code and optional details dict for programmatic handling (the
HTTP layer maps them to status codes).

Usage::

    from whatsched.core.errors import InvalidScheduleError

    raise InvalidScheduleError("Time must be in the future", details={"delay_s": -3})
"""

from __future__ import annotations


class WhatschedError(Exception):
    """Base exception for all whatsched errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "WHATSCHED_ERROR",
        details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}


class ConfigError(WhatschedError):
    """Configuration-related errors (loading, validation, missing keys)."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIG_ERROR",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class InvalidScheduleError(WhatschedError):
    """Schedule request rejected before any trigger was created.

    Missing recipient/body, a one-shot time that is not in the future,
    a malformed CRON pattern or a mode that does not match the time spec.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_SCHEDULE",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class ChannelError(WhatschedError):
    """Messaging channel errors (connection, authentication)."""

    def __init__(
        self,
        message: str,
        error_code: str = "CHANNEL_ERROR",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class DeliveryError(ChannelError):
    """A message could not be handed to the messaging channel."""

    def __init__(
        self,
        message: str,
        error_code: str = "DELIVERY_ERROR",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class ContactError(WhatschedError):
    """Contact store errors (storage, lookup)."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONTACT_ERROR",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class DuplicateContactError(ContactError):
    """A contact with the same phone number already exists."""

    def __init__(
        self,
        message: str,
        error_code: str = "DUPLICATE_CONTACT",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)

"""Messaging channels: outbound transports the scheduler delivers through."""

from whatsched.channels.base import MessageChannel

__all__ = ["MessageChannel"]

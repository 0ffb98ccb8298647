"""whatsched · WhatsApp message scheduler."""

__version__ = "0.3.0"

"""Adressbuch für die Empfänger-Auswahl."""

from whatsched.contacts.store import ContactStore

__all__ = ["ContactStore"]

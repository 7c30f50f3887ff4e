"""Automated mailbox responder: one acknowledgment reply per new inbox thread."""

__version__ = "0.1.0"

"""Retry helpers for mailbox gateway calls."""

from autoreply.resilience.retry import resilient_api_call

__all__ = ["resilient_api_call"]

"""Metrics and error reporting for the auto-reply service."""

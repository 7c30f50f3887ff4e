"""Authentication module for Google API credential management."""

from autoreply.auth.credentials import (
    CredentialProvider,
    get_gmail_credentials,
    get_gmail_service,
    get_people_service,
)

__all__ = [
    "CredentialProvider",
    "get_gmail_credentials",
    "get_gmail_service",
    "get_people_service",
]

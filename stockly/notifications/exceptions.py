"""Exception hierarchy for push notification delivery."""

from __future__ import annotations


class FcmError(Exception):
    """Base exception for all FCM errors."""


class FcmCredentialError(FcmError):
    """Service account missing/invalid, or the token exchange failed."""


class FcmServiceAccountError(FcmCredentialError):
    """The service account is not configured or is malformed."""

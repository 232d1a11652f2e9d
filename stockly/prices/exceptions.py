"""Exception hierarchy for the price source."""

from __future__ import annotations


class PriceSourceError(Exception):
    """Base exception for all price source errors."""


class PriceSourceConnectionError(PriceSourceError):
    """Failed to reach the quote provider (HTTP error, timeout, not connected)."""


class PriceSourceParseError(PriceSourceError):
    """The quote provider returned a body that could not be parsed."""

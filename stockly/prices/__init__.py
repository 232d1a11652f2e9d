"""Market price sources."""

from stockly.prices.exceptions import (
    PriceSourceConnectionError,
    PriceSourceError,
    PriceSourceParseError,
)
from stockly.prices.fmp import FmpPriceSource, PriceSource

__all__ = [
    "FmpPriceSource",
    "PriceSource",
    "PriceSourceConnectionError",
    "PriceSourceError",
    "PriceSourceParseError",
]

"""FMP quote source — current price per symbol for alert evaluation."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Iterable
from types import TracebackType
from typing import Any, Protocol

import httpx
import structlog

from stockly.core.config import PricesConfig, get_settings
from stockly.prices.exceptions import PriceSourceConnectionError, PriceSourceParseError

logger = structlog.stdlib.get_logger()


class PriceSource(Protocol):
    async def get_prices(self, symbols: Iterable[str]) -> dict[str, float]: ...


def _parse_quote_price(body: Any) -> float | None:
    """Extract ``price`` from an FMP quote payload (list or single object)."""
    entry = body[0] if isinstance(body, list) and body else body
    if not isinstance(entry, dict):
        return None
    price = entry.get("price")
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        return None
    if not math.isfinite(price):
        return None
    return float(price)


class FmpPriceSource:
    """Fetches quotes from Financial Modeling Prep, one request per symbol.

    Usage::

        async with FmpPriceSource() as source:
            prices = await source.get_prices(["AAPL", "MSFT"])
    """

    def __init__(self, config: PricesConfig | None = None) -> None:
        self._config = config or get_settings().prices
        self._http: httpx.AsyncClient | None = None
        self._owns_client = True

    @property
    def connected(self) -> bool:
        return self._http is not None and not self._http.is_closed

    async def connect(self, client: httpx.AsyncClient | None = None) -> None:
        """Create the httpx client (or adopt *client*)."""
        if client is not None:
            self._http = client
            self._owns_client = False
            return
        transport = httpx.AsyncHTTPTransport(retries=self._config.transport_retries)
        self._http = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=httpx.Timeout(self._config.timeout_secs),
            transport=transport,
        )
        self._owns_client = True

    async def close(self) -> None:
        if self._http is not None and self._owns_client:
            await self._http.aclose()
        self._http = None

    async def __aenter__(self) -> FmpPriceSource:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def fetch_quote(self, symbol: str) -> float | None:
        """Return the current price of *symbol*, or None if FMP has none."""
        if self._http is None:
            raise PriceSourceConnectionError("HTTP client not connected")

        params = {"symbol": symbol, "apikey": self._config.api_key.get_secret_value()}
        try:
            response = await self._http.get("/quote", params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise PriceSourceConnectionError(
                f"quote request for {symbol} returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise PriceSourceConnectionError(
                f"quote request for {symbol} failed: {exc}"
            ) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise PriceSourceParseError(f"invalid JSON in quote for {symbol}") from exc
        return _parse_quote_price(body)

    async def get_prices(self, symbols: Iterable[str]) -> dict[str, float]:
        """Fetch prices for the distinct *symbols* concurrently.

        Symbols that fail or have no price are omitted. Raises
        PriceSourceConnectionError only when every request failed, since that
        means the source itself is unreachable.
        """
        unique = list(dict.fromkeys(s.strip().upper() for s in symbols if s.strip()))
        if not unique:
            return {}

        semaphore = asyncio.Semaphore(max(1, self._config.max_concurrency))
        failures = 0

        async def _one(symbol: str) -> tuple[str, float | None]:
            nonlocal failures
            async with semaphore:
                try:
                    return symbol, await self.fetch_quote(symbol)
                except (PriceSourceConnectionError, PriceSourceParseError) as exc:
                    failures += 1
                    logger.warning("quote_fetch_failed", symbol=symbol, error=str(exc))
                    return symbol, None

        pairs = await asyncio.gather(*(_one(s) for s in unique))

        if failures == len(unique):
            raise PriceSourceConnectionError(
                f"all {failures} quote requests failed"
            )

        prices = {symbol: price for symbol, price in pairs if price is not None}
        logger.info(
            "quotes_fetched",
            requested=len(unique),
            resolved=len(prices),
            failed=failures,
        )
        return prices

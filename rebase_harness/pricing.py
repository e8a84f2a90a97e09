"""
pricing.py - Exchange-rate sources for cost reporting

Operation costs are measured in gas; for reporting they are converted to the
native currency and then to a fiat currency. The fiat rate comes from a
pricing source. Rates only affect reporting, never invariant results.

Classes:
- PricingSource: Protocol defining the rate interface
- StaticPricingSource: Fixed rates
- HttpPricingSource: Rates fetched from a price API over HTTP
- FallbackPricingSource: Wraps a source and substitutes a fixed rate on failure
"""

from __future__ import annotations
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Protocol, runtime_checkable

import httpx

from .core import ExternalRateLookupFailure


DEFAULT_RATE_URL = "https://min-api.cryptocompare.com/data/price"
DEFAULT_FALLBACK_RATE = Decimal("700")
DEFAULT_TIMEOUT_SECONDS = 10.0


@runtime_checkable
class PricingSource(Protocol):
    """
    Protocol for pricing sources.

    A pricing source quotes one unit of a symbol in a quote currency.

    Implementations must provide get_rate().
    """
    quote_currency: str

    def get_rate(self, symbol: str) -> Decimal:
        """
        Return the price of one unit of symbol in quote_currency.

        Raises:
            ExternalRateLookupFailure: If no rate is available
        """
        ...


class StaticPricingSource:
    """
    Pricing source with fixed rates.

    The quote currency always prices at 1.
    """

    def __init__(self, rates: Dict[str, Decimal], quote_currency: str = "USD"):
        """
        Initialize with a static rate map.

        Args:
            rates: Dictionary mapping symbols to prices in quote_currency
            quote_currency: The currency in which rates are quoted
        """
        self.quote_currency = quote_currency
        self.rates = {k: Decimal(v) for k, v in rates.items()}
        self.rates[quote_currency] = Decimal("1")

    def get_rate(self, symbol: str) -> Decimal:
        if symbol not in self.rates:
            raise ExternalRateLookupFailure(f"No static rate for {symbol}")
        return self.rates[symbol]

    def update_rate(self, symbol: str, rate: Decimal):
        """Update the rate of a symbol."""
        self.rates[symbol] = Decimal(rate)

    def __repr__(self):
        return f"StaticPricingSource({len(self.rates)} rates, quote={self.quote_currency})"


class HttpPricingSource:
    """
    Pricing source backed by a JSON price API.

    Issues GET {url}?fsym={symbol}&tsyms={quote_currency} and reads the quote
    currency field of the JSON response, e.g. {"USD": 1834.2}.

    Example:
        source = HttpPricingSource()
        source.get_rate("ETH")   # Decimal('1834.2')
    """

    def __init__(
        self,
        url: str = DEFAULT_RATE_URL,
        quote_currency: str = "USD",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the source.

        Args:
            url: Price endpoint
            quote_currency: Currency requested from the endpoint
            timeout_seconds: Request timeout
            client: Pre-built httpx client (tests pass one with a mock transport)
        """
        self.url = url
        self.quote_currency = quote_currency
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds))

    def get_rate(self, symbol: str) -> Decimal:
        try:
            response = self._client.get(
                self.url, params={"fsym": symbol, "tsyms": self.quote_currency}
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalRateLookupFailure(f"Rate lookup for {symbol} failed: {e}") from e

        if not isinstance(payload, dict) or self.quote_currency not in payload:
            raise ExternalRateLookupFailure(
                f"Rate lookup for {symbol} returned no {self.quote_currency} field: {payload!r}"
            )
        try:
            rate = Decimal(str(payload[self.quote_currency]))
        except InvalidOperation as e:
            raise ExternalRateLookupFailure(f"Unparseable rate {payload[self.quote_currency]!r}") from e
        if not rate.is_finite() or rate <= 0:
            raise ExternalRateLookupFailure(f"Invalid rate {rate} for {symbol}")
        return rate

    def close(self) -> None:
        self._client.close()

    def __repr__(self):
        return f"HttpPricingSource({self.url}, quote={self.quote_currency})"


class FallbackPricingSource:
    """
    Substitutes a configured rate when the wrapped source fails.

    A failed lookup is not an error for cost reporting: a warning is printed
    and the fallback rate is returned.
    """

    def __init__(
        self,
        source: PricingSource,
        fallback_rate: Decimal = DEFAULT_FALLBACK_RATE,
        verbose: bool = True,
    ):
        self.source = source
        self.quote_currency = source.quote_currency
        self.fallback_rate = Decimal(fallback_rate)
        self.verbose = verbose
        self.used_fallback = False

    def get_rate(self, symbol: str) -> Decimal:
        try:
            return self.source.get_rate(symbol)
        except ExternalRateLookupFailure as e:
            self.used_fallback = True
            if self.verbose:
                print(
                    f"⚠️  Failed to fetch {symbol}/{self.quote_currency} conversion rate, "
                    f"using 1{symbol}={self.fallback_rate}{self.quote_currency} ({e})"
                )
            return self.fallback_rate

    def __repr__(self):
        return f"FallbackPricingSource({self.source!r}, fallback={self.fallback_rate})"

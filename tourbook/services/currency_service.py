"""Exchange-rate quotes for converting canonical tour prices into the gateway's billing currency.

Open Exchange Rates publishes USD-based rates. A quote is cached for its TTL;
when the provider is unreachable (or no app id is configured) the static
fallback table is used instead. Refreshing never raises.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Callable

import requests

logger = logging.getLogger(__name__)

# 1 USD = n units; used when the live provider is unavailable
FALLBACK_RATES = {
    "USD": 1.0,
    "GHS": 15.5,
    "EUR": 0.85,
    "GBP": 0.73,
    "CAD": 1.25,
}

CURRENCY_SYMBOLS = {
    "USD": "$",
    "GHS": "GH₵",
    "EUR": "€",
    "GBP": "£",
    "CAD": "C$",
}


class QuoteSource(str, Enum):
    LIVE = "live"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ExchangeRateQuote:
    """`rate` is billing-currency units per one canonical-currency unit."""

    base: str
    target: str
    rate: Decimal
    fetched_at: datetime
    source: QuoteSource
    ttl_seconds: int

    @property
    def expires_at(self) -> datetime:
        return self.fetched_at + timedelta(seconds=self.ttl_seconds)

    def is_stale(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class Conversion:
    amount: int
    human_readable_note: str
    quote: ExchangeRateQuote


class ExchangeRateError(RuntimeError):
    pass


def cross_rate(rates: dict, from_currency: str, to_currency: str, fallback: dict | None = None) -> Decimal:
    """Rate for from->to given a USD-based table; non-USD pairs go through USD.

    Currencies missing from `rates` are looked up in `fallback`
    (the static table unless given).
    """
    if from_currency == to_currency:
        return Decimal(1)
    fallback = FALLBACK_RATES if fallback is None else fallback
    from_rate = rates.get(from_currency, fallback.get(from_currency))
    to_rate = rates.get(to_currency, fallback.get(to_currency))
    if not from_rate or not to_rate:
        raise ExchangeRateError(f"no rate for {from_currency}->{to_currency}")
    return Decimal(str(to_rate)) / Decimal(str(from_rate))


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_price(minor_units: int, currency: str) -> str:
    major = (Decimal(minor_units) / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    return f"{symbol}{major:,.2f}"


def convert(amount: int, quote: ExchangeRateQuote) -> Conversion:
    """Convert canonical minor units into billing minor units (both currencies have 2 decimals)."""
    converted = round_half_up(Decimal(amount) * quote.rate)
    note = (
        f"{format_price(amount, quote.base)} = {format_price(converted, quote.target)} "
        f"(Rate: 1 {quote.base} = {quote.rate.quantize(Decimal('0.0001'))} {quote.target}, {quote.source.value})"
    )
    return Conversion(amount=converted, human_readable_note=note, quote=quote)


def format_price_with_conversion(amount: int, quote: ExchangeRateQuote) -> str:
    converted = convert(amount, quote).amount
    return f"{format_price(amount, quote.base)} (≈ {format_price(converted, quote.target)})"


def materially_changed(old: ExchangeRateQuote, new: ExchangeRateQuote, tolerance: Decimal = Decimal("0.001")) -> bool:
    """True when the source flipped or the rate moved by more than `tolerance` (relative)."""
    if old.source != new.source:
        return True
    return abs(new.rate - old.rate) > old.rate * tolerance


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExchangeRateCache:
    """Process-wide quote cache with an injectable clock.

    Reads (`get_cached_quote`) never perform I/O. Only a successful
    `refresh_quote` replaces the cached live quote (last writer wins).
    """

    def __init__(
        self,
        *,
        base: str,
        target: str,
        ttl_seconds: int,
        fallback_rate: float | None = None,
        app_id: str = "",
        url: str = "https://openexchangerates.org/api/latest.json",
        timeout: int = 10,
        clock: Callable[[], datetime] = _utcnow,
        session: requests.Session | None = None,
    ):
        self.base = base
        self.target = target
        self.ttl_seconds = ttl_seconds
        self.app_id = app_id
        self.url = url
        self.timeout = timeout
        self.clock = clock
        self.session = session or requests.Session()
        self.fallback_rates = dict(FALLBACK_RATES)
        if fallback_rate:
            self.fallback_rates[target] = fallback_rate * self.fallback_rates.get(base, 1.0)
        self._live: ExchangeRateQuote | None = None

    def fallback_quote(self) -> ExchangeRateQuote:
        return ExchangeRateQuote(
            base=self.base,
            target=self.target,
            rate=cross_rate(self.fallback_rates, self.base, self.target),
            fetched_at=self.clock(),
            source=QuoteSource.FALLBACK,
            ttl_seconds=self.ttl_seconds,
        )

    def get_cached_quote(self) -> ExchangeRateQuote:
        if self._live and not self._live.is_stale(self.clock()):
            return self._live
        return self.fallback_quote()

    async def refresh_quote(self) -> ExchangeRateQuote:
        if not self.app_id:
            logger.warning("Open Exchange Rates app id not configured, using cached/fallback rate")
            return self._last_resort()
        try:
            rates = await asyncio.to_thread(self._fetch_rates)
            # a live quote uses provider rates only
            rate = cross_rate(rates, self.base, self.target, fallback={})
            if rate <= 0:
                raise ExchangeRateError(f"non-positive rate {rate}")
        except Exception as e:
            logger.warning("Exchange rate refresh failed, keeping previous quote: %s", e)
            return self._last_resort()

        quote = ExchangeRateQuote(
            base=self.base,
            target=self.target,
            rate=rate,
            fetched_at=self.clock(),
            source=QuoteSource.LIVE,
            ttl_seconds=self.ttl_seconds,
        )
        self._live = quote
        logger.info("Fetched live rate 1 %s = %s %s", self.base, rate, self.target)
        return quote

    def _last_resort(self) -> ExchangeRateQuote:
        # A stale live quote still beats the static table once a refresh has failed
        if self._live:
            return self._live
        return self.fallback_quote()

    def _fetch_rates(self) -> dict:
        r = self.session.get(
            self.url,
            params={"app_id": self.app_id},
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        if r.status_code >= 400:
            raise ExchangeRateError(f"rate provider returned {r.status_code}")
        data = r.json()
        rates = data.get("rates")
        if not isinstance(rates, dict):
            raise ExchangeRateError("invalid rate provider response")
        # `rates` is relative to the provider base, which is 1 by definition
        rates.setdefault(data.get("base") or "USD", 1.0)
        return rates

    def status(self) -> dict:
        now = self.clock()
        out = {
            "cached": self._live is not None,
            "stale": None,
            "expiresIn": None,
            "lastUpdated": None,
            "fallbackRate": float(cross_rate(self.fallback_rates, self.base, self.target)),
            "apiEnabled": bool(self.app_id),
        }
        if self._live:
            out["stale"] = self._live.is_stale(now)
            out["expiresIn"] = max(0, int((self._live.expires_at - now).total_seconds()))
            out["lastUpdated"] = self._live.fetched_at.isoformat()
        return out

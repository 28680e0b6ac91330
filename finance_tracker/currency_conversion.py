from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
import json
import logging
from http.client import HTTPException
from typing import Mapping, Protocol
from urllib.request import urlopen

from finance_tracker.clock import Clock, system_clock

logger = logging.getLogger(__name__)

USD = "USD"
DEFAULT_CACHE_DURATION = timedelta(hours=6)

# Units of currency per 1 USD, used only when a live rate cannot be fetched.
FALLBACK_RATES: dict[str, Decimal] = {
    "UAH": Decimal("41.0"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("149.0"),
    "CNY": Decimal("7.24"),
    "CAD": Decimal("1.36"),
    "AUD": Decimal("1.52"),
    "CHF": Decimal("0.88"),
    "RUB": Decimal("92.0"),
    "INR": Decimal("83.0"),
}

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CNY": "¥",
    "UAH": "₴",
    "INR": "₹",
    "RUB": "₽",
    "CAD": "CA$",
    "AUD": "A$",
    "CHF": "CHF ",
}


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot supply a rate."""


@dataclass(frozen=True)
class RateQuote:
    currency: str
    rate: Decimal
    timestamp: datetime | None = None


@dataclass(frozen=True)
class CachedRate:
    currency: str
    rate: Decimal
    fetched_at: datetime

    def is_fresh(self, now: datetime, max_age: timedelta) -> bool:
        return now - self.fetched_at <= max_age


@dataclass(frozen=True)
class UsdAmount:
    """A USD figure plus whether any fallback rate went into it."""

    amount: Decimal
    is_approximate: bool = False

    def __add__(self, other: UsdAmount) -> UsdAmount:
        return UsdAmount(
            amount=self.amount + other.amount,
            is_approximate=self.is_approximate or other.is_approximate,
        )

    def __sub__(self, other: UsdAmount) -> UsdAmount:
        return UsdAmount(
            amount=self.amount - other.amount,
            is_approximate=self.is_approximate or other.is_approximate,
        )


ZERO_USD = UsdAmount(Decimal("0"))


class RateProvider(Protocol):
    def fetch_rate(self, currency: str) -> RateQuote: ...


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates.

    Rates are expressed as target currency per 1 USD.
    """

    rates: Mapping[str, Decimal] | None = None

    def __post_init__(self) -> None:
        normalized = {normalize_currency(code): _coerce_amount(value) for code, value in (self.rates or FALLBACK_RATES).items()}
        normalized.setdefault(USD, Decimal("1"))
        object.__setattr__(self, "rates", normalized)

    def fetch_rate(self, currency: str) -> RateQuote:
        normalized = _normalize_code(currency)
        try:
            return RateQuote(currency=normalized, rate=self.rates[normalized])
        except KeyError as exc:
            raise RateProviderUnavailable(f"No static rate for {normalized}") from exc


@dataclass(frozen=True)
class FrankfurterRateProvider:
    base_url: str = "https://api.frankfurter.app"
    timeout_seconds: float = 8

    def fetch_rate(self, currency: str) -> RateQuote:
        normalized = _normalize_code(currency)
        url = f"{self.base_url}/latest?from={USD}&to={normalized}"
        try:
            with urlopen(url, timeout=self.timeout_seconds) as response:
                payload = json.load(response)
        except (OSError, HTTPException, ValueError) as exc:
            raise RateProviderUnavailable("Frankfurter API unavailable") from exc

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict) or normalized not in rates:
            raise RateProviderUnavailable(f"Frankfurter response missing {normalized}")
        try:
            rate = Decimal(str(rates[normalized]))
        except InvalidOperation as exc:
            raise RateProviderUnavailable(f"Frankfurter returned a malformed rate for {normalized}") from exc
        if not rate.is_finite() or rate <= 0:
            raise RateProviderUnavailable(f"Frankfurter returned a non-positive rate for {normalized}")
        return RateQuote(currency=normalized, rate=rate, timestamp=_parse_rate_date(payload.get("date")))


@dataclass
class RateCache:
    """Latest fetched rate per currency; concurrent writers simply overwrite."""

    _entries: dict[str, CachedRate] = field(default_factory=dict)

    def get(self, currency: str) -> CachedRate | None:
        return self._entries.get(currency)

    def put(self, entry: CachedRate) -> None:
        self._entries[entry.currency] = entry

    def clear(self) -> None:
        self._entries.clear()


class CurrencyService:
    def __init__(
        self,
        provider: RateProvider,
        cache: RateCache | None = None,
        clock: Clock = system_clock,
        cache_duration: timedelta = DEFAULT_CACHE_DURATION,
        fallback_rates: Mapping[str, Decimal] | None = None,
    ) -> None:
        self._provider = provider
        self._cache = cache if cache is not None else RateCache()
        self._clock = clock
        self._cache_duration = cache_duration
        self._fallback_rates = dict(FALLBACK_RATES if fallback_rates is None else fallback_rates)

    def rate(self, currency: str) -> Decimal:
        """Units of ``currency`` per 1 USD.

        Served from the cache while the entry is younger than the cache
        duration, otherwise fetched and cached. Raises
        ``RateProviderUnavailable`` when the fetch fails.
        """
        normalized = _normalize_code(currency)
        cached = self._cache.get(normalized)
        if cached is not None and cached.is_fresh(self._clock(), self._cache_duration):
            return cached.rate

        quote = self._provider.fetch_rate(normalized)
        self._cache.put(CachedRate(currency=normalized, rate=quote.rate, fetched_at=self._clock()))
        return quote.rate

    def to_usd(self, amount: Decimal | int | float | str, currency: str) -> Decimal:
        coerced = _coerce_amount(amount)
        if _normalize_code(currency) == USD:
            return coerced
        return coerced / self.rate(currency)

    def to_usd_with_fallback(self, amount: Decimal | int | float | str, currency: str) -> UsdAmount:
        coerced = _coerce_amount(amount)
        normalized = _normalize_code(currency)
        if normalized == USD:
            return UsdAmount(coerced, is_approximate=False)
        try:
            return UsdAmount(coerced / self.rate(normalized), is_approximate=False)
        except RateProviderUnavailable:
            fallback = self._fallback_rates.get(normalized)
            if fallback is not None:
                logger.warning("Using fallback rate for %s", normalized)
                return UsdAmount(coerced / fallback, is_approximate=True)
            # No rate at all: the amount is passed through as if it were USD.
            logger.warning("No rate available for %s; treating amount as USD", normalized)
            return UsdAmount(coerced, is_approximate=True)

    def format_amount(self, amount: Decimal | int | float | str, currency: str) -> str:
        return format_amount(amount, currency)

    def format_amount_in_usd(self, amount: Decimal | int | float | str) -> str:
        return format_amount(amount, USD)


def format_amount(amount: Decimal | int | float | str, currency: str) -> str:
    coerced = _coerce_amount(amount)
    normalized = _normalize_code(currency)
    sign = "-" if coerced < 0 else ""
    magnitude = f"{abs(coerced):,.2f}"
    symbol = CURRENCY_SYMBOLS.get(normalized)
    if symbol is None:
        return f"{sign}{normalized} {magnitude}"
    return f"{sign}{symbol}{magnitude}"


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def _normalize_code(value: str) -> str:
    return (value or "").strip().upper()


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def _parse_rate_date(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        return None
    return datetime(parsed.year, parsed.month, parsed.day)

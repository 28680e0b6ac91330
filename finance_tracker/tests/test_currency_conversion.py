import io
import json
import unittest
from datetime import datetime, timedelta
from decimal import Decimal
from http.client import IncompleteRead
from unittest.mock import patch
from urllib.error import URLError

from finance_tracker.currency_conversion import (
    CurrencyService,
    FrankfurterRateProvider,
    RateCache,
    RateProviderUnavailable,
    RateQuote,
    StaticRateProvider,
    UsdAmount,
    format_amount,
    normalize_currency,
)


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class CountingProvider:
    def __init__(self, rates=None, fail: bool = False) -> None:
        self.rates = dict(rates or {})
        self.fail = fail
        self.calls: list[str] = []

    def fetch_rate(self, currency: str) -> RateQuote:
        self.calls.append(currency)
        if self.fail or currency not in self.rates:
            raise RateProviderUnavailable("Down")
        return RateQuote(currency=currency, rate=self.rates[currency])


class CurrencyServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = MutableClock(datetime(2024, 5, 1, 9, 0))
        self.provider = CountingProvider(rates={"EUR": Decimal("2"), "JPY": Decimal("4")})
        self.service = CurrencyService(self.provider, clock=self.clock)

    def test_usd_returns_original_amount_without_fetching(self) -> None:
        result = self.service.to_usd_with_fallback(Decimal("12.50"), "USD")

        self.assertEqual(result, UsdAmount(Decimal("12.50"), is_approximate=False))
        self.assertEqual(self.provider.calls, [])

    def test_usd_is_matched_case_insensitively(self) -> None:
        result = self.service.to_usd_with_fallback(Decimal("3"), " usd ")

        self.assertEqual(result.amount, Decimal("3"))
        self.assertEqual(self.provider.calls, [])

    def test_conversion_divides_by_units_per_usd(self) -> None:
        result = self.service.to_usd_with_fallback(Decimal("10"), "EUR")

        self.assertEqual(result.amount, Decimal("5"))
        self.assertFalse(result.is_approximate)

    def test_rate_is_cached_for_six_hours(self) -> None:
        self.service.rate("EUR")
        self.clock.now += timedelta(hours=6)
        self.service.rate("EUR")

        self.assertEqual(self.provider.calls, ["EUR"])

    def test_expired_rate_is_refetched_and_overwritten(self) -> None:
        self.service.rate("EUR")
        self.provider.rates["EUR"] = Decimal("3")
        self.clock.now += timedelta(hours=6, seconds=1)

        self.assertEqual(self.service.rate("EUR"), Decimal("3"))
        self.assertEqual(self.provider.calls, ["EUR", "EUR"])
        self.clock.now += timedelta(minutes=5)
        self.assertEqual(self.service.rate("EUR"), Decimal("3"))
        self.assertEqual(len(self.provider.calls), 2)

    def test_cache_can_be_shared_between_services(self) -> None:
        cache = RateCache()
        first = CurrencyService(self.provider, cache=cache, clock=self.clock)
        second = CurrencyService(CountingProvider(fail=True), cache=cache, clock=self.clock)

        first.rate("JPY")

        self.assertEqual(second.rate("JPY"), Decimal("4"))

    def test_rate_raises_when_fetch_fails(self) -> None:
        service = CurrencyService(CountingProvider(fail=True), clock=self.clock)

        with self.assertRaises(RateProviderUnavailable):
            service.rate("EUR")
        with self.assertRaises(RateProviderUnavailable):
            service.to_usd(Decimal("1"), "EUR")

    def test_falls_back_to_static_table_when_fetch_fails(self) -> None:
        service = CurrencyService(CountingProvider(fail=True), clock=self.clock)

        result = service.to_usd_with_fallback(Decimal("92"), "EUR")

        self.assertEqual(result.amount, Decimal("100"))
        self.assertTrue(result.is_approximate)

    def test_unknown_currency_passes_amount_through_as_usd(self) -> None:
        # Degraded behaviour: the magnitude is wrong but nothing raises.
        service = CurrencyService(CountingProvider(fail=True), clock=self.clock)

        result = service.to_usd_with_fallback(Decimal("50"), "XYZ")

        self.assertEqual(result, UsdAmount(Decimal("50"), is_approximate=True))

    def test_failed_conversion_stays_positive_and_approximate(self) -> None:
        service = CurrencyService(CountingProvider(fail=True), clock=self.clock)

        for currency in ("EUR", "GBP", "JPY", "UAH", "INR", "XYZ", "BRL"):
            for amount in (Decimal("0.01"), Decimal("1"), Decimal("2500.75")):
                result = service.to_usd_with_fallback(amount, currency)
                self.assertGreater(result.amount, 0, currency)
                self.assertTrue(result.is_approximate, currency)

    def test_custom_fallback_table(self) -> None:
        service = CurrencyService(
            CountingProvider(fail=True),
            clock=self.clock,
            fallback_rates={"SEK": Decimal("10")},
        )

        self.assertEqual(service.to_usd_with_fallback(Decimal("100"), "SEK").amount, Decimal("10"))
        self.assertEqual(service.to_usd_with_fallback(Decimal("92"), "EUR").amount, Decimal("92"))

    def test_formats_amounts(self) -> None:
        self.assertEqual(self.service.format_amount_in_usd(Decimal("1234.5")), "$1,234.50")
        self.assertEqual(self.service.format_amount(Decimal("-12"), "USD"), "-$12.00")
        self.assertEqual(self.service.format_amount(Decimal("3.1"), "eur"), "€3.10")
        self.assertEqual(format_amount(Decimal("5"), "XYZ"), "XYZ 5.00")


class UsdAmountTests(unittest.TestCase):
    def test_addition_carries_approximation(self) -> None:
        total = UsdAmount(Decimal("1")) + UsdAmount(Decimal("2"), is_approximate=True)

        self.assertEqual(total, UsdAmount(Decimal("3"), is_approximate=True))

    def test_subtraction(self) -> None:
        self.assertEqual(
            UsdAmount(Decimal("10")) - UsdAmount(Decimal("4")),
            UsdAmount(Decimal("6")),
        )


class RateProviderTests(unittest.TestCase):
    def test_static_provider_normalizes_codes(self) -> None:
        provider = StaticRateProvider(rates={"eur": Decimal("2")})

        self.assertEqual(provider.fetch_rate(" EUR ").rate, Decimal("2"))
        self.assertEqual(provider.fetch_rate("USD").rate, Decimal("1"))

    def test_static_provider_missing_currency_is_unavailable(self) -> None:
        with self.assertRaises(RateProviderUnavailable):
            StaticRateProvider(rates={"EUR": Decimal("2")}).fetch_rate("CAD")

    def test_frankfurter_parses_rate(self) -> None:
        body = json.dumps({"amount": 1.0, "base": "USD", "date": "2024-05-01", "rates": {"EUR": 0.93}})
        with patch("finance_tracker.currency_conversion.urlopen") as mocked:
            mocked.return_value.__enter__.return_value = io.BytesIO(body.encode("utf-8"))
            quote = FrankfurterRateProvider(base_url="https://rates.test").fetch_rate("eur")

        self.assertEqual(quote.currency, "EUR")
        self.assertEqual(quote.rate, Decimal("0.93"))
        self.assertEqual(quote.timestamp, datetime(2024, 5, 1))
        self.assertEqual(mocked.call_args.args[0], "https://rates.test/latest?from=USD&to=EUR")

    def test_frankfurter_network_error_is_unavailable(self) -> None:
        with patch("finance_tracker.currency_conversion.urlopen", side_effect=URLError("offline")):
            with self.assertRaises(RateProviderUnavailable):
                FrankfurterRateProvider().fetch_rate("EUR")

    def test_frankfurter_missing_rate_is_unavailable(self) -> None:
        body = json.dumps({"rates": {}})
        with patch("finance_tracker.currency_conversion.urlopen") as mocked:
            mocked.return_value.__enter__.return_value = io.BytesIO(body.encode("utf-8"))
            with self.assertRaises(RateProviderUnavailable):
                FrankfurterRateProvider().fetch_rate("EUR")

    def test_frankfurter_invalid_utf8_body_falls_back(self) -> None:
        service = CurrencyService(FrankfurterRateProvider())
        with patch("finance_tracker.currency_conversion.urlopen") as mocked:
            mocked.return_value.__enter__.return_value = io.BytesIO(b'{"rates": {"EUR": \xff}}')
            result = service.to_usd_with_fallback(Decimal("92"), "EUR")

        self.assertEqual(result, UsdAmount(Decimal("100"), is_approximate=True))

    def test_frankfurter_connection_reset_mid_body_falls_back(self) -> None:
        service = CurrencyService(FrankfurterRateProvider())
        with patch("finance_tracker.currency_conversion.urlopen") as mocked:
            mocked.return_value.__enter__.return_value.read.side_effect = ConnectionResetError("peer reset")
            with self.assertRaises(RateProviderUnavailable):
                FrankfurterRateProvider().fetch_rate("EUR")
            result = service.to_usd_with_fallback(Decimal("92"), "EUR")

        self.assertEqual(result, UsdAmount(Decimal("100"), is_approximate=True))

    def test_frankfurter_incomplete_read_is_unavailable(self) -> None:
        with patch("finance_tracker.currency_conversion.urlopen") as mocked:
            mocked.return_value.__enter__.return_value.read.side_effect = IncompleteRead(b'{"rates"')
            with self.assertRaises(RateProviderUnavailable):
                FrankfurterRateProvider().fetch_rate("EUR")

    def test_frankfurter_failure_falls_back_in_service(self) -> None:
        service = CurrencyService(FrankfurterRateProvider())
        with patch("finance_tracker.currency_conversion.urlopen", side_effect=URLError("offline")):
            result = service.to_usd_with_fallback(Decimal("41"), "UAH")

        self.assertEqual(result, UsdAmount(Decimal("1"), is_approximate=True))


class NormalizeCurrencyTests(unittest.TestCase):
    def test_normalizes_codes(self) -> None:
        self.assertEqual(normalize_currency(" eur "), "EUR")

    def test_rejects_non_iso_codes(self) -> None:
        with self.assertRaises(ValueError):
            normalize_currency("EURO")


if __name__ == "__main__":
    unittest.main()

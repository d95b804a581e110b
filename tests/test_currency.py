from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import permutations

import pytest
import requests

from subtrack.currency import CurrencyConverter, UnsupportedCurrencyError
from subtrack.local_cache import LocalCache
from subtrack.rates import ExchangeRateClient, RateFetchError, rates_are_fresh, refresh_rates

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def test_two_hop_conversion_through_base():
    converter = CurrencyConverter(display_currency="RSD")
    assert converter.convert(10.0) == pytest.approx(991.0)
    assert converter.convert(85.0, "EUR") == pytest.approx(9910.0)
    assert converter.convert(85.0, "EUR", "USD") == pytest.approx(100.0)


def test_round_trip_for_every_pair():
    converter = CurrencyConverter()
    for source, target in permutations(converter.rates, 2):
        there = converter.convert(42.42, source, target)
        assert converter.convert(there, target, source) == pytest.approx(42.42)


def test_unknown_currency_is_rejected():
    converter = CurrencyConverter()
    with pytest.raises(UnsupportedCurrencyError):
        converter.convert(1.0, "XYZ")
    with pytest.raises(UnsupportedCurrencyError):
        converter.set_display_currency("GBP")
    assert converter.display_currency == "USD"


def test_update_rates_ignores_bad_entries_and_pins_base():
    converter = CurrencyConverter()
    converter.update_rates({"USD": 3.0, "EUR": -1, "RSD": "n/a", "GBP": 0.79})
    assert converter.rates == {"USD": 1.0, "EUR": 0.85, "RSD": 99.1, "GBP": 0.79}


def test_formatting_per_currency():
    converter = CurrencyConverter()
    assert converter.format(1234.5) == "$1,234.50"
    assert converter.format(-3.1, "USD") == "-$3.10"
    assert converter.format(1234.5, "EUR") == "1.234,50 €"
    assert converter.format(12, "RSD") == "12,00 дин"


def test_formatting_falls_back_for_codes_without_layout():
    converter = CurrencyConverter(rates={"GBP": 0.79})
    assert converter.format(5, "GBP") == "GBP5.00"
    assert converter.symbol("EUR") == "€"


def test_format_base_converts_first():
    converter = CurrencyConverter(display_currency="EUR")
    assert converter.format_base(100.0) == "85,00 €"


def test_client_parses_rates(rate_session):
    session = rate_session({"base": "USD", "rates": {"EUR": 0.91, "RSD": 107.2}})
    client = ExchangeRateClient("https://rates.test/latest", session=session)
    assert client.fetch("USD", ["USD", "EUR", "RSD"]) == {"EUR": 0.91, "RSD": 107.2, "USD": 1.0}
    url, kwargs = session.calls[0]
    assert url == "https://rates.test/latest"
    assert kwargs["params"] == {"base": "USD", "symbols": "EUR,RSD"}
    assert kwargs["timeout"] == 5.0


@pytest.mark.parametrize(
    "payload, status_code, error",
    [
        ({"error": "quota"}, 200, None),
        ({"rates": {"EUR": 0.9}}, 200, None),
        ({"rates": {"EUR": 0.9, "RSD": True}}, 200, None),
        (ValueError("not json"), 200, None),
        ({}, 500, requests.HTTPError("500")),
    ],
)
def test_client_rejects_malformed_responses(rate_session, payload, status_code, error):
    session = rate_session(payload, status_code=status_code, error=error)
    client = ExchangeRateClient("https://rates.test/latest", session=session)
    with pytest.raises(RateFetchError):
        client.fetch("USD", ["EUR", "RSD"])


def test_rates_freshness_window():
    assert rates_are_fresh(NOW - timedelta(hours=7, minutes=59), 8, NOW)
    assert not rates_are_fresh(NOW - timedelta(hours=8), 8, NOW)
    assert rates_are_fresh(datetime(2026, 10, 19, 11, 0), 8, NOW)


def test_refresh_fetches_when_nothing_cached(tmp_path, rate_session):
    cache = LocalCache(tmp_path / "cache.json")
    converter = CurrencyConverter()
    client = ExchangeRateClient("u", session=rate_session({"rates": {"EUR": 0.9, "RSD": 110.0}}))

    assert refresh_rates(converter, client, cache, now=NOW) is True
    assert converter.rates["EUR"] == 0.9
    rates, fetched_at = LocalCache(tmp_path / "cache.json").get_rates()
    assert rates["RSD"] == 110.0
    assert fetched_at == NOW


def test_refresh_uses_fresh_cache_without_network(tmp_path, rate_session):
    cache = LocalCache(tmp_path / "cache.json")
    cache.set_rates({"USD": 1.0, "EUR": 0.95, "RSD": 117.0}, NOW - timedelta(hours=1))
    session = rate_session({"rates": {"EUR": 0.5, "RSD": 50.0}})
    converter = CurrencyConverter()

    assert refresh_rates(converter, ExchangeRateClient("u", session=session), cache, now=NOW) is False
    assert session.calls == []
    assert converter.rates["EUR"] == 0.95


def test_failed_refresh_keeps_stale_cache(tmp_path, rate_session):
    cache = LocalCache(tmp_path / "cache.json")
    cache.set_rates({"USD": 1.0, "EUR": 0.95, "RSD": 117.0}, NOW - timedelta(days=2))
    client = ExchangeRateClient("u", session=rate_session(exc=requests.Timeout("slow")))
    converter = CurrencyConverter()

    assert refresh_rates(converter, client, cache, now=NOW) is False
    assert converter.rates["EUR"] == 0.95
    assert cache.get_rates()[1] == NOW - timedelta(days=2)


def test_failed_refresh_without_cache_keeps_fallback(tmp_path, rate_session):
    client = ExchangeRateClient("u", session=rate_session(exc=requests.ConnectionError("offline")))
    converter = CurrencyConverter()
    assert refresh_rates(converter, client, LocalCache(tmp_path / "cache.json"), now=NOW) is False
    assert converter.rates == {"USD": 1.0, "EUR": 0.85, "RSD": 99.1}


def test_local_cache_round_trip_and_defaults(tmp_path):
    path = tmp_path / "nested" / "cache.json"
    cache = LocalCache(path)
    assert cache.get_currency() == "USD"
    assert cache.get_monthly_budget() is None
    assert cache.get_rates() is None

    cache.set_currency("EUR")
    cache.set_monthly_budget(150.0)
    reloaded = LocalCache(path)
    assert reloaded.get_currency() == "EUR"
    assert reloaded.get_monthly_budget() == 150.0


def test_local_cache_survives_corrupt_file(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding="utf-8")
    assert LocalCache(path).get_currency() == "USD"

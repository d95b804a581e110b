"""
Exchange-rate lookup and the refresh policy around it.

Rates are refreshed when the cached table is older than the configured age.
A failed refresh never surfaces: the converter keeps whatever table it has,
stale or fallback.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional

import requests

from .currency import CurrencyConverter
from .local_cache import LocalCache

logger = logging.getLogger(__name__)


class RateFetchError(Exception):
    pass


class ExchangeRateClient:
    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, base: str, symbols: Iterable[str]) -> Dict[str, float]:
        """GET ``latest?base=USD&symbols=EUR,RSD`` and return the ``rates`` object."""
        wanted = [code for code in symbols if code != base]
        try:
            resp = self.session.get(
                self.url,
                params={"base": base, "symbols": ",".join(wanted)},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise RateFetchError(str(exc)) from exc

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise RateFetchError("response carries no rates object")
        parsed: Dict[str, float] = {}
        for code in wanted:
            value = rates.get(code)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise RateFetchError(f"missing or invalid rate for {code}")
            parsed[code] = float(value)
        parsed[base] = 1.0
        return parsed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def rates_are_fresh(fetched_at: datetime, max_age_hours: float, now: Optional[datetime] = None) -> bool:
    now = now or _utcnow()
    if fetched_at.tzinfo is None:
        fetched_at = fetched_at.replace(tzinfo=timezone.utc)
    return now - fetched_at < timedelta(hours=max_age_hours)


def refresh_rates(
    converter: CurrencyConverter,
    client: ExchangeRateClient,
    cache: LocalCache,
    max_age_hours: float = 8.0,
    force: bool = False,
    now: Optional[datetime] = None,
) -> bool:
    """Bring the converter's table up to date.

    Returns True when a new table was fetched from the service.
    """
    now = now or _utcnow()
    cached = cache.get_rates()
    if cached is not None:
        rates, fetched_at = cached
        converter.update_rates(rates)
        if not force and rates_are_fresh(fetched_at, max_age_hours, now):
            logger.debug("Using cached exchange rates from %s", fetched_at.isoformat())
            return False

    symbols = [code for code in converter.rates if code != converter.base_currency]
    try:
        rates = client.fetch(converter.base_currency, symbols)
    except RateFetchError as exc:
        logger.warning("Exchange-rate refresh failed, keeping previous table: %s", exc)
        return False

    converter.update_rates(rates)
    cache.set_rates(rates, now)
    logger.info("Exchange rates refreshed for %s", ", ".join(sorted(rates)))
    return True

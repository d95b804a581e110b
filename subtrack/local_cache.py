"""Device-local key-value cache: display currency, rate table and monthly budget."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CACHE: Dict[str, Any] = {
    'currency': 'USD',
    'exchange_rates': None,
    'monthly_budget': None,
}


def load_cache(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return DEFAULT_CACHE.copy()
    try:
        with path.open('r', encoding='utf-8') as handle:
            data = json.load(handle)
    except (json.JSONDecodeError, OSError):
        logger.warning("Ignoring unreadable local cache at %s", path)
        return DEFAULT_CACHE.copy()
    if not isinstance(data, dict):
        return DEFAULT_CACHE.copy()
    merged = DEFAULT_CACHE.copy()
    merged.update({k: v for k, v in data.items() if k in DEFAULT_CACHE})
    return merged


def save_cache(cache: Dict[str, Any], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open('w', encoding='utf-8') as handle:
        json.dump(cache, handle, indent=2, sort_keys=True)


class LocalCache:
    """Typed accessors over the JSON cache file. Every setter writes through."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._data = load_cache(self.path)

    def get_currency(self) -> str:
        value = self._data.get('currency')
        return value if isinstance(value, str) and value else DEFAULT_CACHE['currency']

    def set_currency(self, currency: str) -> None:
        self._set('currency', currency)

    def get_rates(self) -> Optional[Tuple[Dict[str, float], datetime]]:
        """Return the cached rate table and when it was fetched, if present."""
        entry = self._data.get('exchange_rates')
        if not isinstance(entry, dict):
            return None
        rates = entry.get('rates')
        fetched_at = entry.get('fetched_at')
        if not isinstance(rates, dict) or not isinstance(fetched_at, str):
            return None
        try:
            timestamp = datetime.fromisoformat(fetched_at)
        except ValueError:
            return None
        return rates, timestamp

    def set_rates(self, rates: Dict[str, float], fetched_at: datetime) -> None:
        self._set('exchange_rates', {'rates': dict(rates), 'fetched_at': fetched_at.isoformat()})

    def get_monthly_budget(self) -> Optional[float]:
        value = self._data.get('monthly_budget')
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    def set_monthly_budget(self, amount: Optional[float]) -> None:
        self._set('monthly_budget', amount)

    def _set(self, key: str, value: Any) -> None:
        self._data[key] = value
        save_cache(self._data, self.path)

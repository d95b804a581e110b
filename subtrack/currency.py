"""Conversion between the base currency and the selected display currency."""

from __future__ import annotations

from typing import Dict, Mapping, Optional

BASE_CURRENCY = "USD"

FALLBACK_RATES: Dict[str, float] = {
    "USD": 1.0,
    "EUR": 0.85,
    "RSD": 99.1,
}

CURRENCY_SYMBOLS: Dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "RSD": "дин",
}

# symbol placement, thousands separator, decimal separator, decimals
_LOCALE_FORMATS: Dict[str, tuple[str, str, str, int]] = {
    "USD": ("prefix", ",", ".", 2),
    "EUR": ("suffix", ".", ",", 2),
    "RSD": ("suffix", ".", ",", 2),
}


class UnsupportedCurrencyError(ValueError):
    def __init__(self, currency: str) -> None:
        super().__init__(f"Unsupported currency: {currency}")
        self.currency = currency


class CurrencyConverter:
    """Two-hop conversion through the base currency.

    Rates are units of a currency per one unit of the base currency, so the
    base itself always has rate 1.
    """

    def __init__(
        self,
        rates: Optional[Mapping[str, float]] = None,
        display_currency: str = BASE_CURRENCY,
        base_currency: str = BASE_CURRENCY,
    ) -> None:
        self.base_currency = base_currency
        self._rates: Dict[str, float] = {base_currency: 1.0}
        self.update_rates(rates if rates is not None else FALLBACK_RATES)
        self._display_currency = base_currency
        self.set_display_currency(display_currency)

    # ------------------------------------------------------------------
    # Public accessors
    # ------------------------------------------------------------------
    @property
    def rates(self) -> Dict[str, float]:
        return dict(self._rates)

    @property
    def display_currency(self) -> str:
        return self._display_currency

    def supports(self, currency: str) -> bool:
        return currency.upper() in self._rates

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------
    def update_rates(self, rates: Mapping[str, float]) -> None:
        """Merge a rate table in. Non-positive or non-numeric entries are ignored."""
        for code, rate in rates.items():
            code = code.upper()
            if code == self.base_currency:
                continue
            try:
                value = float(rate)
            except (TypeError, ValueError):
                continue
            if value > 0:
                self._rates[code] = value

    def set_display_currency(self, currency: str) -> None:
        code = currency.upper()
        if code not in self._rates:
            raise UnsupportedCurrencyError(currency)
        self._display_currency = code

    # ------------------------------------------------------------------
    # Conversion and formatting
    # ------------------------------------------------------------------
    def convert(
        self,
        amount: float,
        from_currency: Optional[str] = None,
        to_currency: Optional[str] = None,
    ) -> float:
        source = self._rate(from_currency or self.base_currency)
        target = self._rate(to_currency or self._display_currency)
        amount_in_base = amount / source
        return amount_in_base * target

    def to_base(self, amount: float, from_currency: str) -> float:
        return self.convert(amount, from_currency, self.base_currency)

    def symbol(self, currency: Optional[str] = None) -> str:
        code = (currency or self._display_currency).upper()
        return CURRENCY_SYMBOLS.get(code, code)

    def format(self, amount: float, currency: Optional[str] = None) -> str:
        """Render an amount already expressed in ``currency`` (display currency by default)."""
        code = (currency or self._display_currency).upper()
        symbol = self.symbol(code)
        layout = _LOCALE_FORMATS.get(code)
        if layout is None:
            return f"{symbol}{amount:.2f}"
        placement, group, decimal, places = layout
        number = f"{abs(amount):,.{places}f}"
        number = number.replace(",", "\0").replace(".", decimal).replace("\0", group)
        sign = "-" if amount < 0 else ""
        if placement == "prefix":
            return f"{sign}{symbol}{number}"
        return f"{sign}{number} {symbol}"

    def format_base(self, amount: float) -> str:
        """Convert a base-currency amount to the display currency and format it."""
        return self.format(self.convert(amount))

    def _rate(self, currency: str) -> float:
        code = currency.upper()
        try:
            return self._rates[code]
        except KeyError:
            raise UnsupportedCurrencyError(currency) from None

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from .config import Settings, get_settings
from .currency import CurrencyConverter, UnsupportedCurrencyError
from .ledger import SavingsLedger
from .local_cache import LocalCache
from .models import (
    CATEGORIES,
    Category,
    DashboardSummary,
    Subscription,
    SubscriptionIn,
    SubscriptionStatus,
    SubscriptionUpdate,
    SubscriptionView,
)
from .money import annual_cost, monthly_equivalent, round_money
from .rates import ExchangeRateClient, refresh_rates
from .store import DataStore, InMemoryStore, NotFoundError, RestStore

logger = logging.getLogger(__name__)


class SubscriptionValidationError(ValueError):
    pass


class DuplicateSubscriptionError(SubscriptionValidationError):
    """A subscription with the same name exists; creation needs explicit confirmation."""

    def __init__(self, name: str, existing_ids: List[str]) -> None:
        super().__init__(f"A subscription named {name!r} already exists")
        self.name = name
        self.existing_ids = existing_ids


def renewal_label(renewal_date: date, today: date) -> tuple[str, bool]:
    """Human label for the next renewal and whether it needs attention."""
    days = (renewal_date - today).days
    if days == 0:
        return "Renews today", True
    if days == 1:
        return "Renews tomorrow", True
    if days < 0:
        return f"Overdue by {abs(days)} days", True
    if days <= 7:
        return f"Renews in {days} days", True
    return f"{renewal_date:%b} {renewal_date.day}, {renewal_date.year}", False


class SubscriptionRepository:
    """Session-scoped cache of one user's subscriptions over the data store.

    Every mutation is followed by a full re-fetch. Fetches carry a sequence
    number and only the newest one is installed.
    """

    monthly_equivalent = staticmethod(monthly_equivalent)
    annual_cost = staticmethod(annual_cost)

    def __init__(self, store: DataStore, user_id: str, converter: Optional[CurrencyConverter] = None) -> None:
        self._store = store
        self._user_id = user_id
        self._converter = converter or CurrencyConverter()
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = threading.Lock()
        self._sequence: int = 0
        self._installed: int = 0
        self.loaded = False

    # ------------------------------------------------------------------
    # Public accessors
    # ------------------------------------------------------------------
    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions.values())

    def get(self, subscription_id: str) -> Subscription:
        try:
            return self._subscriptions[subscription_id]
        except KeyError:
            raise NotFoundError("Subscription", subscription_id) from None

    def list(self) -> List[Subscription]:
        """Re-fetch from the store and return every held subscription."""
        self.refresh()
        return self.subscriptions

    def refresh(self) -> bool:
        """Fetch the full list; returns False if a newer fetch already landed."""
        with self._lock:
            self._sequence += 1
            sequence = self._sequence
        rows = self._store.list_subscriptions(self._user_id)
        subscriptions = [Subscription.model_validate(row) for row in rows]
        with self._lock:
            if sequence <= self._installed:
                logger.debug("Dropping stale subscription fetch #%s (have #%s)", sequence, self._installed)
                return False
            self._installed = sequence
            self._subscriptions = {sub.id: sub for sub in subscriptions}
            self.loaded = True
        return True

    def ensure_loaded(self) -> None:
        if not self.loaded:
            self.refresh()

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------
    def create(self, payload: SubscriptionIn, confirm_duplicate: bool = False) -> Subscription:
        self.ensure_loaded()
        duplicates = self.find_duplicates(payload.name)
        if duplicates and not confirm_duplicate:
            raise DuplicateSubscriptionError(payload.name, [sub.id for sub in duplicates])

        row = payload.model_dump(mode="json", exclude={"currency", "price"})
        row.update(self._normalize_price(payload.price, payload.currency))
        created = self._store.insert_subscription(self._user_id, row)
        logger.info("Created subscription %s (%s)", created.get("id"), payload.name)
        self.refresh()
        return Subscription.model_validate(created)

    def update(self, subscription_id: str, changes: SubscriptionUpdate) -> Subscription:
        self.ensure_loaded()
        self.get(subscription_id)
        row = changes.model_dump(mode="json", exclude_unset=True, exclude={"currency", "price"})
        if changes.price is not None:
            row.update(self._normalize_price(changes.price, changes.currency))
        elif changes.currency is not None:
            raise SubscriptionValidationError("currency can only be changed together with price")
        if not row:
            return self.get(subscription_id)
        updated = self._store.update_subscription(self._user_id, subscription_id, row)
        self.refresh()
        return Subscription.model_validate(updated)

    def set_status(self, subscription_id: str, status: SubscriptionStatus) -> Subscription:
        return self.update(subscription_id, SubscriptionUpdate(status=status))

    def pause(self, subscription_id: str) -> Subscription:
        return self.set_status(subscription_id, SubscriptionStatus.PAUSED)

    def resume(self, subscription_id: str) -> Subscription:
        return self.set_status(subscription_id, SubscriptionStatus.ACTIVE)

    def cancel(self, subscription_id: str) -> Subscription:
        return self.set_status(subscription_id, SubscriptionStatus.CANCELLED)

    def delete(self, subscription_id: str) -> None:
        self.ensure_loaded()
        self.get(subscription_id)
        self._store.delete_subscription(self._user_id, subscription_id)
        logger.info("Deleted subscription %s", subscription_id)
        self.refresh()

    # ------------------------------------------------------------------
    # Queries over the cached list
    # ------------------------------------------------------------------
    def find_duplicates(self, name: str) -> List[Subscription]:
        key = self._normalize_name(name)
        return [sub for sub in self._subscriptions.values() if self._normalize_name(sub.name) == key]

    def total_monthly_spend(self, subscriptions: Optional[Iterable[Subscription]] = None) -> float:
        """Sum of monthly equivalents, regardless of status unless the caller filters."""
        pool = self._subscriptions.values() if subscriptions is None else subscriptions
        return sum(monthly_equivalent(sub) for sub in pool)

    def active(self) -> List[Subscription]:
        return [s for s in self._subscriptions.values() if s.status is SubscriptionStatus.ACTIVE]

    def upcoming_renewals(self, days: int = 7, today: Optional[date] = None) -> List[Subscription]:
        today = today or date.today()
        cutoff = today + timedelta(days=days)
        upcoming = [s for s in self._subscriptions.values() if today <= s.renewal_date <= cutoff]
        return sorted(upcoming, key=lambda s: s.renewal_date)

    def category_spending(self, subscriptions: Optional[Iterable[Subscription]] = None) -> Dict[Category, float]:
        pool = self._subscriptions.values() if subscriptions is None else subscriptions
        totals: Dict[Category, float] = defaultdict(float)
        for sub in pool:
            totals[sub.category] += monthly_equivalent(sub)
        return {category: round_money(totals[category]) for category in CATEGORIES if category in totals}

    def search(self, query: Optional[str] = None, category: Optional[Category] = None) -> List[Subscription]:
        needle = (query or "").strip().lower()
        results = []
        for sub in self._subscriptions.values():
            if category is not None and sub.category is not category:
                continue
            if needle and needle not in sub.name.lower() and needle not in (sub.notes or "").lower():
                continue
            results.append(sub)
        return sorted(results, key=lambda s: s.renewal_date)

    def view(self, subscription: Subscription, today: Optional[date] = None) -> SubscriptionView:
        label, urgent = renewal_label(subscription.renewal_date, today or date.today())
        return SubscriptionView(
            **subscription.model_dump(),
            monthly_equivalent=round_money(monthly_equivalent(subscription)),
            renewal_label=label,
            renewal_urgent=urgent,
        )

    def dashboard(self, horizon_days: int = 7, today: Optional[date] = None) -> DashboardSummary:
        today = today or date.today()
        subs = list(self._subscriptions.values())
        active = self.active()
        counts = {status: 0 for status in SubscriptionStatus}
        for sub in subs:
            counts[sub.status] += 1

        most_expensive = max(subs, key=annual_cost) if subs else None
        next_renewal = min(active, key=lambda s: s.renewal_date) if active else None
        monthly_total = round_money(self.total_monthly_spend(active))
        return DashboardSummary(
            monthly_total=monthly_total,
            monthly_total_display=self._converter.format_base(monthly_total),
            display_currency=self._converter.display_currency,
            active_subscriptions=counts[SubscriptionStatus.ACTIVE],
            paused_subscriptions=counts[SubscriptionStatus.PAUSED],
            cancelled_subscriptions=counts[SubscriptionStatus.CANCELLED],
            total_annual_cost=round_money(sum(annual_cost(s) for s in active)),
            most_expensive=most_expensive,
            next_renewal=next_renewal,
            days_until_next_renewal=(next_renewal.renewal_date - today).days if next_renewal else None,
            upcoming_renewals=self.upcoming_renewals(horizon_days, today),
            category_spending=self.category_spending(active),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _normalize_price(self, price: float, currency: Optional[str]) -> dict:
        base = self._converter.base_currency
        code = (currency or base).upper()
        if code == base:
            return {"price": price, "original_price": None, "original_currency": None}
        if not self._converter.supports(code):
            raise SubscriptionValidationError(f"Unsupported currency: {currency}")
        return {
            "price": self._converter.to_base(price, code),
            "original_price": price,
            "original_currency": code,
        }

    @staticmethod
    def _normalize_name(name: str) -> str:
        return " ".join(name.lower().split())


def build_store(settings: Settings) -> DataStore:
    if settings.store_url:
        return RestStore(settings.store_url, settings.store_api_key, timeout=settings.store_timeout)
    logger.info("No store URL configured, keeping data in memory")
    return InMemoryStore()


class TrackerSession:
    """Everything one signed-in user works with, wired from settings."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[DataStore] = None,
        rate_client: Optional[ExchangeRateClient] = None,
    ) -> None:
        self.settings = settings
        self.cache = LocalCache(settings.cache_path)
        self.converter = CurrencyConverter(
            rates={code: settings.fallback_rates.get(code, 1.0) for code in settings.supported_currencies},
            base_currency=settings.base_currency,
        )
        try:
            self.converter.set_display_currency(self.cache.get_currency())
        except UnsupportedCurrencyError:
            logger.warning("Cached display currency %r is not supported, using %s",
                           self.cache.get_currency(), settings.base_currency)
        self.store = store or build_store(settings)
        self.rate_client = rate_client or ExchangeRateClient(settings.rates_url, settings.rates_timeout)
        self.subscriptions = SubscriptionRepository(self.store, settings.user_id, self.converter)
        self.ledger = SavingsLedger(self.store, settings.user_id, settings.savings_history_limit)

    @property
    def monthly_budget(self) -> Optional[float]:
        return self.cache.get_monthly_budget()

    def set_monthly_budget(self, amount: Optional[float]) -> None:
        self.cache.set_monthly_budget(amount)

    def set_display_currency(self, currency: str) -> None:
        self.converter.set_display_currency(currency)
        self.cache.set_currency(self.converter.display_currency)

    def refresh_rates(self, force: bool = False) -> bool:
        return refresh_rates(
            self.converter,
            self.rate_client,
            self.cache,
            max_age_hours=self.settings.rates_max_age_hours,
            force=force,
        )


session = TrackerSession(get_settings())

from __future__ import annotations

from datetime import date

import pytest

from subtrack.currency import CurrencyConverter
from subtrack.models import BillingCycle, Category, SubscriptionIn, SubscriptionStatus, SubscriptionUpdate
from subtrack.money import annual_cost, monthly_equivalent, round_money, round_whole
from subtrack.services import (
    DuplicateSubscriptionError,
    SubscriptionRepository,
    SubscriptionValidationError,
    renewal_label,
)
from subtrack.store import InMemoryStore, NotFoundError, StoreError

TODAY = date(2026, 10, 19)


@pytest.fixture
def repo():
    return SubscriptionRepository(InMemoryStore(), "user-1", CurrencyConverter())


def _payload(name="Netflix", price=10.0, **fields) -> SubscriptionIn:
    return SubscriptionIn(name=name, price=price, renewal_date=fields.pop("renewal_date", TODAY), **fields)


@pytest.mark.parametrize(
    "cycle, price, monthly, annual",
    [
        (BillingCycle.WEEKLY, 3.0, 13.0, 156.0),
        (BillingCycle.MONTHLY, 9.99, 9.99, 119.88),
        (BillingCycle.YEARLY, 9.99, 0.8325, 9.99),
    ],
)
def test_monthly_and_annual_equivalents(make_subscription, cycle, price, monthly, annual):
    sub = make_subscription(price=price, billing_cycle=cycle)
    assert monthly_equivalent(sub) == pytest.approx(monthly)
    assert annual_cost(sub) == pytest.approx(annual)
    assert SubscriptionRepository.monthly_equivalent(sub) == monthly_equivalent(sub)


def test_rounding_is_half_up():
    assert round_money(2.675) == 2.68
    assert round_money(0.125) == 0.13
    assert round_money(-1.005) == -1.01
    assert round_whole(64.5) == 65
    assert round_whole(2.5) == 3


@pytest.mark.parametrize(
    "renewal, label, urgent",
    [
        (date(2026, 10, 19), "Renews today", True),
        (date(2026, 10, 20), "Renews tomorrow", True),
        (date(2026, 10, 14), "Overdue by 5 days", True),
        (date(2026, 10, 26), "Renews in 7 days", True),
        (date(2026, 11, 5), "Nov 5, 2026", False),
    ],
)
def test_renewal_label(renewal, label, urgent):
    assert renewal_label(renewal, TODAY) == (label, urgent)


def test_create_refetches_from_store(repo):
    created = repo.create(_payload())
    assert [s.id for s in repo.subscriptions] == [created.id]
    assert repo.get(created.id).name == "Netflix"


def test_list_sees_rows_written_elsewhere(repo):
    repo.create(_payload())
    repo._store.insert_subscription("user-1", {
        "name": "Hulu", "category": "Streaming", "price": 7.99, "billing_cycle": "monthly",
        "renewal_date": "2026-11-02", "status": "active",
    })
    assert [s.name for s in repo.list()] == ["Netflix", "Hulu"]


def test_update_and_status_toggles(repo):
    sub = repo.create(_payload())
    repo.update(sub.id, SubscriptionUpdate(price=12.5, category=Category.GAMING))
    assert repo.get(sub.id).price == 12.5
    assert repo.get(sub.id).category is Category.GAMING
    assert repo.pause(sub.id).status is SubscriptionStatus.PAUSED
    assert repo.cancel(sub.id).status is SubscriptionStatus.CANCELLED
    assert repo.resume(sub.id).status is SubscriptionStatus.ACTIVE


def test_currency_without_price_is_rejected(repo):
    sub = repo.create(_payload())
    with pytest.raises(SubscriptionValidationError):
        repo.update(sub.id, SubscriptionUpdate(currency="EUR"))


def test_unsupported_entry_currency_is_rejected(repo):
    with pytest.raises(SubscriptionValidationError):
        repo.create(_payload(currency="JPY"))
    assert repo.subscriptions == []


def test_missing_subscription_raises_not_found(repo):
    with pytest.raises(NotFoundError):
        repo.update("nope", SubscriptionUpdate(name="x"))
    with pytest.raises(NotFoundError):
        repo.delete("nope")


def test_duplicate_detection(repo):
    first = repo.create(_payload(name="Spotify Premium"))
    with pytest.raises(DuplicateSubscriptionError) as excinfo:
        repo.create(_payload(name="spotify   premium"))
    assert excinfo.value.existing_ids == [first.id]
    repo.create(_payload(name="spotify premium"), confirm_duplicate=True)
    assert len(repo.subscriptions) == 2


def test_delete_removes_from_cache(repo):
    sub = repo.create(_payload())
    repo.delete(sub.id)
    assert repo.subscriptions == []


def test_store_error_leaves_cache_untouched(repo, monkeypatch):
    repo.create(_payload())

    def broken(*args, **kwargs):
        raise StoreError("timeout")

    monkeypatch.setattr(repo._store, "insert_subscription", broken)
    with pytest.raises(StoreError):
        repo.create(_payload(name="Hulu"))
    assert [s.name for s in repo.subscriptions] == ["Netflix"]


def test_stale_fetch_is_not_installed(repo, monkeypatch):
    store = repo._store
    repo.create(_payload(name="Old"))
    original = store.list_subscriptions
    calls = []

    def racing(user_id):
        rows = original(user_id)
        if not calls:
            calls.append("outer")
            # a newer fetch completes while this one is still in flight
            store.insert_subscription(user_id, store.list_subscriptions(user_id)[0] | {"name": "New"})
            repo.refresh()
        return rows

    monkeypatch.setattr(store, "list_subscriptions", racing)
    assert repo.refresh() is False
    assert sorted(s.name for s in repo.subscriptions) == ["New", "Old"]


def test_totals_and_category_spending(repo):
    repo.create(_payload(name="A", price=10.0))
    repo.create(_payload(name="B", price=120.0, billing_cycle=BillingCycle.YEARLY, category=Category.SOFTWARE))
    paused = repo.create(_payload(name="C", price=5.0, status=SubscriptionStatus.PAUSED))

    assert repo.total_monthly_spend() == pytest.approx(25.0)
    assert repo.total_monthly_spend(repo.active()) == pytest.approx(20.0)
    assert repo.category_spending() == {Category.OTHER: 15.0, Category.SOFTWARE: 10.0}
    assert paused.id not in [s.id for s in repo.active()]


def test_upcoming_renewals_window(repo):
    repo.create(_payload(name="Later", renewal_date=date(2026, 10, 26)))
    repo.create(_payload(name="Soon", renewal_date=date(2026, 10, 20)))
    repo.create(_payload(name="Past", renewal_date=date(2026, 10, 18)))
    repo.create(_payload(name="Far", renewal_date=date(2026, 10, 27)))
    assert [s.name for s in repo.upcoming_renewals(7, TODAY)] == ["Soon", "Later"]


def test_search_matches_name_and_notes(repo):
    repo.create(_payload(name="Netflix", notes="shared with family"))
    repo.create(_payload(name="Xbox Game Pass", category=Category.GAMING))
    assert [s.name for s in repo.search("FAMILY")] == ["Netflix"]
    assert [s.name for s in repo.search(category=Category.GAMING)] == ["Xbox Game Pass"]
    assert len(repo.search()) == 2


def test_dashboard_display_currency():
    converter = CurrencyConverter(display_currency="EUR")
    repo = SubscriptionRepository(InMemoryStore(), "user-1", converter)
    repo.create(_payload(price=20.0))
    summary = repo.dashboard(today=TODAY)
    assert summary.monthly_total == 20.0
    assert summary.display_currency == "EUR"
    assert summary.monthly_total_display == "17,00 €"
    assert summary.days_until_next_renewal == 0

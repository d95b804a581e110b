from __future__ import annotations

from datetime import date, datetime, timezone
from itertools import count

import pytest

from subtrack.models import BillingCycle, Category, Subscription, SubscriptionStatus

_ids = count(1)


class FakeResponse:
    def __init__(self, payload=None, status_code=200, error=None):
        self._payload = payload
        self.status_code = status_code
        self._error = error

    def raise_for_status(self):
        if self._error is not None:
            raise self._error

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Stands in for ``requests.Session`` and records every call."""

    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.exc is not None:
            raise self.exc
        return self.response


@pytest.fixture
def make_subscription():
    def factory(
        name="Netflix",
        price=10.0,
        billing_cycle=BillingCycle.MONTHLY,
        category=Category.STREAMING,
        renewal_date=date(2026, 10, 20),
        status=SubscriptionStatus.ACTIVE,
        **extra,
    ) -> Subscription:
        return Subscription(
            id=extra.pop("id", f"sub-{next(_ids)}"),
            name=name,
            price=price,
            billing_cycle=billing_cycle,
            category=category,
            renewal_date=renewal_date,
            status=status,
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            **extra,
        )

    return factory


@pytest.fixture
def rate_session():
    """Build a fake ``requests.Session`` that answers every GET with one canned response."""
    def factory(payload=None, status_code=200, error=None, exc=None) -> FakeSession:
        return FakeSession(FakeResponse(payload, status_code, error), exc=exc)

    return factory

"""Rounding and billing-cycle normalisation shared by every calculation."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from .models import BillingCycle, Subscription

_CENT = Decimal("0.01")
_UNIT = Decimal("1")

WEEKS_PER_YEAR = 52
MONTHS_PER_YEAR = 12


def round_money(value: float) -> float:
    """Round to cents, halves away from zero."""
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def round_whole(value: float) -> int:
    return int(Decimal(str(value)).quantize(_UNIT, rounding=ROUND_HALF_UP))


def monthly_equivalent(subscription: Subscription) -> float:
    price = subscription.price
    if subscription.billing_cycle is BillingCycle.WEEKLY:
        return price * WEEKS_PER_YEAR / MONTHS_PER_YEAR
    if subscription.billing_cycle is BillingCycle.YEARLY:
        return price / MONTHS_PER_YEAR
    return price


def annual_cost(subscription: Subscription) -> float:
    price = subscription.price
    if subscription.billing_cycle is BillingCycle.WEEKLY:
        return price * WEEKS_PER_YEAR
    if subscription.billing_cycle is BillingCycle.YEARLY:
        return price
    return price * MONTHS_PER_YEAR

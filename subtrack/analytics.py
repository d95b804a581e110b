"""
Spending analytics over the cached subscription list.

Everything here is a pure function of its arguments: the subscription list,
the filters, the monthly budget and the reference date are all passed in.

Note that subscriptions are bucketed by their *next* renewal date. A single
renewal date cannot reconstruct what was charged in past months, so trends
describe scheduled renewals rather than a ledger of past charges.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from .models import (
    CATEGORIES,
    AnalyticsFilters,
    AnalyticsReport,
    BillingCycle,
    BudgetForecast,
    Category,
    CategoryBreakdown,
    CurrentMonthForecast,
    Insight,
    InsightKind,
    NextMonthForecast,
    Prediction,
    Recommendation,
    ROICalculation,
    SpendingTrend,
    Subscription,
    SubscriptionStatus,
    TopSubscription,
)
from .money import monthly_equivalent, round_money, round_whole

TOP_LIMIT = 10
INSIGHT_LIMIT = 5
HIGH_VOLUME_THRESHOLD = 10
LOW_BUDGET_RATIO = 0.1


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def next_month_start(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


def filter_subscriptions(subscriptions: Iterable[Subscription], filters: AnalyticsFilters) -> List[Subscription]:
    """Keep a subscription iff its status, category and renewal date pass the filters.

    An empty category list means every category.
    """
    categories = set(filters.categories) or set(CATEGORIES)
    selected = []
    for sub in subscriptions:
        if not filters.include_inactive and sub.status is not SubscriptionStatus.ACTIVE:
            continue
        if sub.category not in categories:
            continue
        if not filters.start_date <= sub.renewal_date <= filters.end_date:
            continue
        selected.append(sub)
    return selected


def spending_trends(subscriptions: Iterable[Subscription]) -> List[SpendingTrend]:
    totals: Dict[tuple, float] = defaultdict(float)
    counts: Dict[tuple, int] = defaultdict(int)
    per_category: Dict[tuple, Dict[Category, float]] = defaultdict(lambda: {c: 0.0 for c in CATEGORIES})

    for sub in subscriptions:
        bucket = (sub.renewal_date.year, sub.renewal_date.month)
        cost = monthly_equivalent(sub)
        totals[bucket] += cost
        counts[bucket] += 1
        per_category[bucket][sub.category] += cost

    return [
        SpendingTrend(
            month=f"{year:04d}-{month:02d}",
            year=year,
            month_number=month,
            total=round_money(totals[(year, month)]),
            subscriptions=counts[(year, month)],
            categories={c: round_money(v) for c, v in per_category[(year, month)].items()},
        )
        for year, month in sorted(totals)
    ]


def category_breakdown(subscriptions: Sequence[Subscription]) -> List[CategoryBreakdown]:
    amounts: Dict[Category, float] = {c: 0.0 for c in CATEGORIES}
    counts: Dict[Category, int] = {c: 0 for c in CATEGORIES}
    for sub in subscriptions:
        amounts[sub.category] += monthly_equivalent(sub)
        counts[sub.category] += 1
    grand_total = sum(amounts.values())

    breakdown = [
        CategoryBreakdown(
            category=category,
            amount=round_money(amount),
            percentage=round_whole(amount / grand_total * 100) if grand_total > 0 else 0,
            subscriptions=counts[category],
        )
        for category, amount in amounts.items()
    ]
    breakdown = [item for item in breakdown if item.amount > 0]
    return sorted(breakdown, key=lambda item: item.amount, reverse=True)


def top_subscriptions(subscriptions: Sequence[Subscription], limit: int = TOP_LIMIT) -> List[TopSubscription]:
    total = sum(monthly_equivalent(sub) for sub in subscriptions)
    ranked = sorted(subscriptions, key=monthly_equivalent, reverse=True)[:limit]
    return [
        TopSubscription(
            id=sub.id,
            name=sub.name,
            category=sub.category,
            monthly_cost=monthly_equivalent(sub),
            percentage_of_total=monthly_equivalent(sub) / total * 100 if total > 0 else 0.0,
        )
        for sub in ranked
    ]


def predict_spending(trends: Sequence[SpendingTrend]) -> Prediction:
    """Ordinary least squares over bucket index -> bucket total.

    Confidence is ``1 - residual_sum_of_squares / sum(totals)`` clamped to
    [0, 1]. It is a heuristic, not a coefficient of determination.
    """
    n = len(trends)
    if n < 2:
        return Prediction()

    totals = [trend.total for trend in trends]
    sum_x = n * (n - 1) / 2
    sum_y = sum(totals)
    sum_xy = sum(index * total for index, total in enumerate(totals))
    sum_x2 = n * (n - 1) * (2 * n - 1) / 6

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n

    next_month = max(0.0, intercept + slope * n)
    next_year = max(0.0, intercept + slope * (n + 11))

    residual = sum((total - (intercept + slope * index)) ** 2 for index, total in enumerate(totals))
    confidence = 1 - residual / sum_y if sum_y > 0 else 0.0
    return Prediction(
        next_month=round_money(next_month),
        next_year=round_money(next_year),
        confidence=min(1.0, max(0.0, confidence)),
    )


def generate_insights(
    trends: Sequence[SpendingTrend],
    breakdown: Sequence[CategoryBreakdown],
    monthly_budget: Optional[float] = None,
    limit: int = INSIGHT_LIMIT,
    high_volume_threshold: int = HIGH_VOLUME_THRESHOLD,
    low_budget_ratio: float = LOW_BUDGET_RATIO,
) -> List[Insight]:
    if not trends:
        return [Insight(kind=InsightKind.NO_DATA)]

    insights: List[Insight] = []
    current = trends[-1]

    if len(trends) > 1:
        previous = trends[-2]
        change = round_money(current.total - previous.total)
        percent = change / previous.total * 100 if previous.total > 0 else 0.0
        params = {
            "previous": previous.total,
            "current": current.total,
            "change": abs(change),
            "percent": round_money(abs(percent)),
        }
        if change > 0:
            insights.append(Insight(kind=InsightKind.TREND_UP, params=params))
        elif change < 0:
            insights.append(Insight(kind=InsightKind.TREND_DOWN, params=params))
        else:
            insights.append(Insight(kind=InsightKind.TREND_STABLE, params=params))

    if breakdown:
        top = breakdown[0]
        insights.append(Insight(
            kind=InsightKind.CATEGORY_DOMINANT,
            params={"category": top.category.value, "percentage": top.percentage, "amount": top.amount},
        ))

    if monthly_budget:
        remaining = round_money(monthly_budget - current.total)
        if remaining < 0:
            insights.append(Insight(
                kind=InsightKind.OVER_BUDGET,
                params={"budget": monthly_budget, "actual": current.total, "over_by": abs(remaining)},
            ))
        elif remaining < monthly_budget * low_budget_ratio:
            insights.append(Insight(
                kind=InsightKind.LOW_BUDGET,
                params={"budget": monthly_budget, "actual": current.total, "remaining": remaining},
            ))

    if current.subscriptions > high_volume_threshold:
        insights.append(Insight(kind=InsightKind.HIGH_VOLUME, params={"count": current.subscriptions}))

    return insights[:limit]


def budget_forecast(
    trends: Sequence[SpendingTrend],
    subscriptions: Iterable[Subscription],
    monthly_budget: Optional[float],
    today: date,
) -> BudgetForecast:
    current_key = month_key(today)
    actual = next((trend.total for trend in trends if trend.month == current_key), 0.0)
    budget = monthly_budget or 0.0
    remaining = budget - actual

    # yearly plans do not come back every month
    upcoming = next_month_start(today)
    renewals = sum(
        monthly_equivalent(sub)
        for sub in subscriptions
        if sub.billing_cycle in (BillingCycle.WEEKLY, BillingCycle.MONTHLY)
        and (sub.renewal_date.year, sub.renewal_date.month) == (upcoming.year, upcoming.month)
    )

    return BudgetForecast(
        current_month=CurrentMonthForecast(
            actual=round_money(actual),
            budget=round_money(budget),
            remaining=round_money(remaining),
            percentage=round_whole(actual / budget * 100) if budget > 0 else 0,
        ),
        next_month=NextMonthForecast(
            predicted=round_money(actual + renewals),
            renewals=round_money(renewals),
        ),
    )


def calculate_roi(subscription: Subscription, estimated_value: float, usage_score: int = 5) -> ROICalculation:
    monthly_cost = monthly_equivalent(subscription)
    roi = (estimated_value - monthly_cost) / monthly_cost * 100 if estimated_value > 0 else 0.0

    if roi < -20 or usage_score < 3:
        recommendation = Recommendation.CANCEL
    elif roi < 0 or usage_score < 6:
        recommendation = Recommendation.REVIEW
    else:
        recommendation = Recommendation.KEEP

    return ROICalculation(
        subscription_id=subscription.id,
        name=subscription.name,
        monthly_cost=monthly_cost,
        estimated_value=estimated_value,
        roi_percentage=round_money(roi),
        recommendation=recommendation,
        usage_score=usage_score,
        value_score=round_whole(estimated_value / monthly_cost * 10),
    )


def build_report(
    subscriptions: Iterable[Subscription],
    filters: AnalyticsFilters,
    monthly_budget: Optional[float] = None,
    today: Optional[date] = None,
    top_limit: int = TOP_LIMIT,
    insight_limit: int = INSIGHT_LIMIT,
    high_volume_threshold: int = HIGH_VOLUME_THRESHOLD,
    low_budget_ratio: float = LOW_BUDGET_RATIO,
) -> AnalyticsReport:
    today = today or date.today()
    selected = filter_subscriptions(subscriptions, filters)
    trends = spending_trends(selected)
    breakdown = category_breakdown(selected)
    return AnalyticsReport(
        filters=filters,
        trends=trends,
        prediction=predict_spending(trends),
        insights=generate_insights(
            trends,
            breakdown,
            monthly_budget,
            limit=insight_limit,
            high_volume_threshold=high_volume_threshold,
            low_budget_ratio=low_budget_ratio,
        ),
        category_breakdown=breakdown,
        top_subscriptions=top_subscriptions(selected, limit=top_limit),
        budget_forecast=budget_forecast(trends, selected, monthly_budget, today),
    )

"""Text for insights. Analytics emits kinds and parameters; wording lives only here."""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List

from .currency import CurrencyConverter
from .models import Insight, InsightKind, RenderedInsight

Formatter = Callable[[float], str]


def _trend(direction: str) -> Callable[[Dict, Formatter], str]:
    def render(params: Dict, money: Formatter) -> str:
        return (
            f"Spending {direction} by {money(params['change'])} "
            f"({params['percent']:.1f}%) compared to last month"
        )
    return render


_TEMPLATES: Dict[InsightKind, Callable[[Dict, Formatter], str]] = {
    InsightKind.TREND_UP: _trend("increased"),
    InsightKind.TREND_DOWN: _trend("decreased"),
    InsightKind.TREND_STABLE: lambda p, money: "Spending remained stable compared to last month",
    InsightKind.CATEGORY_DOMINANT: lambda p, money: (
        f"{p['category']} is your largest expense category at {p['percentage']}% of total spending"
    ),
    InsightKind.OVER_BUDGET: lambda p, money: f"You're over budget by {money(p['over_by'])}",
    InsightKind.LOW_BUDGET: lambda p, money: (
        f"You have only {money(p['remaining'])} remaining in your monthly budget"
    ),
    InsightKind.HIGH_VOLUME: lambda p, money: (
        f"You have {p['count']} active subscriptions. Consider reviewing for potential savings"
    ),
    InsightKind.NO_DATA: lambda p, money: "Start adding subscriptions to see insights",
}


def render_insight(insight: Insight, converter: CurrencyConverter) -> str:
    """Amounts in ``params`` are base currency; they are shown in the display currency."""
    return _TEMPLATES[insight.kind](insight.params, converter.format_base)


def render_insights(insights: Iterable[Insight], converter: CurrencyConverter) -> List[RenderedInsight]:
    return [
        RenderedInsight(kind=insight.kind, params=insight.params, message=render_insight(insight, converter))
        for insight in insights
    ]

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse

from . import analytics, services
from .currency import UnsupportedCurrencyError
from .insights import render_insights
from .ledger import LedgerValidationError
from .models import (
    AnalyticsFilters,
    AnalyticsQuery,
    AnalyticsResponse,
    BudgetSetting,
    BudgetSummary,
    Category,
    ConversionResult,
    CurrencySetting,
    DashboardSummary,
    PreferencesIn,
    RateTable,
    ROICalculation,
    ROIRequest,
    SavingsOverview,
    SavingsTransaction,
    SavingsTransactionIn,
    Subscription,
    SubscriptionIn,
    SubscriptionUpdate,
    SubscriptionView,
    UserPreferences,
)
from .services import DuplicateSubscriptionError, SubscriptionValidationError
from .store import NotFoundError, StoreError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def get_session() -> services.TrackerSession:
    return services.session


@asynccontextmanager
async def lifespan(_: FastAPI):
    get_session().refresh_rates()
    yield


app = FastAPI(title="Subscription Spend Tracker", lifespan=lifespan)


# ----------------------------------------------------------------------
# Error translation
# ----------------------------------------------------------------------
@app.exception_handler(NotFoundError)
def not_found(_: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(DuplicateSubscriptionError)
def duplicate(_: Request, exc: DuplicateSubscriptionError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "existing_ids": exc.existing_ids},
    )


@app.exception_handler(SubscriptionValidationError)
@app.exception_handler(LedgerValidationError)
@app.exception_handler(UnsupportedCurrencyError)
def rejected(_: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(StoreError)
def store_failed(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "Data store unavailable, please retry"})


# ----------------------------------------------------------------------
# Subscriptions
# ----------------------------------------------------------------------
@app.get("/subscriptions", response_model=list[SubscriptionView])
def list_subscriptions(
    q: Optional[str] = None,
    category: Optional[Category] = None,
    today: Optional[date] = None,
) -> list[SubscriptionView]:
    repo = get_session().subscriptions
    repo.refresh()
    return [repo.view(sub, today) for sub in repo.search(q, category)]


@app.post("/subscriptions", response_model=Subscription, status_code=201)
def create_subscription(payload: SubscriptionIn, confirm_duplicate: bool = False) -> Subscription:
    return get_session().subscriptions.create(payload, confirm_duplicate=confirm_duplicate)


@app.get("/subscriptions/{subscription_id}", response_model=SubscriptionView)
def get_subscription(subscription_id: str, today: Optional[date] = None) -> SubscriptionView:
    repo = get_session().subscriptions
    repo.ensure_loaded()
    return repo.view(repo.get(subscription_id), today)


@app.patch("/subscriptions/{subscription_id}", response_model=Subscription)
def update_subscription(subscription_id: str, payload: SubscriptionUpdate) -> Subscription:
    return get_session().subscriptions.update(subscription_id, payload)


@app.delete("/subscriptions/{subscription_id}", status_code=204)
def delete_subscription(subscription_id: str) -> Response:
    get_session().subscriptions.delete(subscription_id)
    return Response(status_code=204)


@app.post("/subscriptions/{subscription_id}/pause", response_model=Subscription)
def pause_subscription(subscription_id: str) -> Subscription:
    return get_session().subscriptions.pause(subscription_id)


@app.post("/subscriptions/{subscription_id}/resume", response_model=Subscription)
def resume_subscription(subscription_id: str) -> Subscription:
    return get_session().subscriptions.resume(subscription_id)


@app.post("/subscriptions/{subscription_id}/cancel", response_model=Subscription)
def cancel_subscription(subscription_id: str) -> Subscription:
    return get_session().subscriptions.cancel(subscription_id)


@app.post("/subscriptions/{subscription_id}/roi", response_model=ROICalculation)
def subscription_roi(subscription_id: str, payload: ROIRequest) -> ROICalculation:
    repo = get_session().subscriptions
    repo.ensure_loaded()
    return analytics.calculate_roi(repo.get(subscription_id), payload.estimated_value, payload.usage_score)


@app.get("/dashboard", response_model=DashboardSummary)
def dashboard(today: Optional[date] = None) -> DashboardSummary:
    session = get_session()
    session.subscriptions.ensure_loaded()
    return session.subscriptions.dashboard(session.settings.upcoming_renewal_days, today)


@app.get("/renewals/upcoming", response_model=list[Subscription])
def upcoming_renewals(days: int = Query(7, ge=0, le=366), today: Optional[date] = None) -> list[Subscription]:
    repo = get_session().subscriptions
    repo.ensure_loaded()
    return repo.upcoming_renewals(days, today)


# ----------------------------------------------------------------------
# Analytics
# ----------------------------------------------------------------------
def _analytics(filters: Optional[AnalyticsFilters], today: Optional[date]) -> AnalyticsResponse:
    session = get_session()
    settings = session.settings
    today = today or date.today()
    session.subscriptions.ensure_loaded()
    report = analytics.build_report(
        session.subscriptions.subscriptions,
        filters or AnalyticsFilters.default(today),
        monthly_budget=session.monthly_budget,
        today=today,
        top_limit=settings.top_subscription_limit,
        insight_limit=settings.insight_limit,
        high_volume_threshold=settings.high_volume_threshold,
        low_budget_ratio=settings.low_budget_ratio,
    )
    return AnalyticsResponse(
        **report.model_dump(exclude={"insights"}),
        insights=render_insights(report.insights, session.converter),
    )


@app.get("/analytics", response_model=AnalyticsResponse)
def default_analytics(today: Optional[date] = None) -> AnalyticsResponse:
    return _analytics(None, today)


@app.post("/analytics", response_model=AnalyticsResponse)
def filtered_analytics(payload: AnalyticsQuery) -> AnalyticsResponse:
    return _analytics(payload.filters, payload.today)


# ----------------------------------------------------------------------
# Budget and savings
# ----------------------------------------------------------------------
@app.get("/preferences", response_model=Optional[UserPreferences])
def get_preferences() -> Optional[UserPreferences]:
    ledger = get_session().ledger
    ledger.ensure_loaded()
    return ledger.preferences


@app.put("/preferences", response_model=UserPreferences)
def put_preferences(payload: PreferencesIn) -> UserPreferences:
    return get_session().ledger.update_preferences(payload)


@app.get("/budget-summary", response_model=BudgetSummary)
def budget_summary() -> BudgetSummary:
    session = get_session()
    session.ledger.ensure_loaded()
    session.subscriptions.ensure_loaded()
    repo = session.subscriptions
    return session.ledger.calculate_budget_summary(repo.total_monthly_spend())


@app.get("/savings", response_model=SavingsOverview)
def savings() -> SavingsOverview:
    ledger = get_session().ledger
    ledger.ensure_loaded()
    return SavingsOverview(stats=ledger.savings_stats(), transactions=ledger.transactions)


@app.post("/savings/transactions", response_model=SavingsTransaction, status_code=201)
def add_savings_transaction(payload: SavingsTransactionIn) -> SavingsTransaction:
    return get_session().ledger.record(payload.amount, payload.transaction_type, payload.description)


@app.post("/savings/auto-deposit", response_model=Optional[SavingsTransaction])
def auto_deposit() -> Optional[SavingsTransaction]:
    return get_session().ledger.auto_deposit()


@app.delete("/savings", status_code=204)
def reset_savings() -> Response:
    get_session().ledger.reset()
    return Response(status_code=204)


# ----------------------------------------------------------------------
# Local settings and currency
# ----------------------------------------------------------------------
@app.get("/settings/currency", response_model=CurrencySetting)
def get_currency() -> CurrencySetting:
    return CurrencySetting(currency=get_session().converter.display_currency)


@app.put("/settings/currency", response_model=CurrencySetting)
def put_currency(payload: CurrencySetting) -> CurrencySetting:
    session = get_session()
    session.set_display_currency(payload.currency)
    return CurrencySetting(currency=session.converter.display_currency)


@app.get("/settings/budget", response_model=BudgetSetting)
def get_budget() -> BudgetSetting:
    return BudgetSetting(monthly_budget=get_session().monthly_budget)


@app.put("/settings/budget", response_model=BudgetSetting)
def put_budget(payload: BudgetSetting) -> BudgetSetting:
    session = get_session()
    session.set_monthly_budget(payload.monthly_budget)
    return BudgetSetting(monthly_budget=session.monthly_budget)


def _rate_table() -> RateTable:
    session = get_session()
    cached = session.cache.get_rates()
    return RateTable(
        base=session.converter.base_currency,
        rates=session.converter.rates,
        fetched_at=cached[1] if cached else None,
    )


@app.get("/settings/rates", response_model=RateTable)
def get_rates() -> RateTable:
    return _rate_table()


@app.post("/settings/rates/refresh", response_model=RateTable)
def refresh_rates() -> RateTable:
    get_session().refresh_rates(force=True)
    return _rate_table()


@app.get("/convert", response_model=ConversionResult)
def convert(
    amount: float,
    from_currency: Optional[str] = None,
    to_currency: Optional[str] = None,
) -> ConversionResult:
    converter = get_session().converter
    source = (from_currency or converter.base_currency).upper()
    target = (to_currency or converter.display_currency).upper()
    converted = converter.convert(amount, source, target)
    return ConversionResult(
        amount=amount,
        from_currency=source,
        to_currency=target,
        converted=round(converted, 4),
        formatted=converter.format(converted, target),
    )


if __name__ == "__main__":
    import os

    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

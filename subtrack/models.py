from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class Category(str, Enum):
    STREAMING = "Streaming"
    SOFTWARE = "Software"
    FITNESS = "Fitness"
    GAMING = "Gaming"
    OTHER = "Other"


CATEGORIES: List[Category] = list(Category)


class BillingCycle(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


def _clean_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError("Name is required")
    return value


class SubscriptionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category: Category = Category.OTHER
    price: float = Field(..., gt=0, description="Price in the entry currency")
    currency: Optional[str] = Field(None, description="Entry currency, defaults to the base currency")
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    renewal_date: date
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    payment_method: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: Optional[str]) -> Optional[str]:
        return _clean_name(value)


class SubscriptionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    category: Optional[Category] = None
    price: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = None
    billing_cycle: Optional[BillingCycle] = None
    renewal_date: Optional[date] = None
    status: Optional[SubscriptionStatus] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: Optional[str]) -> Optional[str]:
        return _clean_name(value)

    @model_validator(mode="after")
    def reject_nulls(self) -> "SubscriptionUpdate":
        # only notes and payment_method may be cleared
        cleared = [
            field for field in NON_NULLABLE_UPDATE_FIELDS
            if field in self.model_fields_set and getattr(self, field) is None
        ]
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self


NON_NULLABLE_UPDATE_FIELDS = ("name", "category", "price", "billing_cycle", "renewal_date", "status")


class Subscription(BaseModel):
    id: str
    name: str
    category: Category
    price: float = Field(..., gt=0, description="Price in the base currency")
    original_price: Optional[float] = None
    original_currency: Optional[str] = None
    billing_cycle: BillingCycle
    renewal_date: date
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class SubscriptionView(Subscription):
    monthly_equivalent: float
    renewal_label: str
    renewal_urgent: bool


class DashboardSummary(BaseModel):
    monthly_total: float
    monthly_total_display: str
    display_currency: str
    active_subscriptions: int
    paused_subscriptions: int
    cancelled_subscriptions: int
    total_annual_cost: float
    most_expensive: Optional[Subscription] = None
    next_renewal: Optional[Subscription] = None
    days_until_next_renewal: Optional[int] = None
    upcoming_renewals: list[Subscription]
    category_spending: Dict[Category, float]


# ----------------------------------------------------------------------
# Analytics
# ----------------------------------------------------------------------
class AnalyticsFilters(BaseModel):
    start_date: date
    end_date: date
    categories: List[Category] = Field(default_factory=lambda: list(CATEGORIES))
    include_inactive: bool = False

    @model_validator(mode="after")
    def check_range(self) -> "AnalyticsFilters":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self

    @classmethod
    def default(cls, today: date) -> "AnalyticsFilters":
        """Six months back to the end of the fifth month ahead."""
        start_month = today.month - 6
        start_year = today.year
        while start_month < 1:
            start_month += 12
            start_year -= 1
        end_month = today.month + 6
        end_year = today.year
        while end_month > 12:
            end_month -= 12
            end_year += 1
        end = date(end_year, end_month, 1).toordinal() - 1
        return cls(start_date=date(start_year, start_month, 1), end_date=date.fromordinal(end))


class SpendingTrend(BaseModel):
    month: str = Field(..., description="Bucket key, YYYY-MM")
    year: int
    month_number: int
    total: float
    subscriptions: int
    categories: Dict[Category, float]


class CategoryBreakdown(BaseModel):
    category: Category
    amount: float
    percentage: int
    change: float = 0.0
    subscriptions: int


class TopSubscription(BaseModel):
    id: str
    name: str
    category: Category
    monthly_cost: float
    percentage_of_total: float


class Prediction(BaseModel):
    next_month: float = 0.0
    next_year: float = 0.0
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class InsightKind(str, Enum):
    TREND_UP = "trend_up"
    TREND_DOWN = "trend_down"
    TREND_STABLE = "trend_stable"
    CATEGORY_DOMINANT = "category_dominant"
    OVER_BUDGET = "over_budget"
    LOW_BUDGET = "low_budget"
    HIGH_VOLUME = "high_volume"
    NO_DATA = "no_data"


class Insight(BaseModel):
    kind: InsightKind
    params: Dict[str, Any] = Field(default_factory=dict)


class RenderedInsight(Insight):
    message: str


class CurrentMonthForecast(BaseModel):
    actual: float
    budget: float
    remaining: float
    percentage: int
    month_progress: int = 100


class NextMonthForecast(BaseModel):
    predicted: float
    renewals: float
    new_subscriptions: int = 0
    cancellations: int = 0


class MonthPrediction(BaseModel):
    month: str
    predicted: float


class BudgetForecast(BaseModel):
    current_month: CurrentMonthForecast
    next_month: NextMonthForecast
    next_three_months: list[MonthPrediction] = Field(default_factory=list)


class AnalyticsReport(BaseModel):
    filters: AnalyticsFilters
    trends: list[SpendingTrend]
    prediction: Prediction
    insights: list[Insight]
    category_breakdown: list[CategoryBreakdown]
    top_subscriptions: list[TopSubscription]
    budget_forecast: BudgetForecast


class AnalyticsResponse(AnalyticsReport):
    insights: list[RenderedInsight]


class AnalyticsQuery(BaseModel):
    filters: Optional[AnalyticsFilters] = None
    today: Optional[date] = None


class Recommendation(str, Enum):
    KEEP = "Keep"
    REVIEW = "Review"
    CANCEL = "Cancel"


class ROIRequest(BaseModel):
    estimated_value: float = Field(..., ge=0, description="Monthly value the user gets out of it")
    usage_score: int = Field(5, ge=1, le=10)


class ROICalculation(BaseModel):
    subscription_id: str
    name: str
    monthly_cost: float
    estimated_value: float
    roi_percentage: float
    recommendation: Recommendation
    usage_score: int
    value_score: int


# ----------------------------------------------------------------------
# Budget and savings
# ----------------------------------------------------------------------
class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class UserPreferences(BaseModel):
    user_id: str
    monthly_salary: Optional[float] = None
    savings_percentage: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PreferencesIn(BaseModel):
    monthly_salary: Optional[float] = Field(None, ge=0)
    savings_percentage: Optional[float] = Field(None, ge=0, le=100)


class SavingsTransactionIn(BaseModel):
    amount: float = Field(..., gt=0)
    transaction_type: TransactionType
    description: Optional[str] = None


class SavingsTransaction(BaseModel):
    id: str
    user_id: str
    amount: float
    transaction_type: TransactionType
    description: Optional[str] = None
    balance_after: float
    created_at: datetime


class BudgetSummary(BaseModel):
    monthly_salary: Optional[float]
    total_subscriptions: float
    savings_amount: float
    remaining_budget: float
    savings_percentage: float
    current_savings_balance: float


class SavingsStats(BaseModel):
    total_deposits: float
    total_withdrawals: float
    current_balance: float
    monthly_savings: float
    last_transaction_date: Optional[datetime] = None


class SavingsOverview(BaseModel):
    stats: SavingsStats
    transactions: list[SavingsTransaction]


# ----------------------------------------------------------------------
# Local settings
# ----------------------------------------------------------------------
class CurrencySetting(BaseModel):
    currency: str = Field(..., min_length=3, max_length=3)


class BudgetSetting(BaseModel):
    monthly_budget: Optional[float] = Field(None, ge=0)


class RateTable(BaseModel):
    base: str
    rates: Dict[str, float]
    fetched_at: Optional[datetime] = None


class ConversionResult(BaseModel):
    amount: float
    from_currency: str
    to_currency: str
    converted: float
    formatted: str

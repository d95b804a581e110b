"""
Salary, savings percentage and the savings transaction log.

Transactions are append-only; each row stores the balance after it, so the
newest row holds the running balance.
"""
from __future__ import annotations

import logging
import threading
from typing import List, Optional

from .models import (
    BudgetSummary,
    PreferencesIn,
    SavingsStats,
    SavingsTransaction,
    TransactionType,
    UserPreferences,
)
from .money import round_money
from .store import DataStore

logger = logging.getLogger(__name__)

AUTO_DEPOSIT_DESCRIPTION = "Monthly automatic savings"


class LedgerValidationError(ValueError):
    pass


class SavingsLedger:
    def __init__(self, store: DataStore, user_id: str, history_limit: int = 20) -> None:
        self._store = store
        self._user_id = user_id
        self._history_limit = history_limit
        self._preferences: Optional[UserPreferences] = None
        self._transactions: List[SavingsTransaction] = []
        self._balance: float = 0.0
        self._lock = threading.Lock()
        self.loaded = False

    # ------------------------------------------------------------------
    # Public accessors
    # ------------------------------------------------------------------
    @property
    def preferences(self) -> Optional[UserPreferences]:
        return self._preferences

    @property
    def balance(self) -> float:
        return self._balance

    @property
    def transactions(self) -> List[SavingsTransaction]:
        """Most recent first, at most ``history_limit`` entries."""
        return list(self._transactions)

    def refresh(self) -> None:
        row = self._store.get_preferences(self._user_id)
        self._preferences = UserPreferences.model_validate(row) if row else None
        self._reload_transactions()
        self.loaded = True

    def ensure_loaded(self) -> None:
        if not self.loaded:
            self.refresh()

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------
    def update_preferences(self, changes: PreferencesIn) -> UserPreferences:
        row = self._store.upsert_preferences(self._user_id, changes.model_dump(exclude_unset=True))
        self._preferences = UserPreferences.model_validate(row)
        logger.info("Preferences updated for user %s", self._user_id)
        return self._preferences

    def record(
        self,
        amount: float,
        transaction_type: TransactionType,
        description: Optional[str] = None,
    ) -> SavingsTransaction:
        if amount <= 0:
            raise LedgerValidationError("Amount must be positive")
        # balance check, insert and reload form one step per ledger
        with self._lock:
            self.ensure_loaded()
            if transaction_type is TransactionType.WITHDRAWAL and amount > self._balance:
                raise LedgerValidationError(
                    f"Cannot withdraw {amount:.2f}, current balance is {self._balance:.2f}"
                )

            if transaction_type is TransactionType.DEPOSIT:
                balance_after = self._balance + amount
            else:
                balance_after = self._balance - amount
            row = self._store.insert_savings_transaction(self._user_id, {
                "amount": amount,
                "transaction_type": transaction_type.value,
                "description": description,
                "balance_after": round_money(balance_after),
            })
            transaction = SavingsTransaction.model_validate(row)
            logger.info("Recorded savings %s of %.2f", transaction_type.value, amount)
            self._reload_transactions()
        return transaction

    def deposit(self, amount: float, description: Optional[str] = None) -> SavingsTransaction:
        return self.record(amount, TransactionType.DEPOSIT, description)

    def withdraw(self, amount: float, description: Optional[str] = None) -> SavingsTransaction:
        return self.record(amount, TransactionType.WITHDRAWAL, description)

    def auto_deposit(self) -> Optional[SavingsTransaction]:
        """Deposit this month's savings share of the salary, if a salary is set."""
        self.ensure_loaded()
        amount = self.monthly_savings()
        if amount <= 0:
            return None
        return self.deposit(round_money(amount), AUTO_DEPOSIT_DESCRIPTION)

    def reset(self) -> None:
        with self._lock:
            self._store.delete_savings_transactions(self._user_id)
            logger.info("Savings history reset for user %s", self._user_id)
            self._reload_transactions()

    # ------------------------------------------------------------------
    # Derived figures
    # ------------------------------------------------------------------
    def monthly_savings(self) -> float:
        prefs = self._preferences
        if not prefs or not prefs.monthly_salary:
            return 0.0
        return prefs.monthly_salary * prefs.savings_percentage / 100

    def calculate_budget_summary(self, total_monthly_spend: float) -> BudgetSummary:
        prefs = self._preferences
        salary = prefs.monthly_salary if prefs else None
        savings_amount = self.monthly_savings()
        remaining = salary - total_monthly_spend - savings_amount if salary else 0.0
        return BudgetSummary(
            monthly_salary=salary or None,
            total_subscriptions=round_money(total_monthly_spend),
            savings_amount=round_money(savings_amount),
            remaining_budget=round_money(remaining),
            savings_percentage=prefs.savings_percentage if prefs else 0.0,
            current_savings_balance=self._balance,
        )

    def savings_stats(self) -> SavingsStats:
        """Totals cover only the cached page of recent transactions."""
        deposits = sum(t.amount for t in self._transactions if t.transaction_type is TransactionType.DEPOSIT)
        withdrawals = sum(t.amount for t in self._transactions if t.transaction_type is TransactionType.WITHDRAWAL)
        last = self._transactions[0] if self._transactions else None
        return SavingsStats(
            total_deposits=round_money(deposits),
            total_withdrawals=round_money(withdrawals),
            current_balance=self._balance,
            monthly_savings=round_money(self.monthly_savings()),
            last_transaction_date=last.created_at if last else None,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _reload_transactions(self) -> None:
        rows = self._store.list_savings_transactions(self._user_id, self._history_limit)
        self._transactions = [SavingsTransaction.model_validate(row) for row in rows]
        self._balance = self._transactions[0].balance_after if self._transactions else 0.0

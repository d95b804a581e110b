"""
Boundary to the hosted data store.

The store owns every persisted row (subscriptions, user preferences, savings
transactions), scoped by an opaque user id. Rows travel as JSON-shaped dicts;
the services validate them into models.
"""
from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class SubtrackError(Exception):
    pass


class StoreError(SubtrackError):
    """Network or auth failure talking to the data store."""


class NotFoundError(SubtrackError):
    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DataStore(ABC):
    @abstractmethod
    def list_subscriptions(self, user_id: str) -> List[Row]: ...

    @abstractmethod
    def insert_subscription(self, user_id: str, row: Row) -> Row: ...

    @abstractmethod
    def update_subscription(self, user_id: str, subscription_id: str, changes: Row) -> Row: ...

    @abstractmethod
    def delete_subscription(self, user_id: str, subscription_id: str) -> None: ...

    @abstractmethod
    def get_preferences(self, user_id: str) -> Optional[Row]: ...

    @abstractmethod
    def upsert_preferences(self, user_id: str, changes: Row) -> Row: ...

    @abstractmethod
    def list_savings_transactions(self, user_id: str, limit: int) -> List[Row]:
        """Newest first."""

    @abstractmethod
    def insert_savings_transaction(self, user_id: str, row: Row) -> Row: ...

    @abstractmethod
    def delete_savings_transactions(self, user_id: str) -> None: ...


class InMemoryStore(DataStore):
    """Process-local store used for development and tests."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, Dict[str, Row]] = {}
        self._preferences: Dict[str, Row] = {}
        self._savings: Dict[str, List[Row]] = {}

    def list_subscriptions(self, user_id: str) -> List[Row]:
        rows = self._subscriptions.get(user_id, {}).values()
        return [deepcopy(row) for row in sorted(rows, key=lambda r: r["created_at"])]

    def insert_subscription(self, user_id: str, row: Row) -> Row:
        record = dict(row, id=str(uuid.uuid4()), user_id=user_id, created_at=_now_iso())
        self._subscriptions.setdefault(user_id, {})[record["id"]] = record
        return deepcopy(record)

    def update_subscription(self, user_id: str, subscription_id: str, changes: Row) -> Row:
        rows = self._subscriptions.get(user_id, {})
        if subscription_id not in rows:
            raise NotFoundError("Subscription", subscription_id)
        rows[subscription_id].update(changes)
        return deepcopy(rows[subscription_id])

    def delete_subscription(self, user_id: str, subscription_id: str) -> None:
        rows = self._subscriptions.get(user_id, {})
        if rows.pop(subscription_id, None) is None:
            raise NotFoundError("Subscription", subscription_id)

    def get_preferences(self, user_id: str) -> Optional[Row]:
        row = self._preferences.get(user_id)
        return deepcopy(row) if row else None

    def upsert_preferences(self, user_id: str, changes: Row) -> Row:
        now = _now_iso()
        row = self._preferences.get(user_id)
        if row is None:
            row = {"user_id": user_id, "monthly_salary": None, "savings_percentage": 0.0, "created_at": now}
            self._preferences[user_id] = row
        row.update(changes)
        row["updated_at"] = now
        return deepcopy(row)

    def list_savings_transactions(self, user_id: str, limit: int) -> List[Row]:
        rows = self._savings.get(user_id, [])
        return [deepcopy(row) for row in reversed(rows[-limit:])] if limit > 0 else []

    def insert_savings_transaction(self, user_id: str, row: Row) -> Row:
        record = dict(row, id=str(uuid.uuid4()), user_id=user_id, created_at=_now_iso())
        self._savings.setdefault(user_id, []).append(record)
        return deepcopy(record)

    def delete_savings_transactions(self, user_id: str) -> None:
        self._savings.pop(user_id, None)


class RestStore(DataStore):
    """PostgREST-style hosted store (tables ``subscriptions``,
    ``user_preferences`` and ``savings_transactions``)."""

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 10.0,
        access_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        })

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def list_subscriptions(self, user_id: str) -> List[Row]:
        return self._request("GET", "subscriptions", params={
            "user_id": f"eq.{user_id}",
            "order": "created_at.asc",
        })

    def insert_subscription(self, user_id: str, row: Row) -> Row:
        rows = self._request("POST", "subscriptions", json=dict(row, user_id=user_id))
        return self._single(rows, "subscriptions insert")

    def update_subscription(self, user_id: str, subscription_id: str, changes: Row) -> Row:
        rows = self._request("PATCH", "subscriptions", params={
            "id": f"eq.{subscription_id}",
            "user_id": f"eq.{user_id}",
        }, json=changes)
        if not rows:
            raise NotFoundError("Subscription", subscription_id)
        return rows[0]

    def delete_subscription(self, user_id: str, subscription_id: str) -> None:
        rows = self._request("DELETE", "subscriptions", params={
            "id": f"eq.{subscription_id}",
            "user_id": f"eq.{user_id}",
        })
        if not rows:
            raise NotFoundError("Subscription", subscription_id)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------
    def get_preferences(self, user_id: str) -> Optional[Row]:
        rows = self._request("GET", "user_preferences", params={"user_id": f"eq.{user_id}", "limit": 1})
        return rows[0] if rows else None

    def upsert_preferences(self, user_id: str, changes: Row) -> Row:
        payload = dict(changes, user_id=user_id, updated_at=_now_iso())
        rows = self._request(
            "POST",
            "user_preferences",
            params={"on_conflict": "user_id"},
            json=payload,
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        return self._single(rows, "user_preferences upsert")

    # ------------------------------------------------------------------
    # Savings transactions
    # ------------------------------------------------------------------
    def list_savings_transactions(self, user_id: str, limit: int) -> List[Row]:
        return self._request("GET", "savings_transactions", params={
            "user_id": f"eq.{user_id}",
            "order": "created_at.desc",
            "limit": limit,
        })

    def insert_savings_transaction(self, user_id: str, row: Row) -> Row:
        rows = self._request("POST", "savings_transactions", json=dict(row, user_id=user_id))
        return self._single(rows, "savings_transactions insert")

    def delete_savings_transactions(self, user_id: str) -> None:
        self._request("DELETE", "savings_transactions", params={"user_id": f"eq.{user_id}"})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _request(self, method: str, table: str, **kwargs: Any) -> List[Row]:
        try:
            resp = self.session.request(method, f"{self.url}/{table}", timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.exception("Store %s %s failed", method, table)
            raise StoreError(f"{method} {table} failed: {exc}") from exc
        if resp.status_code >= 400:
            logger.warning("Store %s %s returned %s: %s", method, table, resp.status_code, resp.text[:200])
            raise StoreError(f"{method} {table} returned {resp.status_code}")
        if not resp.content:
            return []
        try:
            data = resp.json()
        except ValueError as exc:
            raise StoreError(f"{method} {table} returned malformed JSON") from exc
        return data if isinstance(data, list) else [data]

    @staticmethod
    def _single(rows: List[Row], action: str) -> Row:
        if not rows:
            raise StoreError(f"{action} returned no row")
        return rows[0]

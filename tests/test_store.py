from __future__ import annotations

import pytest
import requests

from subtrack.store import InMemoryStore, NotFoundError, RestStore, StoreError


class RecordingSession:
    def __init__(self, responses):
        self.headers = {}
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class Reply:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.content = b"" if payload is None else b"x"
        self.text = str(payload)

    def json(self):
        return self._payload


def _store(*responses):
    session = RecordingSession(responses)
    return RestStore("https://db.test/rest/v1/", "anon-key", session=session), session


def test_rest_store_scopes_queries_by_user():
    store, session = _store(Reply([{"id": "a"}]))
    assert store.list_subscriptions("u1") == [{"id": "a"}]
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", "https://db.test/rest/v1/subscriptions")
    assert kwargs["params"] == {"user_id": "eq.u1", "order": "created_at.asc"}
    assert session.headers["apikey"] == "anon-key"
    assert session.headers["Authorization"] == "Bearer anon-key"


def test_rest_store_insert_returns_representation():
    store, session = _store(Reply([{"id": "new", "name": "Netflix"}]))
    assert store.insert_subscription("u1", {"name": "Netflix"})["id"] == "new"
    assert session.calls[0][2]["json"] == {"name": "Netflix", "user_id": "u1"}


def test_rest_store_update_of_missing_row():
    store, _ = _store(Reply([]))
    with pytest.raises(NotFoundError):
        store.update_subscription("u1", "missing", {"name": "x"})


def test_rest_store_wraps_transport_and_http_failures():
    store, _ = _store(requests.ConnectionError("down"), Reply({"message": "JWT expired"}, status_code=401))
    with pytest.raises(StoreError):
        store.list_subscriptions("u1")
    with pytest.raises(StoreError):
        store.list_savings_transactions("u1", 20)


def test_rest_store_preferences_missing_and_upsert():
    store, session = _store(Reply([]), Reply([{"user_id": "u1", "monthly_salary": 1000}]))
    assert store.get_preferences("u1") is None
    assert store.upsert_preferences("u1", {"monthly_salary": 1000})["monthly_salary"] == 1000
    kwargs = session.calls[1][2]
    assert kwargs["params"] == {"on_conflict": "user_id"}
    assert "merge-duplicates" in kwargs["headers"]["Prefer"]


def test_in_memory_store_isolates_users():
    store = InMemoryStore()
    store.insert_subscription("u1", {"name": "Netflix"})
    assert store.list_subscriptions("u2") == []
    with pytest.raises(NotFoundError):
        store.delete_subscription("u2", "anything")


def test_in_memory_savings_newest_first_with_limit():
    store = InMemoryStore()
    for amount in (1, 2, 3):
        store.insert_savings_transaction("u1", {"amount": amount})
    assert [row["amount"] for row in store.list_savings_transactions("u1", 2)] == [3, 2]
    store.delete_savings_transactions("u1")
    assert store.list_savings_transactions("u1", 2) == []

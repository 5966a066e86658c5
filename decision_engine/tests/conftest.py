from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone

import numpy as np
import pytest
from fastapi.testclient import TestClient

from decision_engine.analytics.store import clear_events
from decision_engine.app import create_app
from decision_engine.decisions.lifecycle import DecisionManager
from decision_engine.decisions.models import (
    Decision,
    DecisionKind,
    DecisionMethod,
    DecisionResult,
    DecisionStatus,
)
from decision_engine.notifications.dispatcher import OutboxDispatcher
from decision_engine.store.memory import InMemoryStore
from decision_engine.store.seed import seed_demo_data

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
VISIT = date(2026, 10, 20)

PERSONAL_COLLECTION = "c-alice-favourites"
GROUP_COLLECTION = "c-team-lunch"
GROUP = "g-lunch-crew"


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def completed_decision(
    collection_id: str,
    restaurant_id: str,
    selected_at: datetime,
    participants: list[str] | None = None,
    kind: DecisionKind = DecisionKind.personal,
    group_id: str | None = None,
    visit_date: date = VISIT,
) -> Decision:
    return Decision(
        collection_id=collection_id,
        group_id=group_id,
        kind=kind,
        method=DecisionMethod.random,
        status=DecisionStatus.completed,
        deadline=selected_at,
        visit_date=visit_date,
        participants=participants or ["alice"],
        result=DecisionResult(
            restaurant_id=restaurant_id,
            selected_at=selected_at,
            reasoning="seeded",
        ),
        created_at=selected_at,
        updated_at=selected_at,
    )


@pytest.fixture(autouse=True)
def _clean_events():
    clear_events()
    yield
    clear_events()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def store() -> InMemoryStore:
    return seed_demo_data(InMemoryStore())


@pytest.fixture
def dispatcher() -> OutboxDispatcher:
    return OutboxDispatcher()


@pytest.fixture
def manager(store, dispatcher, clock) -> DecisionManager:
    return DecisionManager(store, dispatcher, rng=np.random.default_rng(7), clock=clock)


@pytest.fixture
def app(store, dispatcher, clock):
    return create_app(
        store=store, dispatcher=dispatcher, rng=np.random.default_rng(7), clock=clock,
    )


def login(app, username: str, password: str | None = None) -> TestClient:
    """A fresh client with its own session cookie."""
    client = TestClient(app)
    resp = client.post(
        "/auth/login",
        json={"username": username, "password": password or f"{username}123"},
    )
    assert resp.status_code == 200
    return client


def run(coro):
    return asyncio.run(coro)

from __future__ import annotations

import threading
from datetime import datetime

from ..decisions.models import (
    Ballot,
    Collection,
    Decision,
    DecisionResult,
    DecisionStatus,
    Group,
    HistoryFilter,
    Restaurant,
    utcnow,
)


class InMemoryStore:
    """
    Process-local document store.

    Documents are copied on the way in and out so callers never share
    mutable state with the store.  A single lock makes every write atomic,
    which is what the conditional operations rely on.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._decisions: dict[str, Decision] = {}
        self._collections: dict[str, Collection] = {}
        self._restaurants: dict[str, Restaurant] = {}
        self._groups: dict[str, Group] = {}

    # ── Seeding ──────────────────────────────────────────────────────────

    def add_restaurant(self, restaurant: Restaurant) -> Restaurant:
        with self._lock:
            self._restaurants[restaurant.id] = restaurant.model_copy(deep=True)
        return restaurant

    def add_collection(self, collection: Collection) -> Collection:
        with self._lock:
            self._collections[collection.id] = collection.model_copy(deep=True)
        return collection

    def add_group(self, group: Group) -> Group:
        with self._lock:
            self._groups[group.id] = group.model_copy(deep=True)
        return group

    def clear(self) -> None:
        with self._lock:
            self._decisions.clear()
            self._collections.clear()
            self._restaurants.clear()
            self._groups.clear()

    # ── Decisions ────────────────────────────────────────────────────────

    async def insert_decision(self, decision: Decision) -> Decision:
        with self._lock:
            self._decisions[decision.id] = decision.model_copy(deep=True)
        return decision.model_copy(deep=True)

    async def find_decision(self, decision_id: str) -> Decision | None:
        with self._lock:
            decision = self._decisions.get(decision_id)
            return decision.model_copy(deep=True) if decision else None

    async def find_group_decisions(self, group_id: str) -> list[Decision]:
        with self._lock:
            found = [
                d.model_copy(deep=True)
                for d in self._decisions.values()
                if d.group_id == group_id
            ]
        found.sort(key=lambda d: d.created_at, reverse=True)
        return found

    async def find_due_decisions(self, now: datetime) -> list[Decision]:
        with self._lock:
            return [
                d.model_copy(deep=True)
                for d in self._decisions.values()
                if d.status == DecisionStatus.active
                and d.result is None
                and d.deadline <= now
            ]

    async def list_completed_decisions(
        self, collection_id: str, restaurant_id: str | None = None,
    ) -> list[Decision]:
        with self._lock:
            found = [
                d.model_copy(deep=True)
                for d in self._decisions.values()
                if d.collection_id == collection_id
                and d.status == DecisionStatus.completed
                and (
                    restaurant_id is None
                    or (d.result is not None and d.result.restaurant_id == restaurant_id)
                )
            ]
        found.sort(key=lambda d: d.created_at, reverse=True)
        return found

    async def query_history(
        self, user_id: str, query: HistoryFilter,
    ) -> tuple[list[Decision], int]:
        with self._lock:
            matches = [
                d.model_copy(deep=True)
                for d in self._decisions.values()
                if _matches_history(d, user_id, query)
            ]
        matches.sort(key=lambda d: (d.visit_date, d.created_at), reverse=True)
        page = matches[query.offset:query.offset + query.limit]
        return page, len(matches)

    async def append_ballot(self, decision_id: str, ballot: Ballot) -> Decision | None:
        with self._lock:
            decision = self._decisions.get(decision_id)
            if (
                decision is None
                or decision.status != DecisionStatus.active
                or decision.result is not None
            ):
                return None
            votes = [v for v in decision.votes if v.user_id != ballot.user_id]
            votes.append(ballot.model_copy(deep=True))
            decision.votes = votes
            decision.updated_at = utcnow()
            return decision.model_copy(deep=True)

    async def try_set_result(self, decision_id: str, result: DecisionResult) -> bool:
        with self._lock:
            decision = self._decisions.get(decision_id)
            if (
                decision is None
                or decision.result is not None
                or decision.status != DecisionStatus.active
            ):
                return False
            decision.result = result.model_copy(deep=True)
            decision.status = DecisionStatus.completed
            decision.updated_at = utcnow()
            return True

    async def mark_expired(self, decision_id: str) -> bool:
        with self._lock:
            decision = self._decisions.get(decision_id)
            if (
                decision is None
                or decision.result is not None
                or decision.status != DecisionStatus.active
            ):
                return False
            decision.status = DecisionStatus.expired
            decision.updated_at = utcnow()
            return True

    async def set_amount_spent(self, decision_id: str, amount: float) -> bool:
        with self._lock:
            decision = self._decisions.get(decision_id)
            if decision is None or decision.status != DecisionStatus.completed:
                return False
            decision.amount_spent = amount
            decision.updated_at = utcnow()
            return True

    async def delete_decision(self, decision_id: str) -> bool:
        with self._lock:
            return self._decisions.pop(decision_id, None) is not None

    async def delete_decisions(
        self,
        collection_id: str,
        restaurant_id: str | None = None,
        participant_id: str | None = None,
        group_id: str | None = None,
    ) -> int:
        with self._lock:
            doomed = [
                d.id
                for d in self._decisions.values()
                if d.collection_id == collection_id
                and d.status == DecisionStatus.completed
                and (
                    restaurant_id is None
                    or (d.result is not None and d.result.restaurant_id == restaurant_id)
                )
                and (participant_id is None or participant_id in d.participants)
                and (group_id is None or d.group_id == group_id)
            ]
            for decision_id in doomed:
                del self._decisions[decision_id]
        return len(doomed)

    # ── Collaborator documents ───────────────────────────────────────────

    async def find_collection(self, collection_id: str) -> Collection | None:
        with self._lock:
            collection = self._collections.get(collection_id)
            return collection.model_copy(deep=True) if collection else None

    async def find_restaurants(self, restaurant_ids: list[str]) -> list[Restaurant]:
        with self._lock:
            return [
                self._restaurants[rid].model_copy(deep=True)
                for rid in restaurant_ids
                if rid in self._restaurants
            ]

    async def find_group(self, group_id: str) -> Group | None:
        with self._lock:
            group = self._groups.get(group_id)
            return group.model_copy(deep=True) if group else None


def _matches_history(decision: Decision, user_id: str, query: HistoryFilter) -> bool:
    if decision.status != DecisionStatus.completed:
        return False
    if user_id not in decision.participants:
        return False
    if query.kind is not None and decision.kind != query.kind:
        return False
    if query.collection_id and decision.collection_id != query.collection_id:
        return False
    if query.group_id and decision.group_id != query.group_id:
        return False
    if query.restaurant_id and (
        decision.result is None or decision.result.restaurant_id != query.restaurant_id
    ):
        return False
    if query.start_date and decision.visit_date < query.start_date:
        return False
    if query.end_date and decision.visit_date > query.end_date:
        return False
    return True

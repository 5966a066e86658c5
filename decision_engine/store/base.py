from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ..decisions.models import (
    Ballot,
    Collection,
    Decision,
    DecisionResult,
    Group,
    HistoryFilter,
    Restaurant,
)


class DecisionStore(Protocol):
    """
    Document store the decision engine persists through.

    Conditional operations (``append_ballot``, ``try_set_result``,
    ``mark_expired``) must be atomic against each other for the same
    decision; they are the only serialization point the engine relies on.
    """

    async def insert_decision(self, decision: Decision) -> Decision: ...

    async def find_decision(self, decision_id: str) -> Decision | None: ...

    async def find_group_decisions(self, group_id: str) -> list[Decision]: ...

    async def find_due_decisions(self, now: datetime) -> list[Decision]: ...

    async def list_completed_decisions(
        self, collection_id: str, restaurant_id: str | None = None,
    ) -> list[Decision]: ...

    async def query_history(
        self, user_id: str, query: HistoryFilter,
    ) -> tuple[list[Decision], int]: ...

    async def append_ballot(self, decision_id: str, ballot: Ballot) -> Decision | None:
        """Upsert *ballot* by user id on an active, unresolved decision.

        Returns the updated decision, or ``None`` if it is no longer open.
        """
        ...

    async def try_set_result(self, decision_id: str, result: DecisionResult) -> bool:
        """Set *result* and mark completed only if no result is set yet."""
        ...

    async def mark_expired(self, decision_id: str) -> bool:
        """Mark an active, unresolved decision expired."""
        ...

    async def set_amount_spent(self, decision_id: str, amount: float) -> bool: ...

    async def delete_decision(self, decision_id: str) -> bool: ...

    async def delete_decisions(
        self,
        collection_id: str,
        restaurant_id: str | None = None,
        participant_id: str | None = None,
        group_id: str | None = None,
    ) -> int:
        """Delete completed decisions for a collection.

        Optional filters narrow the scope to one restaurant, to decisions
        *participant_id* took part in, or to one group's decisions.
        """
        ...

    async def find_collection(self, collection_id: str) -> Collection | None: ...

    async def find_restaurants(self, restaurant_ids: list[str]) -> list[Restaurant]: ...

    async def find_group(self, group_id: str) -> Group | None: ...

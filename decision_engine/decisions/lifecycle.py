"""
Decision lifecycle manager.

A decision is created ``active``, collects ballots (tiered) or waits for its
deadline (random), and is resolved exactly once into ``completed``.  The
``expired`` state is reserved for decisions that were abandoned without any
fallback path: an admin closed them, or their collection became empty.

The manager keeps no locks and no in-process state.  Every race between
ballot submission and resolution is settled by the store's conditional
writes: whoever sets the result first wins, and everyone else re-reads it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timedelta
from typing import Any, TypeVar

import numpy as np

from ..analytics.store import record_event
from ..config import DEFAULT_ENGINE_CONFIG, EngineConfig
from ..notifications.dispatcher import NotificationDispatcher
from ..store.base import DecisionStore
from . import ranked_choice
from .errors import (
    AlreadyResolvedError,
    CollectionNotFoundError,
    DeadlinePassedError,
    DecisionClosedError,
    DecisionNotFoundError,
    EmptyCollectionError,
    GroupNotFoundError,
    InvalidBallotError,
    InvalidRequestError,
    NotCompletedError,
    NotParticipantError,
    StoreTimeoutError,
)
from .models import (
    Ballot,
    Collection,
    Decision,
    DecisionKind,
    DecisionMethod,
    DecisionResult,
    DecisionStatus,
    Group,
    HistoryFilter,
    HistoryPage,
    NotificationEvent,
    WeightsResponse,
    utcnow,
)
from .selector import select
from .weights import build_weight_snapshots, calculate_weights

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DecisionManager:
    def __init__(
        self,
        store: DecisionStore,
        dispatcher: NotificationDispatcher,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        rng: np.random.Generator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.config = config
        self._rng = rng or np.random.default_rng()
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock()

    # ── Collaborator calls ───────────────────────────────────────────────

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.config.store_timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Decision store call timed out after %.1fs", self.config.store_timeout)
            raise StoreTimeoutError() from exc

    async def _notify(self, decision: Decision, event: NotificationEvent) -> None:
        try:
            await asyncio.wait_for(
                self.dispatcher.dispatch(decision.id, event, list(decision.participants)),
                timeout=self.config.notify_timeout,
            )
        except Exception:
            logger.warning(
                "Failed to dispatch %s notification for decision %s",
                event.value, decision.id, exc_info=True,
            )

    async def _load_decision(self, decision_id: str) -> Decision:
        decision = await self._call(self.store.find_decision(decision_id))
        if decision is None:
            raise DecisionNotFoundError()
        return decision

    async def _load_collection(self, collection_id: str) -> Collection:
        collection = await self._call(self.store.find_collection(collection_id))
        if collection is None:
            raise CollectionNotFoundError()
        return collection

    async def _load_group(self, group_id: str) -> Group:
        group = await self._call(self.store.find_group(group_id))
        if group is None:
            raise GroupNotFoundError()
        return group

    def _deadline(self, hours: int | None) -> datetime:
        hours = self.config.default_deadline_hours if hours is None else hours
        if not self.config.min_deadline_hours <= hours <= self.config.max_deadline_hours:
            raise InvalidRequestError(
                f"Deadline must be between {self.config.min_deadline_hours} and "
                f"{self.config.max_deadline_hours} hours"
            )
        return self.now() + timedelta(hours=hours)

    async def _ensure_collection_access(self, collection: Collection, user_id: str) -> None:
        """Personal collections belong to their owner, group ones to the group's members."""
        if collection.kind == DecisionKind.group:
            group = await self._load_group(collection.owner_id)
            if user_id not in group.all_member_ids:
                raise NotParticipantError("User is not a member of this collection's group")
        elif collection.owner_id != user_id:
            raise NotParticipantError("Collection does not belong to this user")

    # ── Creation ─────────────────────────────────────────────────────────

    async def create_personal_decision(
        self,
        collection_id: str,
        user_id: str,
        visit_date: date,
        method: DecisionMethod = DecisionMethod.random,
        deadline_hours: int | None = None,
    ) -> Decision:
        if method == DecisionMethod.manual:
            raise InvalidRequestError("Manual decisions are recorded, not created")
        collection = await self._load_collection(collection_id)
        await self._ensure_collection_access(collection, user_id)

        decision = Decision(
            collection_id=collection_id,
            kind=DecisionKind.personal,
            method=method,
            deadline=self._deadline(deadline_hours),
            visit_date=visit_date,
            participants=[user_id],
        )
        decision = await self._call(self.store.insert_decision(decision))
        self._record_created(decision)
        return decision

    async def create_group_decision(
        self,
        collection_id: str,
        group_id: str,
        visit_date: date,
        method: DecisionMethod = DecisionMethod.tiered,
        deadline_hours: int | None = None,
        created_by: str | None = None,
        announce: bool = True,
    ) -> Decision:
        if method == DecisionMethod.manual:
            raise InvalidRequestError("Manual decisions are recorded, not created")
        collection = await self._load_collection(collection_id)
        group = await self._load_group(group_id)
        if collection.kind == DecisionKind.group and collection.owner_id != group_id:
            raise InvalidRequestError("Collection does not belong to this group")
        if created_by is not None and created_by not in group.all_member_ids:
            raise NotParticipantError("User is not a member of this group")

        participants = group.all_member_ids
        if not participants:
            raise InvalidRequestError("Group has no members")

        decision = Decision(
            collection_id=collection_id,
            group_id=group_id,
            kind=DecisionKind.group,
            method=method,
            deadline=self._deadline(deadline_hours),
            visit_date=visit_date,
            participants=participants,
        )
        decision = await self._call(self.store.insert_decision(decision))
        self._record_created(decision)
        if announce:
            await self._notify(decision, NotificationEvent.started)
        return decision

    async def random_select(
        self, collection_id: str, user_id: str, visit_date: date,
    ) -> Decision:
        """Create a personal random decision and resolve it on the spot."""
        collection = await self._load_collection(collection_id)
        if not collection.restaurant_ids:
            raise EmptyCollectionError()
        decision = await self.create_personal_decision(
            collection_id, user_id, visit_date, method=DecisionMethod.random,
        )
        return await self.resolve(decision.id, trigger="immediate")

    async def group_random_select(
        self,
        collection_id: str,
        group_id: str,
        visit_date: date,
        created_by: str | None = None,
    ) -> Decision:
        collection = await self._load_collection(collection_id)
        if not collection.restaurant_ids:
            raise EmptyCollectionError()
        decision = await self.create_group_decision(
            collection_id,
            group_id,
            visit_date,
            method=DecisionMethod.random,
            created_by=created_by,
            announce=False,
        )
        return await self.resolve(decision.id, trigger="immediate")

    async def record_manual_decision(
        self,
        collection_id: str,
        restaurant_id: str,
        user_id: str,
        visit_date: date,
        kind: DecisionKind = DecisionKind.personal,
        group_id: str | None = None,
        notes: str | None = None,
    ) -> Decision:
        """Record a visit chosen outside the engine so it counts toward weights."""
        collection = await self._load_collection(collection_id)
        await self._ensure_collection_access(collection, user_id)
        if restaurant_id not in collection.restaurant_ids:
            raise InvalidRequestError("Restaurant is not in this collection")
        if kind == DecisionKind.group:
            if not group_id:
                raise InvalidRequestError("Group decisions require a group id")
            group = await self._load_group(group_id)
            if user_id not in group.all_member_ids:
                raise NotParticipantError("User is not a member of this group")
        else:
            group_id = None

        now = self.now()
        decision = Decision(
            collection_id=collection_id,
            group_id=group_id,
            kind=kind,
            method=DecisionMethod.manual,
            status=DecisionStatus.completed,
            deadline=now,
            visit_date=visit_date,
            participants=[user_id],
            result=DecisionResult(
                restaurant_id=restaurant_id,
                selected_at=now,
                reasoning=notes or "Manually entered decision",
            ),
            created_at=now,
            updated_at=now,
        )
        decision = await self._call(self.store.insert_decision(decision))
        self._record_created(decision)
        record_event("decision_resolved", decision.id, {
            "method": decision.method.value,
            "trigger": "manual_entry",
            "restaurant_id": restaurant_id,
        })
        logger.info("Manual decision %s recorded by %s", decision.id, user_id)
        return decision

    def _record_created(self, decision: Decision) -> None:
        record_event("decision_created", decision.id, {
            "kind": decision.kind.value,
            "method": decision.method.value,
            "participants": len(decision.participants),
        })
        logger.info(
            "Created %s %s decision %s for collection %s",
            decision.kind.value, decision.method.value, decision.id, decision.collection_id,
        )

    # ── Voting ───────────────────────────────────────────────────────────

    async def submit_ballot(
        self, decision_id: str, user_id: str, rankings: list[str],
    ) -> Decision:
        """
        Record *user_id*'s ranking, replacing any earlier ballot of theirs.

        When the last eligible participant votes the decision is resolved
        immediately.  The returned decision reflects either state.
        """
        decision = await self._load_decision(decision_id)
        if decision.method != DecisionMethod.tiered:
            raise InvalidRequestError("This is not a tiered decision")
        if user_id not in decision.participants:
            raise NotParticipantError()
        self._ensure_open(decision)
        if self.now() > decision.deadline:
            raise DeadlinePassedError()

        if not rankings:
            raise InvalidBallotError("Rankings must include at least one restaurant")
        if len(set(rankings)) != len(rankings):
            raise InvalidBallotError("Rankings contain duplicate restaurants")
        collection = await self._load_collection(decision.collection_id)
        allowed = set(collection.restaurant_ids)
        unknown = [r for r in rankings if r not in allowed]
        if unknown:
            raise InvalidBallotError(f"Unknown restaurant in rankings: {unknown[0]}")

        ballot = Ballot(user_id=user_id, rankings=list(rankings), submitted_at=self.now())
        updated = await self._call(self.store.append_ballot(decision_id, ballot))
        if updated is None:
            # Resolved or closed between our read and the write
            self._ensure_open(await self._load_decision(decision_id))
            raise DecisionClosedError()

        record_event("ballot_submitted", decision_id, {"user_id": user_id})
        logger.info("Ballot from %s recorded on decision %s", user_id, decision_id)

        if updated.all_voted:
            return await self.resolve(decision_id, trigger="all_votes_in")
        return updated

    @staticmethod
    def _ensure_open(decision: Decision) -> None:
        if decision.result is not None:
            raise AlreadyResolvedError()
        if decision.status != DecisionStatus.active:
            raise DecisionClosedError()

    # ── Resolution ───────────────────────────────────────────────────────

    async def resolve(self, decision_id: str, trigger: str = "deadline") -> Decision:
        """
        Resolve *decision_id* at most once.

        If a result already exists the stored decision is returned unchanged.
        A result computed here is only kept if the conditional write wins;
        otherwise it is discarded in favour of the one already persisted.
        """
        decision = await self._load_decision(decision_id)
        if decision.result is not None:
            return decision
        if decision.status != DecisionStatus.active:
            raise DecisionClosedError()

        collection = await self._call(self.store.find_collection(decision.collection_id))
        candidates = list(collection.restaurant_ids) if collection else []
        if not candidates:
            return await self._expire(decision, reason="collection has no restaurants")

        history = await self._call(self.store.list_completed_decisions(decision.collection_id))
        now = self.now()
        weights = calculate_weights(
            candidates, history, now=now, recovery_days=self.config.recovery_days,
        )
        result, details = self._compute_result(decision, candidates, weights, history, now)

        won = await self._call(self.store.try_set_result(decision_id, result))
        current = await self._load_decision(decision_id)
        if not won:
            logger.info(
                "Decision %s was resolved concurrently, discarding computed result",
                decision_id,
            )
            if current.result is None:
                # Lost to a close, not to another resolution
                raise DecisionClosedError()
            return current

        logger.info(
            "Resolved decision %s (%s, %s): %s",
            decision_id, decision.method.value, trigger, result.restaurant_id,
        )
        record_event("decision_resolved", decision_id, {
            "method": decision.method.value,
            "trigger": trigger,
            "restaurant_id": result.restaurant_id,
            "ballots": len(decision.votes),
            **details,
        })
        await self._notify(current, NotificationEvent.completed)
        return current

    def _compute_result(
        self,
        decision: Decision,
        candidates: list[str],
        weights: dict[str, float],
        history: list[Decision],
        now: datetime,
    ) -> tuple[DecisionResult, dict[str, Any]]:
        if decision.method == DecisionMethod.tiered:
            outcome = ranked_choice.resolve(decision.votes, candidates, weights)
            if outcome is not None:
                return DecisionResult(
                    restaurant_id=outcome.winner,
                    selected_at=now,
                    reasoning=outcome.reasoning,
                    weights={k: round(v, 4) for k, v in weights.items()},
                    tallies=dict(outcome.final_counts),
                ), {"fallback": False, "rounds": len(outcome.rounds)}

        winner = select(candidates, weights, rng=self._rng)
        previous = sum(
            1 for d in history
            if d.result is not None and d.result.restaurant_id == winner
        )
        reasoning = (
            f"Selected using weighted random algorithm. "
            f"Weight: {weights[winner]:.2f}, Previous selections: {previous}"
        )
        fallback = decision.method == DecisionMethod.tiered
        if fallback:
            reasoning = f"No ballots were submitted before the deadline. {reasoning}"
        return DecisionResult(
            restaurant_id=winner,
            selected_at=now,
            reasoning=reasoning,
            weights={k: round(v, 4) for k, v in weights.items()},
        ), {"fallback": fallback}

    async def _expire(self, decision: Decision, reason: str) -> Decision:
        if await self._call(self.store.mark_expired(decision.id)):
            logger.info("Decision %s expired: %s", decision.id, reason)
            record_event("decision_expired", decision.id, {"reason": reason})
        return await self._load_decision(decision.id)

    async def decide_now(self, decision_id: str, user_id: str) -> Decision:
        """Explicit "decide now" trigger from the owner or a group admin."""
        decision = await self._load_decision(decision_id)
        await self._ensure_admin(decision, user_id, action="decide")
        self._ensure_open(decision)
        return await self.resolve(decision_id, trigger="manual_trigger")

    async def close_decision(self, decision_id: str, user_id: str) -> Decision:
        """Abandon an active group decision without producing a result."""
        decision = await self._load_decision(decision_id)
        if decision.kind != DecisionKind.group:
            raise InvalidRequestError("This is not a group decision")
        self._ensure_open(decision)
        await self._ensure_admin(decision, user_id, action="close")

        if not await self._call(self.store.mark_expired(decision_id)):
            self._ensure_open(await self._load_decision(decision_id))
            raise DecisionClosedError()
        logger.info("Decision %s closed by %s", decision_id, user_id)
        record_event("decision_expired", decision_id, {"reason": "closed", "user_id": user_id})
        return await self._load_decision(decision_id)

    async def _ensure_admin(self, decision: Decision, user_id: str, action: str) -> None:
        if decision.kind == DecisionKind.personal or decision.group_id is None:
            if user_id not in decision.participants:
                raise NotParticipantError()
            return
        group = await self._load_group(decision.group_id)
        if user_id not in group.admin_ids:
            raise NotParticipantError(f"Only group admins can {action} decisions")

    async def resolve_due_decisions(self) -> list[Decision]:
        """Resolve every active decision whose deadline has passed."""
        due = await self._call(self.store.find_due_decisions(self.now()))
        resolved: list[Decision] = []
        for decision in due:
            try:
                resolved.append(await self.resolve(decision.id, trigger="deadline"))
            except (DecisionNotFoundError, DecisionClosedError):
                logger.info("Decision %s left the active state before its sweep", decision.id)
        if resolved:
            logger.info("Deadline sweep resolved %d decision(s)", len(resolved))
        return resolved

    async def _settle(self, decision: Decision) -> Decision:
        """Resolve an overdue decision on read, so it is never seen stale."""
        if (
            decision.status == DecisionStatus.active
            and decision.result is None
            and self.now() >= decision.deadline
        ):
            try:
                return await self.resolve(decision.id, trigger="deadline")
            except (DecisionNotFoundError, DecisionClosedError):
                return decision
        return decision

    # ── Queries ──────────────────────────────────────────────────────────

    async def get_decision(self, decision_id: str) -> Decision:
        return await self._settle(await self._load_decision(decision_id))

    async def list_group_decisions(self, group_id: str) -> list[Decision]:
        decisions = await self._call(self.store.find_group_decisions(group_id))
        return [await self._settle(d) for d in decisions]

    async def get_weights(self, collection_id: str, user_id: str) -> WeightsResponse:
        collection = await self._load_collection(collection_id)
        await self._ensure_collection_access(collection, user_id)
        restaurants = await self._call(self.store.find_restaurants(collection.restaurant_ids))
        history = await self._call(self.store.list_completed_decisions(collection_id))
        snapshots = build_weight_snapshots(
            restaurants, history, now=self.now(), recovery_days=self.config.recovery_days,
        )
        return WeightsResponse(
            collection_id=collection_id,
            weights=snapshots,
            total_decisions=len(history),
        )

    async def reset_weights(
        self, collection_id: str, user_id: str, restaurant_id: str | None = None,
    ) -> int:
        """
        Forget completed history for a collection, or for one restaurant in it.

        Only history the caller can see is deleted: their own decisions on a
        personal collection, the owning group's decisions on a group one.
        """
        collection = await self._load_collection(collection_id)
        await self._ensure_collection_access(collection, user_id)
        if collection.kind == DecisionKind.group:
            scope = {"group_id": collection.owner_id}
        else:
            scope = {"participant_id": user_id}
        deleted = await self._call(
            self.store.delete_decisions(collection_id, restaurant_id, **scope)
        )
        logger.info(
            "Weights reset for collection %s by %s (restaurant=%s): %d decision(s) deleted",
            collection_id, user_id, restaurant_id or "all", deleted,
        )
        record_event("weights_reset", collection_id, {
            "user_id": user_id,
            "restaurant_id": restaurant_id,
            "deleted": deleted,
        })
        return deleted

    async def list_history(self, user_id: str, query: HistoryFilter) -> HistoryPage:
        if query.start_date and query.end_date and query.start_date > query.end_date:
            raise InvalidRequestError("Start date must not be after end date")
        decisions, total = await self._call(self.store.query_history(user_id, query))
        return HistoryPage(
            decisions=decisions, total=total, offset=query.offset, limit=query.limit,
        )

    # ── Post-hoc edits ───────────────────────────────────────────────────

    async def _load_completed(self, decision_id: str, user_id: str) -> Decision:
        decision = await self._load_decision(decision_id)
        if user_id not in decision.participants:
            raise NotParticipantError()
        if decision.status != DecisionStatus.completed:
            raise NotCompletedError()
        return decision

    async def update_amount_spent(
        self, decision_id: str, user_id: str, amount: float,
    ) -> Decision:
        if amount <= 0:
            raise InvalidRequestError("Amount must be a positive number")
        await self._load_completed(decision_id, user_id)
        if not await self._call(self.store.set_amount_spent(decision_id, round(amount, 2))):
            raise NotCompletedError()
        logger.info("Amount spent updated for decision %s", decision_id)
        return await self._load_decision(decision_id)

    async def delete_decision(self, decision_id: str, user_id: str) -> None:
        decision = await self._load_completed(decision_id, user_id)
        if not await self._call(self.store.delete_decision(decision_id)):
            raise DecisionNotFoundError()
        logger.info(
            "Decision %s deleted by %s (restaurant %s, collection %s)",
            decision_id, user_id,
            decision.result.restaurant_id if decision.result else None,
            decision.collection_id,
        )

    # ── Realtime snapshots ───────────────────────────────────────────────

    async def snapshot_events(
        self, group_id: str | None = None, decision_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Events the subscription hub pushes for a (group, decision) channel."""
        events: list[dict[str, Any]] = []
        if group_id:
            decisions = await self.list_group_decisions(group_id)
            events.append({
                "type": "groupDecisions",
                "data": [d.to_wire() for d in decisions],
            })
        if decision_id:
            decision = await self._call(self.store.find_decision(decision_id))
            if decision is not None:
                decision = await self._settle(decision)
                events.append({"type": "decisionUpdate", "data": decision.to_wire()})
        return events

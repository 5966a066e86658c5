from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class WireModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class DecisionKind(str, Enum):
    personal = "personal"
    group = "group"


class DecisionMethod(str, Enum):
    random = "random"
    tiered = "tiered"
    manual = "manual"


class DecisionStatus(str, Enum):
    active = "active"
    completed = "completed"
    expired = "expired"


class NotificationEvent(str, Enum):
    started = "started"
    completed = "completed"


# ── Stored documents ─────────────────────────────────────────────────────


class Restaurant(WireModel):
    id: str
    name: str
    cuisine: str | None = None
    address: str | None = None


class Collection(WireModel):
    id: str
    name: str
    kind: DecisionKind = DecisionKind.personal
    owner_id: str
    restaurant_ids: list[str] = Field(default_factory=list)


class Group(WireModel):
    id: str
    name: str
    admin_ids: list[str] = Field(default_factory=list)
    member_ids: list[str] = Field(default_factory=list)

    @property
    def all_member_ids(self) -> list[str]:
        """Admins and members, de-duplicated, admins first."""
        return list(dict.fromkeys([*self.admin_ids, *self.member_ids]))


class Ballot(WireModel):
    user_id: str
    rankings: list[str]
    submitted_at: datetime = Field(default_factory=utcnow)


class DecisionResult(WireModel):
    restaurant_id: str
    selected_at: datetime = Field(default_factory=utcnow)
    reasoning: str
    weights: dict[str, float] = Field(default_factory=dict)
    # Final-round vote counts; only set for ranked-choice results
    tallies: dict[str, int] = Field(default_factory=dict)


class Decision(WireModel):
    id: str = Field(default_factory=new_id)
    collection_id: str
    group_id: str | None = None
    kind: DecisionKind
    method: DecisionMethod
    status: DecisionStatus = DecisionStatus.active
    deadline: datetime
    visit_date: date
    participants: list[str] = Field(default_factory=list)
    votes: list[Ballot] = Field(default_factory=list)
    result: DecisionResult | None = None
    amount_spent: float | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def ballot_for(self, user_id: str) -> Ballot | None:
        for ballot in self.votes:
            if ballot.user_id == user_id:
                return ballot
        return None

    @property
    def all_voted(self) -> bool:
        voters = {b.user_id for b in self.votes}
        return bool(self.participants) and all(p in voters for p in self.participants)


# ── Derived views ────────────────────────────────────────────────────────


class WeightSnapshot(WireModel):
    restaurant_id: str
    name: str
    current_weight: float
    selection_count: int
    last_selected: datetime | None = None
    days_until_full_weight: int


class WeightsResponse(WireModel):
    collection_id: str
    weights: list[WeightSnapshot]
    total_decisions: int


class HistoryFilter(WireModel):
    kind: DecisionKind | None = None
    collection_id: str | None = None
    group_id: str | None = None
    restaurant_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    limit: int = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)


class HistoryPage(WireModel):
    decisions: list[Decision]
    total: int
    offset: int
    limit: int


# ── Request bodies ───────────────────────────────────────────────────────


class CreateDecisionRequest(WireModel):
    collection_id: str = Field(..., min_length=1)
    method: DecisionMethod = DecisionMethod.random
    visit_date: date
    deadline_hours: int = Field(default=24, ge=1, le=336)


class CreateGroupDecisionRequest(WireModel):
    collection_id: str = Field(..., min_length=1)
    group_id: str = Field(..., min_length=1)
    method: DecisionMethod = DecisionMethod.tiered
    visit_date: date
    deadline_hours: int = Field(default=24, ge=1, le=336)


class RandomSelectRequest(WireModel):
    collection_id: str = Field(..., min_length=1)
    visit_date: date


class GroupRandomSelectRequest(WireModel):
    collection_id: str = Field(..., min_length=1)
    group_id: str = Field(..., min_length=1)
    visit_date: date


class ManualDecisionRequest(WireModel):
    collection_id: str = Field(..., min_length=1)
    restaurant_id: str = Field(..., min_length=1)
    visit_date: date
    kind: DecisionKind = DecisionKind.personal
    group_id: str | None = None
    notes: str | None = Field(default=None, max_length=500)


class VoteRequest(WireModel):
    decision_id: str = Field(..., min_length=1)
    rankings: list[str] = Field(..., min_length=1)


class AmountSpentRequest(WireModel):
    amount_spent: float = Field(..., gt=0)


class ResetWeightsRequest(WireModel):
    collection_id: str = Field(..., min_length=1)
    restaurant_id: str | None = None


class LoginRequest(BaseModel):
    username: str
    password: str

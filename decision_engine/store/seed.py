from __future__ import annotations

from ..decisions.models import Collection, DecisionKind, Group, Restaurant
from .memory import InMemoryStore

DEMO_RESTAURANTS = [
    Restaurant(id="r-spice-house", name="Spice House", cuisine="North Indian"),
    Restaurant(id="r-pasta-palace", name="Pasta Palace", cuisine="Italian"),
    Restaurant(id="r-curry-leaf", name="Curry Leaf", cuisine="South Indian"),
    Restaurant(id="r-dragon-wok", name="Dragon Wok", cuisine="Chinese"),
    Restaurant(id="r-taco-stand", name="Taco Stand", cuisine="Mexican"),
]


def seed_demo_data(store: InMemoryStore) -> InMemoryStore:
    """Pre-seed restaurants, collections and a group matching the demo users."""
    for restaurant in DEMO_RESTAURANTS:
        store.add_restaurant(restaurant)

    all_ids = [r.id for r in DEMO_RESTAURANTS]
    store.add_collection(Collection(
        id="c-alice-favourites",
        name="Alice's favourites",
        kind=DecisionKind.personal,
        owner_id="alice",
        restaurant_ids=all_ids[:3],
    ))
    store.add_collection(Collection(
        id="c-team-lunch",
        name="Team lunch",
        kind=DecisionKind.group,
        owner_id="g-lunch-crew",
        restaurant_ids=all_ids,
    ))
    store.add_group(Group(
        id="g-lunch-crew",
        name="Lunch crew",
        admin_ids=["alice"],
        member_ids=["alice", "bob", "carol"],
    ))
    return store

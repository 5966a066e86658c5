from __future__ import annotations

from datetime import timedelta

from fastapi.testclient import TestClient

from conftest import GROUP, GROUP_COLLECTION, NOW, PERSONAL_COLLECTION, VISIT, completed_decision, login, run
from decision_engine.app import create_app
from decision_engine.config import EngineConfig

VISIT_DATE = VISIT.isoformat()


def _start_group_vote(client, **extra):
    resp = client.post("/decisions/group", json={
        "collectionId": GROUP_COLLECTION,
        "groupId": GROUP,
        "visitDate": VISIT_DATE,
        **extra,
    })
    assert resp.status_code == 200
    return resp.json()


# ── Personal decisions ───────────────────────────────────────────────────


def test_create_personal_decision(app):
    alice = login(app, "alice")
    resp = alice.post("/decisions", json={
        "collectionId": PERSONAL_COLLECTION, "visitDate": VISIT_DATE, "deadlineHours": 6,
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "active"
    assert body["method"] == "random"
    assert body["participants"] == ["alice"]
    assert body["visitDate"] == VISIT_DATE
    assert body["result"] is None


def test_deadline_hours_validated(app):
    alice = login(app, "alice")
    resp = alice.post("/decisions", json={
        "collectionId": PERSONAL_COLLECTION, "visitDate": VISIT_DATE, "deadlineHours": 500,
    })
    assert resp.status_code == 422


def test_random_select_returns_completed_decision(app):
    alice = login(app, "alice")
    resp = alice.post("/decisions/random-select", json={
        "collectionId": PERSONAL_COLLECTION, "visitDate": VISIT_DATE,
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert body["result"]["restaurantId"] in {"r-spice-house", "r-pasta-palace", "r-curry-leaf"}
    assert "Weight:" in body["result"]["reasoning"]


def test_someone_elses_collection_is_forbidden(app):
    bob = login(app, "bob")
    resp = bob.post("/decisions/random-select", json={
        "collectionId": PERSONAL_COLLECTION, "visitDate": VISIT_DATE,
    })
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Collection does not belong to this user"


def test_unknown_collection_is_404(app):
    alice = login(app, "alice")
    resp = alice.post("/decisions/random-select", json={
        "collectionId": "missing", "visitDate": VISIT_DATE,
    })
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Collection not found"


def test_manual_decision(app):
    alice = login(app, "alice")
    resp = alice.post("/decisions/manual", json={
        "collectionId": PERSONAL_COLLECTION,
        "restaurantId": "r-curry-leaf",
        "visitDate": VISIT_DATE,
        "notes": "Walked past and it smelled great",
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["method"] == "manual"
    assert body["result"]["reasoning"] == "Walked past and it smelled great"


# ── Group voting ─────────────────────────────────────────────────────────


def test_group_vote_flow(app, dispatcher):
    alice = login(app, "alice")
    bob = login(app, "bob")
    carol = login(app, "carol")
    decision = _start_group_vote(alice)
    assert decision["participants"] == ["alice", "bob", "carol"]

    for client, rankings in (
        (alice, ["r-curry-leaf", "r-taco-stand"]),
        (bob, ["r-dragon-wok"]),
    ):
        resp = client.post("/decisions/group/vote", json={
            "decisionId": decision["id"], "rankings": rankings,
        })
        assert resp.status_code == 200
        assert resp.json()["status"] == "active"

    resp = carol.post("/decisions/group/vote", json={
        "decisionId": decision["id"], "rankings": ["r-taco-stand", "r-dragon-wok"],
    })
    body = resp.json()
    assert body["status"] == "completed"
    # Three-way first round; r-curry-leaf goes out on the id tie-break
    assert body["result"]["restaurantId"] == "r-taco-stand"
    assert body["result"]["reasoning"] == "Won in round 2 with 2/3 votes"
    assert [n["event"] for n in dispatcher.get_outbox()] == ["started", "completed"]


def test_vote_after_resolution_conflicts(app):
    alice = login(app, "alice")
    decision = _start_group_vote(alice)
    assert alice.post(f"/decisions/{decision['id']}/resolve").status_code == 200

    resp = login(app, "bob").post("/decisions/group/vote", json={
        "decisionId": decision["id"], "rankings": ["r-spice-house"],
    })
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Decision already resolved"


def test_vote_with_unknown_restaurant_rejected(app):
    alice = login(app, "alice")
    decision = _start_group_vote(alice)
    resp = alice.post("/decisions/group/vote", json={
        "decisionId": decision["id"], "rankings": ["r-nowhere"],
    })
    assert resp.status_code == 400


def test_empty_rankings_rejected_by_validation(app):
    alice = login(app, "alice")
    decision = _start_group_vote(alice)
    resp = alice.post("/decisions/group/vote", json={"decisionId": decision["id"], "rankings": []})
    assert resp.status_code == 422


def test_outsider_cannot_vote(app):
    decision = _start_group_vote(login(app, "alice"))
    resp = login(app, "admin").post("/decisions/group/vote", json={
        "decisionId": decision["id"], "rankings": ["r-spice-house"],
    })
    assert resp.status_code == 403


def test_list_group_decisions(app):
    alice = login(app, "alice")
    first = _start_group_vote(alice)
    second = _start_group_vote(alice, method="random")

    resp = alice.get("/decisions/group", params={"groupId": GROUP})
    assert resp.status_code == 200
    assert {d["id"] for d in resp.json()} == {first["id"], second["id"]}


def test_list_group_decisions_resolves_overdue(app, clock):
    alice = login(app, "alice")
    decision = _start_group_vote(alice, deadlineHours=1)
    clock.advance(hours=3)

    listed = alice.get("/decisions/group", params={"groupId": GROUP}).json()
    assert listed[0]["id"] == decision["id"]
    assert listed[0]["status"] == "completed"
    assert listed[0]["result"]["reasoning"].startswith("No ballots were submitted")


def test_group_random_select(app):
    bob = login(app, "bob")
    resp = bob.post("/decisions/group/random-select", json={
        "collectionId": GROUP_COLLECTION, "groupId": GROUP, "visitDate": VISIT_DATE,
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["kind"] == "group"
    assert body["status"] == "completed"


def test_decide_now_and_close_need_admin(app):
    alice = login(app, "alice")
    bob = login(app, "bob")
    decision = _start_group_vote(alice)

    assert bob.post(f"/decisions/{decision['id']}/resolve").status_code == 403
    assert bob.post(f"/decisions/{decision['id']}/close").status_code == 403

    resp = alice.post(f"/decisions/{decision['id']}/close")
    assert resp.status_code == 200
    assert resp.json()["status"] == "expired"

    resp = alice.post(f"/decisions/{decision['id']}/resolve")
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Decision is no longer active"


def test_get_decision(app):
    alice = login(app, "alice")
    decision = _start_group_vote(alice)
    resp = alice.get(f"/decisions/{decision['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == decision["id"]
    assert alice.get("/decisions/does-not-exist").status_code == 404


def test_subscribe_requires_group_or_decision(app):
    resp = login(app, "alice").get("/decisions/group/subscribe")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Group ID or Decision ID is required"


# ── History ──────────────────────────────────────────────────────────────


def test_history_lists_only_callers_completed_decisions(app, store):
    run(store.insert_decision(completed_decision(PERSONAL_COLLECTION, "r-spice-house", NOW)))
    run(store.insert_decision(completed_decision(
        PERSONAL_COLLECTION, "r-curry-leaf", NOW, participants=["bob"],
    )))
    alice = login(app, "alice")
    alice.post("/decisions", json={"collectionId": PERSONAL_COLLECTION, "visitDate": VISIT_DATE})

    body = alice.get("/decisions/history").json()
    assert body["total"] == 1
    assert body["decisions"][0]["result"]["restaurantId"] == "r-spice-house"


def test_history_query_params(app, store):
    run(store.insert_decision(completed_decision(PERSONAL_COLLECTION, "r-spice-house", NOW)))
    run(store.insert_decision(completed_decision(PERSONAL_COLLECTION, "r-pasta-palace", NOW)))
    alice = login(app, "alice")

    body = alice.get("/decisions/history", params={
        "type": "personal", "restaurantId": "r-pasta-palace",
    }).json()
    assert body["total"] == 1

    body = alice.get("/decisions/history", params={"limit": 1}).json()
    assert body["total"] == 2
    assert len(body["decisions"]) == 1

    assert alice.get("/decisions/history", params={"type": "bogus"}).status_code == 422
    assert alice.get("/decisions/history", params={
        "startDate": "2026-11-01", "endDate": "2026-10-01",
    }).status_code == 400


def test_history_page_size_follows_app_config(store, clock):
    config = EngineConfig(history_limit=1, history_max_limit=2, outbox_size=2)
    app = create_app(store=store, config=config, clock=clock)
    run(store.insert_decision(completed_decision(PERSONAL_COLLECTION, "r-spice-house", NOW)))
    run(store.insert_decision(completed_decision(PERSONAL_COLLECTION, "r-pasta-palace", NOW)))
    alice = login(app, "alice")

    body = alice.get("/decisions/history").json()
    assert body["total"] == 2
    assert len(body["decisions"]) == 1
    assert alice.get("/decisions/history", params={"limit": 2}).status_code == 200
    assert alice.get("/decisions/history", params={"limit": 3}).status_code == 422
    assert app.state.dispatcher._outbox.maxlen == 2


def test_amount_spent_and_delete(app):
    alice = login(app, "alice")
    decision = alice.post("/decisions/random-select", json={
        "collectionId": PERSONAL_COLLECTION, "visitDate": VISIT_DATE,
    }).json()

    resp = alice.patch(f"/decisions/history/{decision['id']}", json={"amountSpent": 36.75})
    assert resp.status_code == 200
    assert resp.json()["amountSpent"] == 36.75

    assert alice.patch(
        f"/decisions/history/{decision['id']}", json={"amountSpent": -1},
    ).status_code == 422
    assert login(app, "bob").delete(f"/decisions/history/{decision['id']}").status_code == 403

    resp = alice.delete(f"/decisions/history/{decision['id']}")
    assert resp.status_code == 200
    assert resp.json() == {"status": "deleted"}
    assert alice.get(f"/decisions/{decision['id']}").status_code == 404


def test_edit_active_decision_conflicts(app):
    alice = login(app, "alice")
    decision = alice.post("/decisions", json={
        "collectionId": PERSONAL_COLLECTION, "visitDate": VISIT_DATE,
    }).json()
    resp = alice.patch(f"/decisions/history/{decision['id']}", json={"amountSpent": 10})
    assert resp.status_code == 409


# ── Weights ──────────────────────────────────────────────────────────────


def test_weights_endpoint(app, store):
    run(store.insert_decision(completed_decision(
        PERSONAL_COLLECTION, "r-spice-house", NOW - timedelta(days=6),
    )))
    body = login(app, "alice").get(
        "/decisions/weights", params={"collectionId": PERSONAL_COLLECTION},
    ).json()

    assert body["collectionId"] == PERSONAL_COLLECTION
    assert body["totalDecisions"] == 1
    spice = next(w for w in body["weights"] if w["restaurantId"] == "r-spice-house")
    assert spice["currentWeight"] == 0.2
    assert spice["daysUntilFullWeight"] == 24
    assert body["weights"][-1]["restaurantId"] == "r-spice-house"


def test_reset_weights_endpoint(app, store):
    run(store.insert_decision(completed_decision(PERSONAL_COLLECTION, "r-spice-house", NOW)))
    alice = login(app, "alice")

    resp = alice.post("/decisions/weights/reset", json={
        "collectionId": PERSONAL_COLLECTION, "restaurantId": "r-spice-house",
    })
    assert resp.status_code == 200
    assert resp.json() == {
        "status": "reset",
        "message": "Restaurant weight reset successfully",
        "deletedDecisions": 1,
    }
    weights = alice.get("/decisions/weights", params={"collectionId": PERSONAL_COLLECTION}).json()
    assert all(w["currentWeight"] == 1.0 for w in weights["weights"])


def test_reset_of_someone_elses_weights_is_forbidden(app, store):
    run(store.insert_decision(completed_decision(PERSONAL_COLLECTION, "r-spice-house", NOW)))
    bob = login(app, "bob")

    resp = bob.post("/decisions/weights/reset", json={"collectionId": PERSONAL_COLLECTION})
    assert resp.status_code == 403
    assert bob.get(
        "/decisions/weights", params={"collectionId": PERSONAL_COLLECTION},
    ).status_code == 403

    assert login(app, "alice").get("/decisions/history").json()["total"] == 1


# ── Admin ────────────────────────────────────────────────────────────────


def test_admin_sweep(app, clock):
    alice = login(app, "alice")
    decision = _start_group_vote(alice, deadlineHours=1)
    clock.advance(hours=2)

    resp = login(app, "admin").post("/admin/sweep")
    assert resp.status_code == 200
    assert resp.json() == {"resolved": [decision["id"]]}


def test_health(app):
    assert TestClient(app).get("/health").json() == {"status": "ok"}

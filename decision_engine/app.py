from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager, suppress
from datetime import date, datetime

import numpy as np
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask
from starlette.middleware.sessions import SessionMiddleware

from .analytics.aggregator import compute_analytics
from .analytics.store import get_events
from .auth.dependencies import SESSION_KEY, require_admin, require_user, require_user_id
from .auth.users import authenticate
from .config import DEFAULT_ENGINE_CONFIG, EngineConfig
from .decisions.errors import DecisionError
from .decisions.lifecycle import DecisionManager
from .decisions.models import (
    AmountSpentRequest,
    CreateDecisionRequest,
    CreateGroupDecisionRequest,
    Decision,
    DecisionKind,
    GroupRandomSelectRequest,
    HistoryFilter,
    HistoryPage,
    LoginRequest,
    ManualDecisionRequest,
    RandomSelectRequest,
    ResetWeightsRequest,
    VoteRequest,
    WeightsResponse,
)
from .notifications.dispatcher import NotificationDispatcher, OutboxDispatcher
from .realtime.hub import SubscriptionHub
from .store.base import DecisionStore
from .store.memory import InMemoryStore
from .store.seed import seed_demo_data

logger = logging.getLogger(__name__)


async def _sweep_forever(manager: DecisionManager, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await manager.resolve_due_decisions()
        except Exception:
            logger.exception("Deadline sweep failed; retrying in %.0fs", interval)


def get_manager(request: Request) -> DecisionManager:
    return request.app.state.manager


def create_app(
    store: DecisionStore | None = None,
    dispatcher: NotificationDispatcher | None = None,
    config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    rng: np.random.Generator | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    """Wire the decision engine into a FastAPI app.

    Without an explicit *store* the app runs on an in-memory store seeded with
    demo data.
    """
    if store is None:
        store = seed_demo_data(InMemoryStore())
    dispatcher = dispatcher or OutboxDispatcher(max_size=config.outbox_size)
    manager = DecisionManager(store, dispatcher, config=config, rng=rng, clock=clock)
    hub = SubscriptionHub(
        manager.snapshot_events,
        snapshot_interval=config.snapshot_interval,
        keepalive_interval=config.keepalive_interval,
        queue_size=config.subscriber_queue_size,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = None
        if config.sweep_interval > 0:
            sweeper = asyncio.create_task(_sweep_forever(manager, config.sweep_interval))
        yield
        if sweeper is not None:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
        await hub.close_all()

    app = FastAPI(title="Restaurant Decision API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(SessionMiddleware, secret_key=config.session_secret)
    app.state.manager = manager
    app.state.hub = hub
    app.state.store = store
    app.state.dispatcher = dispatcher

    @app.exception_handler(DecisionError)
    async def decision_error_handler(request: Request, exc: DecisionError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # ── Public endpoints ─────────────────────────────────────────────────

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # ── Auth endpoints ───────────────────────────────────────────────────

    @app.post("/auth/login")
    def login(body: LoginRequest, request: Request) -> dict:
        user = authenticate(body.username, body.password)
        if not user:
            raise HTTPException(status_code=401, detail="Invalid credentials")
        request.session[SESSION_KEY] = user
        return {"status": "ok", "user": user}

    @app.post("/auth/logout")
    def logout(request: Request) -> dict:
        request.session.clear()
        return {"status": "logged_out"}

    @app.get("/auth/me")
    def auth_me(user: dict = Depends(require_user)) -> dict:
        return user

    # ── Personal decisions ───────────────────────────────────────────────

    @app.post("/decisions", response_model=Decision)
    async def create_decision(
        body: CreateDecisionRequest,
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> Decision:
        return await manager.create_personal_decision(
            body.collection_id,
            user_id,
            body.visit_date,
            method=body.method,
            deadline_hours=body.deadline_hours,
        )

    @app.post("/decisions/random-select", response_model=Decision)
    async def random_select(
        body: RandomSelectRequest,
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> Decision:
        return await manager.random_select(body.collection_id, user_id, body.visit_date)

    @app.post("/decisions/manual", response_model=Decision)
    async def manual_decision(
        body: ManualDecisionRequest,
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> Decision:
        return await manager.record_manual_decision(
            body.collection_id,
            body.restaurant_id,
            user_id,
            body.visit_date,
            kind=body.kind,
            group_id=body.group_id,
            notes=body.notes,
        )

    # ── Group decisions ──────────────────────────────────────────────────

    @app.post("/decisions/group", response_model=Decision)
    async def create_group_decision(
        body: CreateGroupDecisionRequest,
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> Decision:
        return await manager.create_group_decision(
            body.collection_id,
            body.group_id,
            body.visit_date,
            method=body.method,
            deadline_hours=body.deadline_hours,
            created_by=user_id,
        )

    @app.get("/decisions/group", response_model=list[Decision])
    async def group_decisions(
        group_id: str = Query(..., alias="groupId", min_length=1),
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> list[Decision]:
        return await manager.list_group_decisions(group_id)

    @app.post("/decisions/group/vote", response_model=Decision)
    async def vote(
        body: VoteRequest,
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> Decision:
        return await manager.submit_ballot(body.decision_id, user_id, body.rankings)

    @app.post("/decisions/group/random-select", response_model=Decision)
    async def group_random_select(
        body: GroupRandomSelectRequest,
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> Decision:
        return await manager.group_random_select(
            body.collection_id, body.group_id, body.visit_date, created_by=user_id,
        )

    @app.get("/decisions/group/subscribe")
    async def subscribe(
        request: Request,
        group_id: str | None = Query(None, alias="groupId"),
        decision_id: str | None = Query(None, alias="decisionId"),
        user_id: str = Depends(require_user_id),
    ) -> StreamingResponse:
        if not group_id and not decision_id:
            raise HTTPException(status_code=400, detail="Group ID or Decision ID is required")

        subscription = await hub.subscribe(group_id=group_id, decision_id=decision_id)

        async def event_stream():
            try:
                while not await request.is_disconnected():
                    event = await subscription.next_event(timeout=1.0)
                    if event is not None:
                        yield f"data: {json.dumps(event)}\n\n"
            finally:
                subscription.close()

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            background=BackgroundTask(subscription.close),
        )

    # ── History ──────────────────────────────────────────────────────────

    @app.get("/decisions/history", response_model=HistoryPage)
    async def history(
        kind: str = Query("all", alias="type", pattern="^(personal|group|all)$"),
        collection_id: str | None = Query(None, alias="collectionId"),
        group_id: str | None = Query(None, alias="groupId"),
        restaurant_id: str | None = Query(None, alias="restaurantId"),
        start_date: date | None = Query(None, alias="startDate"),
        end_date: date | None = Query(None, alias="endDate"),
        limit: int = Query(config.history_limit, ge=1, le=config.history_max_limit),
        offset: int = Query(0, ge=0),
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> HistoryPage:
        query = HistoryFilter(
            kind=None if kind == "all" else DecisionKind(kind),
            collection_id=collection_id,
            group_id=group_id,
            restaurant_id=restaurant_id,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
        return await manager.list_history(user_id, query)

    @app.patch("/decisions/history/{decision_id}", response_model=Decision)
    async def update_amount_spent(
        decision_id: str,
        body: AmountSpentRequest,
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> Decision:
        return await manager.update_amount_spent(decision_id, user_id, body.amount_spent)

    @app.delete("/decisions/history/{decision_id}")
    async def delete_decision(
        decision_id: str,
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> dict:
        await manager.delete_decision(decision_id, user_id)
        return {"status": "deleted"}

    # ── Weights ──────────────────────────────────────────────────────────

    @app.get("/decisions/weights", response_model=WeightsResponse)
    async def weights(
        collection_id: str = Query(..., alias="collectionId", min_length=1),
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> WeightsResponse:
        return await manager.get_weights(collection_id, user_id)

    @app.post("/decisions/weights/reset")
    async def reset_weights(
        body: ResetWeightsRequest,
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> dict:
        deleted = await manager.reset_weights(
            body.collection_id, user_id, restaurant_id=body.restaurant_id,
        )
        return {
            "status": "reset",
            "message": (
                "Restaurant weight reset successfully"
                if body.restaurant_id else "All weights reset successfully"
            ),
            "deletedDecisions": deleted,
        }

    # ── Single decision ──────────────────────────────────────────────────

    @app.get("/decisions/{decision_id}", response_model=Decision)
    async def get_decision(
        decision_id: str,
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> Decision:
        return await manager.get_decision(decision_id)

    @app.post("/decisions/{decision_id}/resolve", response_model=Decision)
    async def decide_now(
        decision_id: str,
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> Decision:
        return await manager.decide_now(decision_id, user_id)

    @app.post("/decisions/{decision_id}/close", response_model=Decision)
    async def close_decision(
        decision_id: str,
        user_id: str = Depends(require_user_id),
        manager: DecisionManager = Depends(get_manager),
    ) -> Decision:
        return await manager.close_decision(decision_id, user_id)

    # ── Admin endpoints ──────────────────────────────────────────────────

    @app.get("/analytics")
    def analytics(user: dict = Depends(require_admin)) -> dict:
        return compute_analytics(get_events())

    @app.post("/admin/sweep")
    async def sweep(
        user: dict = Depends(require_admin),
        manager: DecisionManager = Depends(get_manager),
    ) -> dict:
        resolved = await manager.resolve_due_decisions()
        return {"resolved": [d.id for d in resolved]}

    return app


app = create_app()

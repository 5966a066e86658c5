from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Protocol

from ..decisions.models import NotificationEvent

logger = logging.getLogger(__name__)

_MAX_OUTBOX = 1000


class NotificationDispatcher(Protocol):
    """Hands decision events to SMS/email/push senders.

    Delivery is asynchronous and best-effort; the engine never rolls back a
    decision because dispatch failed.
    """

    async def dispatch(
        self,
        decision_id: str,
        event: NotificationEvent,
        participants: list[str],
    ) -> None: ...


class OutboxDispatcher:
    """Records notification requests for downstream senders to drain.

    The outbox keeps the newest *max_size* requests; older ones fall off.
    """

    def __init__(self, max_size: int = _MAX_OUTBOX) -> None:
        self._outbox: deque[dict[str, Any]] = deque(maxlen=max_size)

    async def dispatch(
        self,
        decision_id: str,
        event: NotificationEvent,
        participants: list[str],
    ) -> None:
        if len(self._outbox) == self._outbox.maxlen:
            logger.warning(
                "Notification outbox full, dropping oldest entry for decision %s",
                self._outbox[0]["decision_id"],
            )
        self._outbox.append({
            "decision_id": decision_id,
            "event": event.value,
            "participants": list(participants),
            "timestamp": time.time(),
        })
        logger.info(
            "Queued %s notification for decision %s (%d recipients)",
            event.value, decision_id, len(participants),
        )

    def get_outbox(self) -> list[dict[str, Any]]:
        return list(self._outbox)

    def clear_outbox(self) -> None:
        self._outbox.clear()

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent / ".env")


@dataclass(frozen=True)
class EngineConfig:
    recovery_days: int = int(os.getenv("DECISION_RECOVERY_DAYS", "30"))
    default_deadline_hours: int = 24
    min_deadline_hours: int = 1
    max_deadline_hours: int = 336  # two weeks
    snapshot_interval: float = float(os.getenv("DECISION_SNAPSHOT_INTERVAL", "5"))
    keepalive_interval: float = float(os.getenv("DECISION_KEEPALIVE_INTERVAL", "30"))
    subscriber_queue_size: int = 32
    outbox_size: int = int(os.getenv("DECISION_OUTBOX_SIZE", "1000"))
    store_timeout: float = float(os.getenv("DECISION_STORE_TIMEOUT", "5"))
    notify_timeout: float = 10.0
    sweep_interval: float = float(os.getenv("DECISION_SWEEP_INTERVAL", "60"))
    history_limit: int = 100
    history_max_limit: int = 500
    session_secret: str = os.getenv("SESSION_SECRET", "decision-engine-secret-change-in-production")


DEFAULT_ENGINE_CONFIG = EngineConfig()

from __future__ import annotations
"""server/fleet/core/config.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Paramètres (pydantic-settings).
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+psycopg://postgres:postgres@db:5432/fleet"
    DB_CONNECT_TIMEOUT: int = 5
    REDIS_URL: str = "redis://redis:6379/0"
    CELERY_TASK_ALWAYS_EAGER: bool = False

    # Historiques embarqués (soft cap : éviction des plus anciens)
    EVENTS_HISTORY_CAP: int = 500
    # QuickChecks : pas de cap par défaut (les inspections ne sont jamais évincées)
    QUICKCHECK_HISTORY_CAP: Optional[int] = None

    # Pagination des historiques
    HISTORY_DEFAULT_LIMIT: int = 20
    HISTORY_MAX_LIMIT: int = 100

    # Compare-and-set sur machines.version
    CONCURRENCY_MAX_RETRIES: int = 5

    # Type d'évènement réservé aux alarmes déclenchées
    MAINTENANCE_EVENT_TYPE_NAME: str = "maintenance_alarm_triggered"
    MAINTENANCE_EVENT_LANGUAGE: str = "es"

    # Notifications (webhook HTTP ; log-only si absent)
    NOTIFY_WEBHOOK_URL: Optional[str] = None
    NOTIFY_TIMEOUT_SECONDS: float = 5.0

    # Outbox
    OUTBOX_BACKOFFS: str = "30,120,600"
    OUTBOX_JITTER_PCT: float = 0.2
    OUTBOX_MAX_ATTEMPTS: int = 5
    OUTBOX_BATCH_SIZE: int = 100
    # un claim DELIVERING expire après ce délai (worker mort entre claim et livraison)
    OUTBOX_LEASE_SECONDS: int = 300

    # Job quotidien d'accumulation des heures
    OPERATING_HOURS_CRON_HOUR: int = 5

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()

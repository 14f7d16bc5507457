"""
Worker Service — Hands subscription processing off to the subscription worker.

POST /subscriptions/{id}/process answers 202 right away and schedules
dispatch_processing() as a FastAPI background task. The worker is called
at /subscriptions/process-subscription/{id}; older deployments only
expose /process-subscription/{id}, which is tried second. The outcome is
recorded on the subscription_processing row.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from app.core.config import SUBSCRIPTION_WORKER_URL
from app.db.supabase_client import get_service_client

logger = logging.getLogger(__name__)

WORKER_TIMEOUT_SECONDS = 10.0
NEXT_RUN_DELAY = timedelta(hours=24)


def worker_urls(subscription_id: str) -> list[str]:
    base = SUBSCRIPTION_WORKER_URL.rstrip("/")
    return [
        f"{base}/subscriptions/process-subscription/{subscription_id}",
        f"{base}/process-subscription/{subscription_id}",
    ]


def next_run_at(frequency: str | None, now: datetime | None = None) -> datetime:
    """Immediate subscriptions are due now, everything else in 24 hours."""
    now = now or datetime.now(timezone.utc)
    return now if frequency == "immediate" else now + NEXT_RUN_DELAY


def create_processing_record(
    subscription_id: str,
    client=None,
    frequency: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Insert a pending subscription_processing row and return it."""
    client = client or get_service_client()
    row = {
        "subscription_id": subscription_id,
        "status": "pending",
        "next_run_at": next_run_at(frequency, now).isoformat(),
    }
    result = client.table("subscription_processing").insert(row).execute()
    return result.data[0]


def _record_status(processing_id: str, status_value: str, error: str | None = None) -> None:
    update: dict[str, Any] = {"status": status_value, "error": error}
    if status_value == "processing":
        update["last_run_at"] = datetime.now(timezone.utc).isoformat()
    try:
        get_service_client().table("subscription_processing").update(update).eq(
            "id", processing_id
        ).execute()
    except Exception as exc:
        logger.error("Could not record status %s for %s: %s", status_value, processing_id, exc)


async def dispatch_processing(
    subscription: dict[str, Any],
    user_id: str,
    processing_id: str,
) -> bool:
    """
    Ask the subscription worker to process one subscription.

    Returns:
        True if either worker endpoint accepted the request.
    """
    subscription_id = subscription["id"]
    payload = {
        "user_id": user_id,
        "subscription_id": subscription_id,
        "metadata": subscription.get("metadata") or {},
        "prompts": subscription.get("prompts") or [],
    }

    errors = []
    async with httpx.AsyncClient(timeout=WORKER_TIMEOUT_SECONDS) as client:
        for url in worker_urls(subscription_id):
            try:
                response = await client.post(url, json=payload)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                logger.warning("Worker call %s failed: %s", url, exc)
                errors.append(f"{url}: {exc}")
                continue

            logger.info(
                "Subscription %s dispatched to worker (status %d)",
                subscription_id,
                response.status_code,
            )
            _record_status(processing_id, "processing")
            return True

    logger.error("Subscription %s could not be dispatched to the worker", subscription_id)
    _record_status(processing_id, "failed", "; ".join(errors))
    return False

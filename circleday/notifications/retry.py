"""
Retry/failure tracking for scheduled sends.

FAILED rows under the retry cap are reset to PENDING so the next dispatch
picks them up again. Rows at the cap stay FAILED and are reported.
"""

import logging
import random

import sentry_sdk

from ..config import get_max_send_retries
from ..database import get_connection, get_transaction
from ..queries import scheduled_sends as send_queries

logger = logging.getLogger(__name__)


def get_retry_delay(
    attempt: int,
    include_jitter: bool = True,
    max_delay: float = 60.0,
) -> float:
    """
    Calculate retry delay using exponential backoff with cap.

    Args:
        attempt: Zero-based attempt number (0 = first retry)
        include_jitter: Add random jitter to prevent thundering herd
        max_delay: Upper bound for the base delay, in seconds

    Returns:
        Delay in seconds (1, 2, 4, 8, ... capped at max_delay)
    """
    base_delay = min(2**attempt, max_delay)
    if include_jitter:
        jitter = random.uniform(0, min(base_delay * 0.1, 60))
        return base_delay + jitter
    return float(base_delay)


async def get_failed_sends_to_retry(
    max_retries: int | None = None,
    limit: int = 100,
) -> list[dict]:
    """FAILED scheduled sends with retry_count below the cap."""
    if max_retries is None:
        max_retries = get_max_send_retries()
    async with get_connection() as conn:
        return await send_queries.get_failed_sends_to_retry(
            conn, max_retries=max_retries, limit=limit
        )


async def requeue_failed_sends(
    max_retries: int | None = None,
    limit: int = 100,
) -> dict:
    """
    Reset retryable FAILED sends to PENDING and report exhausted ones.

    Returns:
        Dict with "requeued" (count), "requeued_ids" and "exhausted"
        (rows at or over the cap)
    """
    if max_retries is None:
        max_retries = get_max_send_retries()

    async with get_transaction() as conn:
        candidates = await send_queries.get_failed_sends_to_retry(
            conn, max_retries=max_retries, limit=limit
        )
        requeued_ids = await send_queries.requeue_failed_sends(
            conn,
            [row["scheduled_send_id"] for row in candidates],
            max_retries=max_retries,
        )
        exhausted = await send_queries.get_exhausted_failed_sends(
            conn, max_retries=max_retries, limit=limit
        )

    if requeued_ids:
        logger.info(f"Requeued {len(requeued_ids)} failed reminder sends")

    if exhausted:
        keys = ", ".join(row["idempotency_key"] for row in exhausted[:10])
        logger.error(
            f"{len(exhausted)} reminder sends exhausted {max_retries} retries: {keys}"
        )
        sentry_sdk.capture_message(
            f"{len(exhausted)} reminder sends permanently failed after {max_retries} retries",
            level="error",
        )

    return {
        "requeued": len(requeued_ids),
        "requeued_ids": requeued_ids,
        "exhausted": exhausted,
    }

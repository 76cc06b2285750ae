"""
Delivery engine: runs ReminderDelivery instances as asyncio tasks.

Each instance is checkpointed to a store (the delivery_instances table in
production) so ``recover()`` can restart unfinished instances after a
process restart. Signals are applied under a per-instance lock and
persisted before the call returns.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import sentry_sdk

from ..config import (
    get_channel_max_attempts,
    get_channel_timeout_seconds,
    get_check_interval_seconds,
    get_worker_threads,
)
from ..database import get_connection, get_transaction, is_configured
from ..enums import DeliveryState
from ..queries import deliveries as delivery_queries
from .activities import ChannelWorkerPool, DeliveryActivities
from .channels import build_channel_senders
from .delivery import (
    VALIDATION_FAILED_PREFIX,
    ReminderDelivery,
    ReminderInput,
    WorkflowStatus,
    utc_now,
)
from .errors import DeliveryNotFoundError, ReminderValidationError

logger = logging.getLogger(__name__)

SIGNALS = ("pause", "resume", "cancel")


class DatabaseDeliveryStore:
    """Delivery checkpoints in the delivery_instances table."""

    async def create(
        self,
        instance_id: str,
        scheduled_send_id: int | None,
        payload: dict[str, Any],
        due_at: datetime,
    ) -> bool:
        async with get_transaction() as conn:
            return await delivery_queries.create_delivery_instance(
                conn,
                instance_id=instance_id,
                scheduled_send_id=scheduled_send_id,
                payload=payload,
                due_at=due_at,
            )

    async def get(self, instance_id: str) -> dict[str, Any] | None:
        async with get_connection() as conn:
            return await delivery_queries.get_delivery_instance(conn, instance_id)

    async def unfinished(self) -> list[dict[str, Any]]:
        async with get_connection() as conn:
            return await delivery_queries.get_unfinished_delivery_instances(conn)

    async def checkpoint(self, instance_id: str, **fields) -> None:
        async with get_transaction() as conn:
            await delivery_queries.save_delivery_checkpoint(conn, instance_id, **fields)


class InMemoryDeliveryStore:
    """Process-local store for development without a database."""

    def __init__(self):
        self.records: dict[str, dict[str, Any]] = {}

    async def create(self, instance_id, scheduled_send_id, payload, due_at) -> bool:
        if instance_id in self.records:
            return False
        self.records[instance_id] = {
            "instance_id": instance_id,
            "scheduled_send_id": scheduled_send_id,
            "state": DeliveryState.WAITING,
            "payload": payload,
            "due_at": due_at,
            "remaining_wait_s": None,
            "paused_at": None,
            "canceled_at": None,
            "reminders_sent": 0,
            "result": None,
            "completed_at": None,
        }
        return True

    async def get(self, instance_id):
        record = self.records.get(instance_id)
        return dict(record) if record else None

    async def unfinished(self):
        return [
            dict(r)
            for r in self.records.values()
            if not DeliveryState(r["state"]).is_terminal
        ]

    async def checkpoint(self, instance_id, **fields) -> None:
        if instance_id in self.records:
            self.records[instance_id].update(fields)


def _status_from_record(record: dict[str, Any]) -> WorkflowStatus:
    state = DeliveryState(record["state"])
    waiting = not state.is_terminal and state != DeliveryState.SENDING
    return WorkflowStatus(
        is_paused=record.get("paused_at") is not None,
        is_canceled=record.get("canceled_at") is not None,
        reminders_sent=record.get("reminders_sent") or 0,
        next_reminder_at=record.get("due_at") if waiting else None,
        event_name=record["payload"].get("event_name", ""),
        state=state,
        result=record.get("result"),
    )


class DeliveryHandle:
    """Control surface for one delivery instance."""

    def __init__(self, engine: "DeliveryEngine", instance_id: str):
        self.engine = engine
        self.instance_id = instance_id

    async def pause(self) -> None:
        await self.engine.signal(self.instance_id, "pause")

    async def resume(self) -> None:
        await self.engine.signal(self.instance_id, "resume")

    async def cancel(self) -> None:
        await self.engine.signal(self.instance_id, "cancel")

    async def status(self) -> WorkflowStatus:
        return await self.engine.describe(self.instance_id)

    async def result(self) -> str:
        return await self.engine.result(self.instance_id)


class DeliveryEngine:
    """
    Supervises delivery instances in the current event loop.

    Args:
        store: Checkpoint store (DatabaseDeliveryStore or InMemoryDeliveryStore)
        activities: DeliveryActivities used by every instance
        check_interval: Longest single sleep inside an instance, in seconds
        sleep/clock: Injectable for tests
    """

    def __init__(
        self,
        store,
        activities: DeliveryActivities,
        check_interval: float = 60.0,
        sleep=asyncio.sleep,
        clock=utc_now,
    ):
        self.store = store
        self.activities = activities
        self.check_interval = check_interval
        self._sleep = sleep
        self._clock = clock
        self._instances: dict[str, ReminderDelivery] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _instance_lock(self, instance_id: str):
        """
        Per-instance lock, kept only while someone holds or waits for it
        or the instance is running.
        """
        lock = self._locks.setdefault(instance_id, asyncio.Lock())
        self._lock_users[instance_id] = self._lock_users.get(instance_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[instance_id] -= 1
            self._discard_lock(instance_id)

    def _discard_lock(self, instance_id: str) -> None:
        if self._lock_users.get(instance_id) or instance_id in self._tasks:
            return
        self._lock_users.pop(instance_id, None)
        self._locks.pop(instance_id, None)

    def _build(self, instance_id: str, reminder: ReminderInput) -> ReminderDelivery:
        return ReminderDelivery(
            instance_id=instance_id,
            reminder=reminder,
            activities=self.activities,
            check_interval=self.check_interval,
            sleep=self._sleep,
            clock=self._clock,
            checkpoint=self.store.checkpoint,
        )

    def _restore(self, record: dict[str, Any]) -> ReminderDelivery:
        return ReminderDelivery.from_record(
            record,
            self.activities,
            check_interval=self.check_interval,
            sleep=self._sleep,
            clock=self._clock,
            checkpoint=self.store.checkpoint,
        )

    def _launch(self, delivery: ReminderDelivery) -> None:
        instance_id = delivery.instance_id
        self._instances[instance_id] = delivery
        task = asyncio.create_task(delivery.run(), name=f"delivery-{instance_id}")
        self._tasks[instance_id] = task
        task.add_done_callback(lambda t: self._on_done(instance_id, t))

    def _on_done(self, instance_id: str, task: asyncio.Task) -> None:
        # Finished instances are served from the store from here on
        if self._tasks.get(instance_id) is task:
            self._tasks.pop(instance_id, None)
            self._instances.pop(instance_id, None)
            self._discard_lock(instance_id)
        if task.cancelled():
            return
        error = task.exception()
        if error is None or isinstance(error, ReminderValidationError):
            return
        logger.error(f"Delivery {instance_id} crashed: {error}")
        sentry_sdk.capture_exception(error)

    def is_running(self, instance_id: str) -> bool:
        task = self._tasks.get(instance_id)
        return task is not None and not task.done()

    async def start(
        self,
        instance_id: str,
        reminder: ReminderInput,
        scheduled_send_id: int | None = None,
    ) -> DeliveryHandle:
        """
        Start an instance, or attach to an existing one with the same id.

        Starting an id that is running or already finished is a no-op.
        """
        handle = DeliveryHandle(self, instance_id)
        async with self._instance_lock(instance_id):
            if instance_id in self._tasks:
                return handle

            created = await self.store.create(
                instance_id,
                scheduled_send_id if scheduled_send_id is not None else reminder.scheduled_send_id,
                reminder.to_payload(),
                reminder.due_at,
            )
            if created:
                self._launch(self._build(instance_id, reminder))
                logger.info(f"Started delivery {instance_id} due {reminder.due_at}")
                return handle

            record = await self.store.get(instance_id)
            if record and not DeliveryState(record["state"]).is_terminal:
                self._launch(self._restore(record))
                logger.info(f"Re-attached to delivery {instance_id}")
        return handle

    def get_handle(self, instance_id: str) -> DeliveryHandle:
        return DeliveryHandle(self, instance_id)

    async def signal(self, instance_id: str, name: str) -> None:
        """
        Deliver pause/resume/cancel to an instance and persist it.

        Signals to finished instances are ignored.

        Raises:
            DeliveryNotFoundError: unknown instance id
            ValueError: unknown signal name
        """
        if name not in SIGNALS:
            raise ValueError(f"Unknown signal: {name}")

        async with self._instance_lock(instance_id):
            delivery = self._instances.get(instance_id)
            if delivery is None:
                record = await self.store.get(instance_id)
                if record is None:
                    raise DeliveryNotFoundError(instance_id)
                # Not running here: apply to a detached copy and persist
                delivery = self._restore(record)

            fields = delivery.apply_signal(name)
            if fields:
                await self.store.checkpoint(instance_id, **fields)
                logger.info(f"Delivery {instance_id} received {name}")

    async def describe(self, instance_id: str) -> WorkflowStatus:
        delivery = self._instances.get(instance_id)
        if delivery is not None:
            return delivery.status()
        record = await self.store.get(instance_id)
        if record is None:
            raise DeliveryNotFoundError(instance_id)
        return _status_from_record(record)

    async def result(self, instance_id: str) -> str:
        """
        Wait for an instance to finish and return its result.

        Raises:
            ReminderValidationError: the instance failed validation
            DeliveryNotFoundError: unknown instance id
        """
        async with self._instance_lock(instance_id):
            task = self._tasks.get(instance_id)
            if task is None:
                record = await self.store.get(instance_id)
                if record is None:
                    raise DeliveryNotFoundError(instance_id)
                if not DeliveryState(record["state"]).is_terminal:
                    self._launch(self._restore(record))
                    task = self._tasks[instance_id]
        if task is not None:
            return await asyncio.shield(task)

        result = record.get("result") or ""
        if result.startswith(VALIDATION_FAILED_PREFIX):
            raise ReminderValidationError(result.split(": ", 1)[-1])
        return result

    async def recover(self) -> int:
        """Restart every unfinished instance from its checkpoint."""
        recovered = 0
        for record in await self.store.unfinished():
            instance_id = record["instance_id"]
            async with self._instance_lock(instance_id):
                if instance_id in self._tasks:
                    continue
                try:
                    self._launch(self._restore(record))
                    recovered += 1
                except (KeyError, ValueError) as e:
                    logger.error(f"Cannot recover delivery {instance_id}: {e}")
                    sentry_sdk.capture_exception(e)
        if recovered:
            logger.info(f"Recovered {recovered} unfinished deliveries")
        return recovered

    async def shutdown(self) -> None:
        """
        Stop all running instances without finishing them.

        Their checkpoints stay non-terminal, so the next recover() resumes them.
        """
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._instances.clear()
        self._locks.clear()
        self._lock_users.clear()
        self.activities.pool.shutdown(wait=False)


# =============================================================================
# Module-level engine
# =============================================================================

_engine: DeliveryEngine | None = None


def build_default_engine() -> DeliveryEngine:
    """Engine wired from environment configuration."""
    from .dispatcher import record_delivery_outcome

    pool = ChannelWorkerPool(
        max_workers=get_worker_threads(),
        timeout=get_channel_timeout_seconds(),
    )
    database_ready = is_configured()
    activities = DeliveryActivities(
        senders=build_channel_senders(),
        pool=pool,
        max_attempts=get_channel_max_attempts(),
        outcome_recorder=record_delivery_outcome if database_ready else None,
    )
    if database_ready:
        store = DatabaseDeliveryStore()
    else:
        logger.warning("DATABASE_URL not set, delivery instances will not persist")
        store = InMemoryDeliveryStore()
    return DeliveryEngine(store, activities, check_interval=get_check_interval_seconds())


def init_delivery_engine(engine: DeliveryEngine | None = None) -> DeliveryEngine:
    global _engine
    if _engine is None:
        _engine = engine or build_default_engine()
    return _engine


def get_delivery_engine() -> DeliveryEngine | None:
    return _engine


async def shutdown_delivery_engine() -> None:
    global _engine
    if _engine is not None:
        await _engine.shutdown()
        _engine = None

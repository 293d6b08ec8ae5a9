"""
Delivery Dispatcher.

Fans a persisted notification out to its channels and drives each
(notification, channel) attempt through

    pending -> sent -> delivered
                    -> failed -> (after backoff) sent -> ...
                    -> bounced

Jobs live in an explicit time-ordered queue. Channels are independent: one
channel failing never blocks another. Attempt records are loaded, mutated
and saved under a per-notification lock; the lock is released while the
sender runs.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import weakref
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ...core.formatters import get_utc_now
from ...core.logging import get_logger
from .models import DeliveryAttempt
from .types import Channel, DeliveryState
from .webhook_client import SendResult

if TYPE_CHECKING:
    from .channels import ChannelRegistry
    from .models import Notification
    from .store import NotificationRepository

logger = get_logger(__name__)

DEFAULT_RETRY_DELAY = timedelta(seconds=300)
DEFAULT_MAX_RETRIES = 5


# =============================================================================
# Delivery Queue
# =============================================================================


@dataclass(order=True)
class DeliveryJob:
    """One scheduled send of a notification on a channel."""

    due_at: datetime
    seq: int
    notification_id: str = field(compare=False)
    channel: Channel = field(compare=False)

    @property
    def key(self) -> tuple[str, Channel]:
        return (self.notification_id, self.channel)


class DeliveryQueue:
    """
    Time-ordered queue of delivery jobs.

    At most one job is queued per (notification, channel). Jobs can be
    cancelled per notification until they are popped.
    """

    def __init__(self) -> None:
        self._heap: list[DeliveryJob] = []
        self._keys: set[tuple[str, Channel]] = set()
        self._seq = itertools.count()

    def push(self, notification_id: str, channel: Channel, due_at: datetime) -> bool:
        """
        Schedule a job.

        Returns:
            True if queued, False if a job for that pair is already queued
        """
        key = (notification_id, channel)
        if key in self._keys:
            return False
        heapq.heappush(self._heap, DeliveryJob(due_at, next(self._seq), notification_id, channel))
        self._keys.add(key)
        return True

    def pop_due(self, now: datetime) -> list[DeliveryJob]:
        """Remove and return every job due at or before ``now``, earliest first."""
        due = []
        while self._heap and self._heap[0].due_at <= now:
            job = heapq.heappop(self._heap)
            self._keys.discard(job.key)
            due.append(job)
        return due

    def cancel(self, notification_id: str) -> int:
        """
        Drop queued jobs for a notification.

        Returns:
            Number of jobs removed
        """
        kept = [job for job in self._heap if job.notification_id != notification_id]
        removed = len(self._heap) - len(kept)
        if removed:
            heapq.heapify(kept)
            self._heap = kept
            self._keys = {job.key for job in kept}
        return removed

    def is_queued(self, notification_id: str, channel: Channel) -> bool:
        return (notification_id, channel) in self._keys

    @property
    def next_due(self) -> datetime | None:
        return self._heap[0].due_at if self._heap else None

    @property
    def depth(self) -> int:
        return len(self._heap)

    def __len__(self) -> int:
        return len(self._heap)


@dataclass
class DeliveryHealth:
    """Health status of the delivery pipeline."""

    is_healthy: bool
    is_running: bool
    queue_depth: int
    in_flight: int
    next_due: datetime | None
    delivered_1h: int
    failed_1h: int
    bounced_1h: int
    channels: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_healthy": self.is_healthy,
            "is_running": self.is_running,
            "queue_depth": self.queue_depth,
            "in_flight": self.in_flight,
            "next_due": self.next_due.isoformat() if self.next_due else None,
            "delivered_1h": self.delivered_1h,
            "failed_1h": self.failed_1h,
            "bounced_1h": self.bounced_1h,
            "channels": self.channels,
        }


# =============================================================================
# Dispatcher
# =============================================================================


class DeliveryDispatcher:
    """
    Owns delivery attempt mutation for every notification.

    Args:
        store: Notification repository the attempts are persisted in
        registry: Channel senders
        clock: Source of the current time
        retry_delay: Fixed backoff between a failure and the next send
        max_retries: Retries allowed after the first failure; once exhausted
            the attempt stays failed with no next_retry
        poll_interval: Seconds between sweeps of the background loop
        on_sweep: Called with the sweep time on every process_due pass, for
            housekeeping that should run alongside delivery
    """

    def __init__(
        self,
        store: NotificationRepository,
        registry: ChannelRegistry,
        clock: Callable[[], datetime] = get_utc_now,
        retry_delay: timedelta = DEFAULT_RETRY_DELAY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        poll_interval: float = 1.0,
        on_sweep: Callable[[datetime], None] | None = None,
    ):
        self.store = store
        self.registry = registry
        self.clock = clock
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self.poll_interval = poll_interval
        self.on_sweep = on_sweep

        self.queue = DeliveryQueue()
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._in_flight = 0
        self._outcomes: list[tuple[DeliveryState, datetime]] = []

        self._process_task: asyncio.Task | None = None
        self._running = False

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def prepare(self, notification: Notification, now: datetime) -> None:
        """Create a pending attempt for every channel of a not-yet-persisted notification."""
        for channel in notification.channels:
            if notification.attempt_for(channel) is None:
                attempt = DeliveryAttempt(channel=channel)
                attempt.transition(DeliveryState.PENDING, now)
                notification.delivery.append(attempt)

    def schedule(self, notification: Notification) -> int:
        """
        Queue every open attempt of a persisted notification.

        Pending attempts are due immediately; failed attempts at their
        next_retry.

        Returns:
            Number of jobs queued
        """
        queued = 0
        for attempt in notification.delivery:
            if attempt.is_terminal:
                continue
            due_at = attempt.next_retry or attempt.timestamp or self.clock()
            if self.queue.push(notification.id, attempt.channel, due_at):
                queued += 1
        if queued:
            logger.debug("Queued %d delivery job(s) for %s", queued, notification.id)
        return queued

    async def cancel(self, notification_id: str) -> int:
        """
        Cancel queued deliveries for a notification.

        Queued attempts end failed with no retry. A send already running is
        not interrupted, but if it fails the attempt is not retried.

        Returns:
            Number of attempts cancelled
        """
        async with self.lock_for(notification_id):
            self.queue.cancel(notification_id)
            notification = await self.store.get_notification(notification_id)
            if notification is None:
                return 0

            now = self.clock()
            cancelled = 0
            for attempt in notification.delivery:
                if attempt.is_terminal or attempt.cancelled:
                    continue
                attempt.cancelled = True
                cancelled += 1
                if attempt.status == DeliveryState.SENT:
                    continue
                attempt.next_retry = None
                attempt.transition(DeliveryState.FAILED, now, "Cancelled")

            if cancelled:
                await self.store.update_notification(notification)
                logger.info("Cancelled %d delivery attempt(s) for %s", cancelled, notification_id)
            return cancelled

    async def recover(self) -> int:
        """
        Rebuild the queue from open attempts in the store.

        An attempt left in ``sent`` was interrupted mid-send; it is treated
        as due now.

        Returns:
            Number of jobs queued
        """
        queued = 0
        for notification in await self.store.list_open_deliveries():
            queued += self.schedule(notification)
        if queued:
            logger.info("Recovered %d delivery job(s) from store", queued)
        return queued

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def process_due(self, now: datetime | None = None) -> int:
        """
        Run every job due at ``now`` concurrently.

        Returns:
            Number of jobs processed
        """
        now = now or self.clock()
        if self.on_sweep is not None:
            self.on_sweep(now)

        jobs = self.queue.pop_due(now)
        if not jobs:
            return 0

        await asyncio.gather(*(self._run_job(job, now) for job in jobs))
        self._cleanup_metrics(now)
        return len(jobs)

    def lock_for(self, notification_id: str) -> asyncio.Lock:
        """Lock serialising load, mutate and save of one notification."""
        lock = self._locks.get(notification_id)
        if lock is None:
            lock = self._locks[notification_id] = asyncio.Lock()
        return lock

    async def _run_job(self, job: DeliveryJob, now: datetime) -> None:
        lock = self.lock_for(job.notification_id)

        async with lock:
            notification = await self.store.get_notification(job.notification_id)
            if notification is None:
                logger.warning("Dropping delivery job for missing notification %s", job.notification_id)
                return
            attempt = notification.attempt_for(job.channel)
            if attempt is None or attempt.is_terminal:
                return

            if attempt.cancelled:
                attempt.next_retry = None
                attempt.transition(DeliveryState.FAILED, now, "Cancelled")
                await self.store.update_notification(notification)
                return

            if notification.is_expired(now):
                attempt.next_retry = None
                attempt.transition(DeliveryState.FAILED, now, "Notification expired")
                self._record_outcome(DeliveryState.FAILED, now)
                await self.store.update_notification(notification)
                return

            sender = self.registry.get(job.channel)
            if sender is None:
                attempt.next_retry = None
                attempt.transition(
                    DeliveryState.BOUNCED, now, f"No sender registered for {job.channel.value}"
                )
                self._record_outcome(DeliveryState.BOUNCED, now)
                await self.store.update_notification(notification)
                return

            attempt.next_retry = None
            attempt.transition(DeliveryState.SENT, now)
            await self.store.update_notification(notification)

        self._in_flight += 1
        try:
            result = await sender.send(notification)
        except Exception as e:
            logger.warning(
                "Sender for %s raised on %s: %s", job.channel.value, job.notification_id, e
            )
            result = SendResult(success=False, error=f"{type(e).__name__}: {e}")
        finally:
            self._in_flight -= 1

        async with lock:
            notification = await self.store.get_notification(job.notification_id)
            if notification is None:
                return
            attempt = notification.attempt_for(job.channel)
            if attempt is None:
                return
            self._apply_result(notification, attempt, result, now)
            await self.store.update_notification(notification)

    def _apply_result(
        self,
        notification: Notification,
        attempt: DeliveryAttempt,
        result: SendResult,
        now: datetime,
    ) -> None:
        channel = attempt.channel.value

        if result.success:
            attempt.error = None
            attempt.transition(DeliveryState.DELIVERED, now)
            self._record_outcome(DeliveryState.DELIVERED, now)
            logger.debug("Delivered %s via %s", notification.id, channel)
            return

        error = result.error or "Delivery failed"

        if result.permanent:
            attempt.transition(DeliveryState.BOUNCED, now, error)
            self._record_outcome(DeliveryState.BOUNCED, now)
            logger.warning("Delivery of %s via %s bounced: %s", notification.id, channel, error)
            return

        if attempt.cancelled:
            attempt.next_retry = None
            attempt.transition(DeliveryState.FAILED, now, error)
            self._record_outcome(DeliveryState.FAILED, now)
            logger.info(
                "Delivery of %s via %s failed after cancellation, not retrying: %s",
                notification.id,
                channel,
                error,
            )
            return

        attempt.retry_count += 1
        if attempt.retry_count <= self.max_retries:
            delay = self.retry_delay
            if result.retry_after is not None:
                delay = max(delay, timedelta(seconds=result.retry_after))
            attempt.next_retry = now + delay
            attempt.transition(DeliveryState.FAILED, now, error)
            self.queue.push(notification.id, attempt.channel, attempt.next_retry)
            logger.info(
                "Delivery of %s via %s failed (retry %d/%d at %s): %s",
                notification.id,
                channel,
                attempt.retry_count,
                self.max_retries,
                attempt.next_retry.isoformat(),
                error,
            )
        else:
            attempt.next_retry = None
            attempt.transition(DeliveryState.FAILED, now, error)
            logger.warning(
                "Delivery of %s via %s failed permanently after %d retries: %s",
                notification.id,
                channel,
                self.max_retries,
                error,
            )
        self._record_outcome(DeliveryState.FAILED, now)

    async def flush(self) -> int:
        """Process everything due now. Returns number of jobs processed."""
        return await self.process_due(self.clock())

    # -------------------------------------------------------------------------
    # Background Loop
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background delivery loop."""
        if self._running:
            return
        self._running = True
        self._process_task = asyncio.create_task(self._process_loop())
        logger.info("Delivery dispatcher started")

    async def stop(self) -> None:
        """Stop the background loop. Queued jobs stay queued."""
        self._running = False
        if self._process_task:
            self._process_task.cancel()
            try:
                await self._process_task
            except asyncio.CancelledError:
                pass
            self._process_task = None
            logger.info("Delivery dispatcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _process_loop(self) -> None:
        """Background loop draining due jobs."""
        while self._running:
            try:
                processed = await self.process_due()
                if processed:
                    logger.debug("Processed %d delivery job(s)", processed)
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in delivery loop: %s", e)
                await asyncio.sleep(5)  # Back off on error

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    def _record_outcome(self, state: DeliveryState, at: datetime) -> None:
        self._outcomes.append((state, at))

    def _cleanup_metrics(self, now: datetime) -> None:
        cutoff = now - timedelta(hours=1)
        self._outcomes = [(s, at) for s, at in self._outcomes if at >= cutoff]

    def get_health(self) -> DeliveryHealth:
        now = self.clock()
        self._cleanup_metrics(now)

        counts = {state: 0 for state in DeliveryState}
        for state, _ in self._outcomes:
            counts[state] += 1

        channel_metrics = self.registry.get_metrics()
        channels_healthy = all(
            m.get("is_healthy", True) for m in channel_metrics.values() if isinstance(m, dict)
        )

        return DeliveryHealth(
            is_healthy=channels_healthy,
            is_running=self._running,
            queue_depth=self.queue.depth,
            in_flight=self._in_flight,
            next_due=self.queue.next_due,
            delivered_1h=counts[DeliveryState.DELIVERED],
            failed_1h=counts[DeliveryState.FAILED],
            bounced_1h=counts[DeliveryState.BOUNCED],
            channels=channel_metrics,
        )

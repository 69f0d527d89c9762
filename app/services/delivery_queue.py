"""
Delivery Queue - in-memory background delivery of notifications

HTTP requests never wait on SMTP: notifications are enqueued and sent by a
single processing loop running on the event loop, with a fixed retry schedule.

Guarantees:
- At-least-once: a job is only dropped after a successful send or after
  MAX_ATTEMPTS failed attempts (logged as a permanent failure).
- Single consumer: one processing loop per queue instance, guarded by the
  `_processing` flag, which is checked and set synchronously on the loop.
- Not durable: jobs still queued when the process exits are lost. Multi-instance
  deployments need an external broker behind the same enqueue contract.
"""

import asyncio
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional, Sequence

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.exceptions import DeliveryFailure
from app.services.email_templates import render_message
from app.services.mail_transport import MailTransport

logger = structlog.get_logger(__name__)

MAX_ATTEMPTS = 3
RETRY_DELAYS = (1.0, 5.0, 15.0)  # seconds: 1s, 5s, 15s


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def backoff_delay(attempts: int, schedule: Sequence[float] = RETRY_DELAYS) -> float:
    """Delay before the next attempt once `attempts` attempts have failed."""
    if attempts < 1:
        raise ValueError("backoff is only defined after at least one attempt")
    return schedule[min(attempts, len(schedule)) - 1]


class JobState(str, Enum):
    PENDING = "pending"
    DEFERRED = "deferred"
    DELIVERED = "delivered"
    PERMANENTLY_FAILED = "permanently_failed"


_TERMINAL_STATES = {JobState.DELIVERED, JobState.PERMANENTLY_FAILED}


class IllegalJobTransition(RuntimeError):
    """Raised when a job in a terminal state is touched again."""


@dataclass(frozen=True)
class DeliveryPayload:
    """What to send: rendered by template key right before the attempt."""
    recipient: str
    template_key: str
    template_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryJob:
    """
    One notification on its way out.

    State machine:
        PENDING  -> DELIVERED | DEFERRED | PERMANENTLY_FAILED
        DEFERRED -> DELIVERED | DEFERRED | PERMANENTLY_FAILED
    DELIVERED and PERMANENTLY_FAILED are terminal.
    """

    payload: DeliveryPayload
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempts: int = 0
    max_attempts: int = MAX_ATTEMPTS
    created_at: datetime = field(default_factory=_utcnow)
    next_retry_at: Optional[datetime] = None
    state: JobState = JobState.PENDING
    last_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL_STATES

    def is_ready(self, now: datetime) -> bool:
        return self.next_retry_at is None or self.next_retry_at <= now

    def _ensure_active(self) -> None:
        if self.is_terminal:
            raise IllegalJobTransition(f"job {self.id} is already {self.state.value}")

    def begin_attempt(self) -> int:
        self._ensure_active()
        self.attempts += 1
        return self.attempts

    def mark_delivered(self) -> None:
        self._ensure_active()
        self.state = JobState.DELIVERED
        self.next_retry_at = None

    def mark_failed(
        self,
        error: str,
        now: datetime,
        schedule: Sequence[float] = RETRY_DELAYS,
    ) -> JobState:
        """Record a failed attempt; defer for retry or fail permanently."""
        self._ensure_active()
        self.last_error = error
        if self.attempts >= self.max_attempts:
            self.state = JobState.PERMANENTLY_FAILED
            self.next_retry_at = None
        else:
            self.state = JobState.DEFERRED
            self.next_retry_at = now + timedelta(seconds=backoff_delay(self.attempts, schedule))
        return self.state


class DeliveryQueue:
    """
    Ordered, single-consumer job queue with scheduled retries.

    Usage:
        queue = DeliveryQueue(transport)
        await queue.start()
        queue.enqueue(DeliveryPayload(...))
        ...
        remaining = await queue.stop()
    """

    def __init__(
        self,
        transport: MailTransport,
        *,
        name: str = "email",
        retry_delays: Sequence[float] = RETRY_DELAYS,
        tick_seconds: float = 2.0,
        shutdown_grace_seconds: float = 10.0,
        clock: Callable[[], datetime] = _utcnow,
        renderer: Callable[[str, Dict[str, Any]], tuple] = render_message,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        if not retry_delays:
            raise ValueError("retry_delays must not be empty")
        self.name = name
        self._transport = transport
        self._retry_delays = tuple(retry_delays)
        self._tick_seconds = tick_seconds
        self._shutdown_grace_seconds = shutdown_grace_seconds
        self._clock = clock
        self._render = renderer

        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Combine missed ticks into one
                "max_instances": 1,
            },
        )
        self._tick_job_id = f"delivery_queue_{name}_tick"

        self._jobs: Deque[DeliveryJob] = deque()
        self._processing = False
        self._halted = False
        self._started = False
        self._task: Optional[asyncio.Task] = None

        self.delivered_count = 0
        self.failed_count = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(self, payload: DeliveryPayload) -> DeliveryJob:
        """Append a job at the tail (non-blocking) and wake the loop if idle."""
        job = DeliveryJob(payload=payload, created_at=self._clock())
        self._jobs.append(job)

        logger.info(
            "delivery_job_enqueued",
            queue=self.name,
            job_id=job.id,
            recipient=payload.recipient,
            template=payload.template_key,
            queue_size=len(self._jobs),
        )

        if self._halted:
            logger.warning("delivery_job_enqueued_after_stop", queue=self.name, job_id=job.id)
        else:
            self._kick()
        return job

    async def process(self) -> None:
        """Run a processing pass now (or join the one in flight) and wait for it."""
        task = self._kick()
        if task is not None:
            await asyncio.shield(task)

    async def start(self) -> None:
        """Start the periodic tick that reconsiders deferred jobs."""
        if self._started:
            logger.warning("delivery_queue_already_started", queue=self.name)
            return

        self._halted = False
        self._scheduler.add_job(
            self._tick,
            IntervalTrigger(seconds=self._tick_seconds),
            id=self._tick_job_id,
            name=f"Delivery queue tick ({self.name})",
            replace_existing=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        self._started = True

        logger.info("delivery_queue_started", queue=self.name, tick_seconds=self._tick_seconds)
        self._kick()

    async def stop(self, grace_seconds: Optional[float] = None) -> int:
        """
        Stop the tick, let the in-flight pass drain for up to the grace
        period, then halt. Returns the number of jobs left behind.

        An attempt already handed to the transport is never cancelled.
        """
        grace = self._shutdown_grace_seconds if grace_seconds is None else grace_seconds

        logger.info("delivery_queue_stopping", queue=self.name, pending_jobs=len(self._jobs))

        if self._started:
            if self._scheduler.get_job(self._tick_job_id) is not None:
                self._scheduler.remove_job(self._tick_job_id)
            if self._owns_scheduler and self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._started = False

        task = self._task
        if task is not None and not task.done():
            done, _ = await asyncio.wait({task}, timeout=grace)
            if not done:
                logger.warning(
                    "delivery_queue_grace_period_exceeded",
                    queue=self.name,
                    grace_seconds=grace,
                )

        # Loop exits at its next iteration
        self._halted = True

        remaining = len(self._jobs)
        if remaining:
            logger.warning("delivery_queue_stopped_with_pending_jobs", queue=self.name, pending_jobs=remaining)
        else:
            logger.info("delivery_queue_stopped_cleanly", queue=self.name)
        return remaining

    def stats(self) -> Dict[str, Any]:
        oldest = self._jobs[0].created_at if self._jobs else None
        return {
            "queue": self.name,
            "queue_size": len(self._jobs),
            "is_processing": self._processing,
            "running": self._started,
            "oldest_job": oldest.isoformat() if oldest else None,
            "deferred": sum(1 for job in self._jobs if job.state == JobState.DEFERRED),
            "delivered": self.delivered_count,
            "permanently_failed": self.failed_count,
        }

    def __len__(self) -> int:
        return len(self._jobs)

    # ------------------------------------------------------------------
    # Internal processing
    # ------------------------------------------------------------------

    async def _tick(self) -> None:
        if self._jobs:
            self._kick()

    def _kick(self) -> Optional[asyncio.Task]:
        """Start the processing loop unless one is already running."""
        if self._processing:
            return self._task
        if self._halted:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the periodic tick picks the job up later
            return None

        self._processing = True
        self._task = loop.create_task(self._drain(), name=f"delivery-queue-{self.name}")
        self._task.add_done_callback(self._on_task_done)
        return self._task

    def _on_task_done(self, task: asyncio.Task) -> None:
        # Fire-and-forget passes are never awaited; retrieve the outcome here
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "delivery_queue_task_failed",
                queue=self.name,
                pending_jobs=len(self._jobs),
                error=f"{type(error).__name__}: {error}",
            )

    async def _drain(self) -> None:
        try:
            while self._jobs and not self._halted:
                now = self._clock()
                job = self._jobs.popleft()

                if not job.is_ready(now):
                    self._jobs.append(job)
                    # Everything is waiting for a retry: go idle until the next tick
                    if not any(queued.is_ready(now) for queued in self._jobs):
                        break
                    continue

                await self._attempt(job)
        except Exception:
            logger.exception("delivery_queue_loop_crashed", queue=self.name, pending_jobs=len(self._jobs))
            raise
        finally:
            self._processing = False

    async def _attempt(self, job: DeliveryJob) -> None:
        attempt = job.begin_attempt()
        started = self._clock()

        try:
            subject, body = self._render(job.payload.template_key, job.payload.template_data)
            result = await self._transport.send(job.payload.recipient, subject, body)
            if not result.ok:
                raise DeliveryFailure(result.error or "transport reported failure")
        except Exception as e:
            error = e.message if isinstance(e, DeliveryFailure) else f"{type(e).__name__}: {e}"
            self._on_failure(job, error, started)
            return

        job.mark_delivered()
        self.delivered_count += 1
        logger.info(
            "delivery_job_completed",
            queue=self.name,
            job_id=job.id,
            recipient=job.payload.recipient,
            template=job.payload.template_key,
            attempts=attempt,
            duration_ms=self._elapsed_ms(started),
        )

    def _on_failure(self, job: DeliveryJob, error: str, started: datetime) -> None:
        now = self._clock()
        logger.warning(
            "delivery_job_failed",
            queue=self.name,
            job_id=job.id,
            recipient=job.payload.recipient,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            duration_ms=self._elapsed_ms(started),
            error=error,
        )

        state = job.mark_failed(error, now, self._retry_delays)
        if state == JobState.DEFERRED:
            logger.info(
                "delivery_job_scheduled_for_retry",
                queue=self.name,
                job_id=job.id,
                next_retry_at=job.next_retry_at.isoformat(),
                retry_delay_seconds=(job.next_retry_at - now).total_seconds(),
            )
            self._jobs.append(job)
            return

        self.failed_count += 1
        logger.error(
            "delivery_job_permanently_failed",
            queue=self.name,
            job_id=job.id,
            recipient=job.payload.recipient,
            template=job.payload.template_key,
            attempts=job.attempts,
            error=error,
            severity="high",
        )

    def _elapsed_ms(self, started: datetime) -> int:
        return int((self._clock() - started).total_seconds() * 1000)

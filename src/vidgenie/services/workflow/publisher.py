"""In-memory fan-out of progress events to live observers.

Delivery is best-effort with no replay buffer. Subscriptions live only in this
process; after a restart clients resynchronize by reading the job.
"""

import asyncio
from datetime import datetime
from typing import Any, Literal, Optional

import structlog
from pydantic import BaseModel, Field

from vidgenie.core.timezone import utcnow

logger = structlog.get_logger()

EventType = Literal["status", "workflow:update", "workflow:complete", "ping", "error"]


class ProgressEvent(BaseModel):
    """One message on a job's progress stream."""

    type: EventType
    job_id: Optional[str] = None
    status: Optional[str] = None
    progress: Optional[int] = None
    message: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.type == "workflow:complete"

    def to_sse(self) -> str:
        """Encode as a text/event-stream frame."""
        return f"data: {self.model_dump_json(exclude_none=True)}\n\n"

    @classmethod
    def ping(cls, job_id: str) -> "ProgressEvent":
        return cls(type="ping", job_id=job_id)


class Subscription:
    """Async iterator over one observer's events.

    Stops after yielding a terminal event, or when closed. A heartbeat task
    enqueues a ping every heartbeat_seconds independently of real traffic.
    """

    def __init__(
        self,
        publisher: "StatusPublisher",
        job_id: str,
        queue: asyncio.Queue,
        heartbeat_seconds: float,
    ):
        self.publisher = publisher
        self.job_id = job_id
        self.queue = queue
        self.heartbeat_seconds = heartbeat_seconds
        self._finished = False
        self._closed = False
        self._heartbeat = asyncio.create_task(self._beat())

    async def _beat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            try:
                self.queue.put_nowait(ProgressEvent.ping(self.job_id))
            except asyncio.QueueFull:
                pass  # Observer is backed up; real events are already pending

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ProgressEvent:
        if self._closed or self._finished:
            await self.aclose()
            raise StopAsyncIteration

        event: ProgressEvent = await self.queue.get()
        if event.is_terminal:
            self._finished = True
        return event

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._heartbeat.cancel()
        await self.publisher._unregister(self.job_id, self.queue)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False


class StatusPublisher:
    """Registry of per-job subscriber queues guarded by its own lock."""

    def __init__(self, heartbeat_seconds: float = 30.0, max_queue_size: int = 100):
        self.heartbeat_seconds = heartbeat_seconds
        self.max_queue_size = max_queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, job_id) -> Subscription:
        """Register an observer. Events published after this call are delivered."""
        key = str(job_id)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        async with self._lock:
            self._subscribers.setdefault(key, set()).add(queue)
        logger.debug("publisher.subscribed", job_id=key)
        return Subscription(self, key, queue, self.heartbeat_seconds)

    async def publish(self, job_id, event: ProgressEvent) -> int:
        """Deliver event to every current subscriber of job_id.

        Returns:
            Number of subscribers the event was queued for
        """
        key = str(job_id)
        async with self._lock:
            queues = list(self._subscribers.get(key, ()))

        delivered = 0
        for queue in queues:
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("publisher.subscriber_backlogged", job_id=key, event_type=event.type)
        return delivered

    async def subscriber_count(self, job_id) -> int:
        async with self._lock:
            return len(self._subscribers.get(str(job_id), ()))

    async def _unregister(self, job_id: str, queue: asyncio.Queue) -> None:
        async with self._lock:
            queues = self._subscribers.get(job_id)
            if queues is None:
                return
            queues.discard(queue)
            if not queues:
                del self._subscribers[job_id]
        logger.debug("publisher.unsubscribed", job_id=job_id)

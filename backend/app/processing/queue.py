"""Processing job queue with at-least-once delivery.

A delivery stays invisible to other consumers until it is acknowledged
(``ack``) or marked failed (``fail``). Deliveries whose lease outlives the
visibility timeout are put back on the pending list by ``requeue_expired``,
which is how a job survives a worker crash.
"""
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from queue import Queue, Empty
from typing import Callable, Dict, List, Optional, Tuple
import redis
from app.core.config import settings
from app.schemas.job import ProcessingJob

logger = logging.getLogger(__name__)

FAILED_HISTORY_LIMIT = 1000


@dataclass(frozen=True)
class Delivery:
    job: ProcessingJob
    receipt: str
    attempt: int


class JobQueue:
    def enqueue(self, job: ProcessingJob) -> None:
        raise NotImplementedError

    def dequeue(self, timeout: float = 1) -> Optional[Delivery]:
        raise NotImplementedError

    def ack(self, delivery: Delivery) -> None:
        raise NotImplementedError

    def fail(self, delivery: Delivery, error: str) -> None:
        raise NotImplementedError

    def requeue_expired(self) -> int:
        raise NotImplementedError


class InMemoryJobQueue(JobQueue):
    """Single-process queue with the same visibility semantics as Redis."""

    def __init__(self, visibility_timeout: float = None, clock: Callable[[], float] = time.monotonic):
        self.visibility_timeout = (
            visibility_timeout if visibility_timeout is not None else settings.queue_visibility_timeout
        )
        self._clock = clock
        self._pending: Queue = Queue()
        self._in_flight: Dict[str, Tuple[Delivery, float]] = {}
        self._lock = threading.Lock()
        self.failed: List[dict] = []

    def enqueue(self, job: ProcessingJob, attempt: int = 0) -> None:
        self._pending.put((job, attempt))
        logger.info(f"Enqueued video for processing: {job.video_id}")

    def dequeue(self, timeout: float = 1) -> Optional[Delivery]:
        try:
            job, attempt = self._pending.get(timeout=timeout)
        except Empty:
            return None
        delivery = Delivery(job=job, receipt=uuid.uuid4().hex, attempt=attempt + 1)
        with self._lock:
            self._in_flight[delivery.receipt] = (delivery, self._clock())
        return delivery

    def ack(self, delivery: Delivery) -> None:
        with self._lock:
            self._in_flight.pop(delivery.receipt, None)

    def fail(self, delivery: Delivery, error: str) -> None:
        with self._lock:
            self._in_flight.pop(delivery.receipt, None)
            self.failed.append({"job": delivery.job.to_message(), "error": error})

    def requeue_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [
                receipt
                for receipt, (_, leased_at) in self._in_flight.items()
                if now - leased_at > self.visibility_timeout
            ]
            deliveries = [self._in_flight.pop(receipt)[0] for receipt in expired]
        for delivery in deliveries:
            logger.warning(f"Redelivering expired job for video {delivery.job.video_id}")
            self._pending.put((delivery.job, delivery.attempt))
        return len(deliveries)

    def pending_count(self) -> int:
        return self._pending.qsize()

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)


# Moves one expired delivery back to pending only if it is still in the
# processing list, so two workers sweeping at once cannot duplicate it
_REQUEUE_LUA = """
local removed = redis.call('LREM', KEYS[1], 1, ARGV[1])
if removed == 1 then
    redis.call('HDEL', KEYS[3], ARGV[1])
    redis.call('RPUSH', KEYS[2], ARGV[2])
end
return removed
"""


class RedisJobQueue(JobQueue):
    """Reliable queue on Redis lists (``BLMOVE`` pending -> processing)."""

    def __init__(
        self,
        client: redis.Redis = None,
        name: str = None,
        visibility_timeout: float = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client or redis.from_url(settings.redis_url, decode_responses=True)
        name = name or settings.queue_name
        self.pending_key = f"{name}:pending"
        self.processing_key = f"{name}:processing"
        self.leases_key = f"{name}:leases"
        self.failed_key = f"{name}:failed"
        self.visibility_timeout = (
            visibility_timeout if visibility_timeout is not None else settings.queue_visibility_timeout
        )
        self._clock = clock
        self._requeue_script = self.client.register_script(_REQUEUE_LUA)

    @staticmethod
    def _envelope(job: ProcessingJob, attempt: int) -> str:
        return json.dumps(
            {"id": uuid.uuid4().hex, "attempt": attempt, "job": job.model_dump(by_alias=True)}
        )

    @staticmethod
    def _open(raw: str) -> Tuple[ProcessingJob, int]:
        envelope = json.loads(raw)
        return ProcessingJob.model_validate(envelope["job"]), int(envelope.get("attempt", 0))

    def enqueue(self, job: ProcessingJob) -> None:
        self.client.lpush(self.pending_key, self._envelope(job, 0))
        logger.info(f"Enqueued video for processing: {job.video_id}")

    def dequeue(self, timeout: float = 1) -> Optional[Delivery]:
        raw = self.client.blmove(self.pending_key, self.processing_key, timeout, "RIGHT", "LEFT")
        if raw is None:
            return None
        self.client.hset(self.leases_key, raw, self._clock())
        try:
            job, attempt = self._open(raw)
        except (ValueError, KeyError) as e:
            logger.error(f"Dropping malformed queue message: {e}")
            self._finish(raw, error=f"malformed message: {e}")
            return None
        return Delivery(job=job, receipt=raw, attempt=attempt + 1)

    def _finish(self, raw: str, error: Optional[str] = None) -> None:
        pipe = self.client.pipeline()
        pipe.lrem(self.processing_key, 1, raw)
        pipe.hdel(self.leases_key, raw)
        if error is not None:
            pipe.lpush(
                self.failed_key,
                json.dumps(
                    {
                        "message": raw,
                        "error": error,
                        "failed_at": datetime.now(timezone.utc).isoformat(),
                    }
                ),
            )
            pipe.ltrim(self.failed_key, 0, FAILED_HISTORY_LIMIT - 1)
        pipe.execute()

    def ack(self, delivery: Delivery) -> None:
        self._finish(delivery.receipt)

    def fail(self, delivery: Delivery, error: str) -> None:
        self._finish(delivery.receipt, error=error)
        logger.warning(f"Job for video {delivery.job.video_id} recorded as failed: {error}")

    def requeue_expired(self) -> int:
        now = self._clock()
        leases = self.client.hgetall(self.leases_key)
        requeued = 0
        for raw in self.client.lrange(self.processing_key, 0, -1):
            leased_at = leases.get(raw)
            if leased_at is None:
                # Consumer died between BLMOVE and the lease write; start the clock now
                self.client.hset(self.leases_key, raw, now)
                continue
            if now - float(leased_at) <= self.visibility_timeout:
                continue
            try:
                job, attempt = self._open(raw)
            except (ValueError, KeyError):
                self._finish(raw, error="malformed message")
                continue
            moved = self._requeue_script(
                keys=[self.processing_key, self.pending_key, self.leases_key],
                args=[raw, self._envelope(job, attempt + 1)],
            )
            if moved:
                requeued += 1
                logger.warning(f"Redelivering expired job for video {job.video_id}")
        return requeued


def build_job_queue() -> JobQueue:
    """Create the configured production queue."""
    return RedisJobQueue()


def enqueue_video_processing(queue: JobQueue, video_id, owner_id, source_location: str) -> ProcessingJob:
    """Enqueue a video for processing. Called by the upload handler after the row is written."""
    job = ProcessingJob(
        video_id=str(video_id), owner_id=str(owner_id), source_location=str(source_location)
    )
    queue.enqueue(job)
    return job

"""Builds the long-running pipeline components from settings."""
from typing import Optional
from app.core.config import settings
from app.core.database import get_session_local
from app.processing.queue import JobQueue, build_job_queue
from app.processing.transcode import Transcoder
from app.processing.worker import MediaProcessingWorker
from app.services.storage import get_object_store
from app.trending.calculator import TrendingScoreCalculator
from app.trending.scheduler import TrendingScheduler
from app.trending.snapshots import ViewSnapshotRecorder


def build_media_worker(queue: Optional[JobQueue] = None) -> MediaProcessingWorker:
    return MediaProcessingWorker(
        queue=queue or build_job_queue(),
        session_factory=get_session_local(),
        store=get_object_store(),
        transcoder=Transcoder(),
        work_dir=settings.work_dir,
    )


def build_trending_scheduler() -> TrendingScheduler:
    session_factory = get_session_local()
    return TrendingScheduler(
        recorder=ViewSnapshotRecorder(session_factory),
        calculator=TrendingScoreCalculator(session_factory),
    )

import enum
import logging
import os
import shutil
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
from uuid import UUID
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.errors import InvalidTransitionError, ProcessingError
from app.models.video import Video
from app.processing.lifecycle import claim_for_processing, is_terminal, mark_failed, mark_ready, update_progress
from app.processing.queue import JobQueue
from app.processing.transcode import MANIFEST_NAME, HlsOutput, Transcoder, check_source
from app.schemas.job import ProcessingJob
from app.services.storage import ObjectStore

logger = logging.getLogger(__name__)

PROGRESS_PROBED = 20
PROGRESS_THUMBNAIL = 40
PROGRESS_SEGMENTED = 70
PROGRESS_UPLOADED = 90

REQUEUE_SWEEP_INTERVAL = 60


class ProcessingOutcome(str, enum.Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"


@dataclass
class PublishedMedia:
    video_url: str
    thumbnail_url: str
    duration: float


class MediaProcessingWorker:
    """Consumes processing jobs and drives each video to ready or failed."""

    def __init__(
        self,
        queue: JobQueue,
        session_factory: Callable[[], Session],
        store: ObjectStore,
        transcoder: Transcoder,
        work_dir: Optional[str] = None,
        poll_timeout: Optional[float] = None,
    ):
        self.queue = queue
        self.session_factory = session_factory
        self.store = store
        self.transcoder = transcoder
        self.work_dir = Path(work_dir or settings.work_dir)
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.worker_poll_timeout
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def process_job(self, job: ProcessingJob) -> ProcessingOutcome:
        """Process one job. Raises after persisting the failure on the video row."""
        video_id = UUID(job.video_id)
        db = self.session_factory()
        try:
            # The status check doubles as the claim: a redelivery for a video
            # that is already processing or terminal matches no row
            if not claim_for_processing(db, video_id):
                status = db.query(Video.status).filter(Video.id == video_id).scalar()
                if status is None:
                    logger.warning(f"Skipping job for unknown video {video_id}")
                elif is_terminal(status):
                    logger.info(f"Skipping job for video {video_id}: already {status}")
                else:
                    logger.info(f"Skipping job for video {video_id}: status is {status}")
                return ProcessingOutcome.SKIPPED

            logger.info(f"Processing video: {video_id} (owner {job.owner_id})")
            job_dir = None
            try:
                # Once claimed, every failure including local setup must end in failed
                self.work_dir.mkdir(parents=True, exist_ok=True)
                job_dir = Path(tempfile.mkdtemp(prefix=f"{video_id}-", dir=self.work_dir))
                published = self._transcode_and_publish(db, video_id, job, job_dir)
                mark_ready(
                    db,
                    video_id,
                    published.video_url,
                    published.thumbnail_url,
                    duration=published.duration,
                )
            except Exception as e:
                message = e.message if isinstance(e, ProcessingError) else f"Unexpected error: {e}"
                logger.error(f"Error processing video {video_id}: {message}", exc_info=True)
                db.rollback()
                try:
                    mark_failed(db, video_id, message)
                except InvalidTransitionError:
                    logger.error(f"Could not record failure for video {video_id}; status changed underneath")
                raise
            finally:
                if job_dir is not None:
                    shutil.rmtree(job_dir, ignore_errors=True)
                self._discard_source(job.source_location)

            logger.info(f"Successfully processed video: {video_id}")
            return ProcessingOutcome.PROCESSED
        finally:
            db.close()

    def _transcode_and_publish(
        self, db: Session, video_id: UUID, job: ProcessingJob, job_dir: Path
    ) -> PublishedMedia:
        source = check_source(job.source_location)

        duration = self.transcoder.probe_duration(source)
        logger.info(f"Source for video {video_id} is {duration:.1f}s long")
        update_progress(db, video_id, PROGRESS_PROBED)

        logger.info(f"Extracting thumbnail for video: {video_id}")
        thumbnail = self.transcoder.extract_thumbnail(source, job_dir)
        update_progress(db, video_id, PROGRESS_THUMBNAIL)

        logger.info(f"Generating HLS for video: {video_id}")
        hls = self.transcoder.segment_hls(source, job_dir)
        update_progress(db, video_id, PROGRESS_SEGMENTED)

        # Nothing is uploaded until both artifacts exist locally
        thumb_key = self.store.upload_from_path(thumbnail, folder="thumbnails", content_type="image/png")
        manifest_key = self._upload_stream(video_id, hls)
        update_progress(db, video_id, PROGRESS_UPLOADED)

        return PublishedMedia(
            video_url=self.store.get_public_url(manifest_key),
            thumbnail_url=self.store.get_public_url(thumb_key),
            duration=duration,
        )

    def _upload_stream(self, video_id: UUID, hls: HlsOutput) -> str:
        """Upload every segment, then the manifest, so a published playlist never dangles."""
        folder = f"hls/{video_id}"
        for segment in hls.segments:
            self.store.upload_from_path(
                segment, folder=folder, filename=segment.name, content_type="video/MP2T"
            )
        manifest_key = self.store.upload_from_path(
            hls.manifest, folder=folder, filename=MANIFEST_NAME, content_type="application/x-mpegURL"
        )
        logger.info(f"Uploaded {len(hls.segments)} segments and manifest for video {video_id}")
        return manifest_key

    @staticmethod
    def _discard_source(source_location: str) -> None:
        try:
            os.unlink(source_location)
            logger.debug(f"Cleaned up source file: {source_location}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to clean up source file {source_location}: {e}")

    def run_once(self, timeout: Optional[float] = None) -> bool:
        """Handle at most one delivery. Returns False if the queue was empty."""
        delivery = self.queue.dequeue(timeout=self.poll_timeout if timeout is None else timeout)
        if delivery is None:
            return False
        try:
            self.process_job(delivery.job)
        except Exception as e:
            self.queue.fail(delivery, str(e))
            logger.error(f"Job for video {delivery.job.video_id} failed (attempt {delivery.attempt}): {e}")
        else:
            self.queue.ack(delivery)
        return True

    def start(self) -> None:
        """Start the background worker thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="media-worker", daemon=True)
        self._thread.start()
        logger.info("Media processing worker started")

    def stop(self, timeout: float = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Media processing worker stopped")

    def _loop(self) -> None:
        last_sweep = 0.0
        while not self._stop_event.is_set():
            try:
                if time.monotonic() - last_sweep >= REQUEUE_SWEEP_INTERVAL:
                    last_sweep = time.monotonic()
                    requeued = self.queue.requeue_expired()
                    if requeued:
                        logger.warning(f"Requeued {requeued} expired deliveries")
                self.run_once()
            except Exception as e:
                logger.error(f"Error in worker loop: {e}", exc_info=True)
                self._stop_event.wait(1)

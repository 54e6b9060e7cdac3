import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID
from sqlalchemy import func
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.trending_score import MAX_SNAPSHOTS, score_components
from app.models.comment import Comment
from app.models.video import Video, VideoStatus, utcnow
from app.models.view_snapshot import ViewSnapshot

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    scored: int = 0
    skipped: int = 0
    failed: int = 0


class TrendingScoreCalculator:
    """Recomputes trending scores for ready videos in bounded, sequential batches."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        batch_size: Optional[int] = None,
        max_workers: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.trending_batch_size
        self.max_workers = max_workers or settings.trending_batch_concurrency

    def calculate_for_video(self, video_id: UUID, now: Optional[datetime] = None) -> Optional[float]:
        """Score one video and store it. Returns None (score untouched) unless the video is ready."""
        now = now or utcnow()
        db = self.session_factory()
        try:
            video = (
                db.query(Video.status, Video.views, Video.published_at, Video.created_at)
                .filter(Video.id == video_id)
                .first()
            )
            if video is None or video.status != VideoStatus.READY.value:
                return None

            snapshots = (
                db.query(ViewSnapshot.timestamp, ViewSnapshot.views)
                .filter(ViewSnapshot.video_id == video_id)
                .order_by(ViewSnapshot.timestamp.desc())
                .limit(MAX_SNAPSHOTS)
                .all()
            )
            comments = (
                db.query(func.count(Comment.id)).filter(Comment.video_id == video_id).scalar() or 0
            )

            components = score_components(
                views=video.views,
                comments=comments,
                snapshots=[(s.timestamp, s.views) for s in snapshots],
                published_at=video.published_at,
                created_at=video.created_at,
                now=now,
            )
            score = components.combine()

            # Only the score fields; views and lifecycle fields belong to other writers
            (
                db.query(Video)
                .filter(Video.id == video_id, Video.status == VideoStatus.READY.value)
                .update(
                    {Video.trending_score: score, Video.last_trending_update: now},
                    synchronize_session=False,
                )
            )
            db.commit()
            logger.debug(f"Video {video_id} trending score {score:.4f} ({components})")
            return score
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _ready_video_ids(self) -> List[UUID]:
        db = self.session_factory()
        try:
            rows = db.query(Video.id).filter(Video.status == VideoStatus.READY.value).all()
            return [row.id for row in rows]
        finally:
            db.close()

    def update_all(self, now: Optional[datetime] = None) -> BatchReport:
        """Score every ready video. A failure for one video never affects the others."""
        now = now or utcnow()
        video_ids = self._ready_video_ids()
        report = BatchReport()

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="trending") as pool:
            for start in range(0, len(video_ids), self.batch_size):
                batch = video_ids[start:start + self.batch_size]
                futures = {
                    pool.submit(self.calculate_for_video, video_id, now): video_id for video_id in batch
                }
                # Wait for the whole batch before starting the next one
                for future, video_id in futures.items():
                    try:
                        score = future.result()
                    except Exception as e:
                        report.failed += 1
                        logger.error(f"Failed to score video {video_id}: {e}", exc_info=True)
                        continue
                    if score is None:
                        report.skipped += 1
                    else:
                        report.scored += 1

        logger.info(
            f"Trending scores updated: {report.scored} scored, "
            f"{report.skipped} skipped, {report.failed} failed"
        )
        return report

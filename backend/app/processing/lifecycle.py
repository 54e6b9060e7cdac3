"""Video lifecycle: pending -> processing -> ready | failed.

Every transition is a single conditional UPDATE on the fields the media
worker owns, so concurrent writers (trending calculator, view counter) never
lose each other's changes and a duplicate delivery cannot re-claim a video.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID
from sqlalchemy import func
from sqlalchemy.orm import Session
from app.core.errors import InvalidTransitionError, MAX_ERROR_LENGTH
from app.models.video import Video, VideoStatus, utcnow

logger = logging.getLogger(__name__)

CLAIMED_PROGRESS = 10

TRANSITIONS = {
    VideoStatus.PENDING: frozenset({VideoStatus.PROCESSING}),
    VideoStatus.PROCESSING: frozenset({VideoStatus.READY, VideoStatus.FAILED}),
    VideoStatus.READY: frozenset(),
    VideoStatus.FAILED: frozenset(),
}


def can_transition(current, target) -> bool:
    return VideoStatus(target) in TRANSITIONS[VideoStatus(current)]


def is_terminal(status) -> bool:
    return not TRANSITIONS[VideoStatus(status)]


def allowed_sources(target) -> list:
    """Statuses a video may be in to move to ``target``."""
    target = VideoStatus(target)
    return [current.value for current, targets in TRANSITIONS.items() if target in targets]


def _transition(db: Session, video_id: UUID, target: VideoStatus, values: dict) -> int:
    values = {Video.status: target.value, **values}
    updated = (
        db.query(Video)
        .filter(Video.id == video_id, Video.status.in_(allowed_sources(target)))
        .update(values, synchronize_session=False)
    )
    db.commit()
    return updated


def claim_for_processing(db: Session, video_id: UUID) -> bool:
    """Move a pending video to processing. False if another delivery got there first."""
    claimed = _transition(
        db,
        video_id,
        VideoStatus.PROCESSING,
        {Video.processing_progress: CLAIMED_PROGRESS},
    )
    return claimed == 1


def update_progress(db: Session, video_id: UUID, percent: int) -> None:
    percent = max(0, min(100, int(percent)))
    (
        db.query(Video)
        .filter(
            Video.id == video_id,
            Video.status == VideoStatus.PROCESSING.value,
            Video.processing_progress < percent,
        )
        .update({Video.processing_progress: percent}, synchronize_session=False)
    )
    db.commit()


def mark_ready(
    db: Session,
    video_id: UUID,
    video_url: str,
    thumbnail_url: str,
    duration: Optional[float] = None,
    now: Optional[datetime] = None,
) -> None:
    now = now or utcnow()
    values = {
        Video.video_url: video_url,
        Video.thumbnail_url: thumbnail_url,
        Video.processing_progress: 100,
        Video.processing_error: None,
        Video.published_at: func.coalesce(Video.published_at, now),
    }
    if duration is not None:
        values[Video.duration] = duration
    updated = _transition(db, video_id, VideoStatus.READY, values)
    if not updated:
        raise InvalidTransitionError(f"Video {video_id} is not processing; cannot mark ready")
    logger.info(f"Video {video_id} is ready")


def mark_failed(db: Session, video_id: UUID, message: str) -> None:
    # processing_progress is left as-is so the failure point stays visible
    updated = _transition(
        db,
        video_id,
        VideoStatus.FAILED,
        {Video.processing_error: (message or "Processing failed")[:MAX_ERROR_LENGTH]},
    )
    if not updated:
        raise InvalidTransitionError(f"Video {video_id} is not processing; cannot mark failed")
    logger.info(f"Video {video_id} marked failed: {message}")

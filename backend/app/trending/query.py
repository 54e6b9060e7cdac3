import enum
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID
from sqlalchemy.orm import Session
from app.models.video import Video, VideoStatus, utcnow


class TimeRange(str, enum.Enum):
    NOW = "now"
    TODAY = "today"
    WEEK = "week"


TIME_RANGE_WINDOWS = {
    TimeRange.NOW: timedelta(hours=4),
    TimeRange.TODAY: timedelta(hours=24),
    TimeRange.WEEK: timedelta(days=7),
}


def _scored_ready_videos(db: Session):
    return db.query(Video).filter(
        Video.status == VideoStatus.READY.value,
        Video.trending_score > 0,
    )


def get_trending_videos(
    db: Session,
    category: Optional[str] = None,
    time_range: TimeRange = TimeRange.TODAY,
    limit: int = 50,
    offset: int = 0,
    now: Optional[datetime] = None,
) -> List[Video]:
    """Ready, positively-scored videos published inside the window, best first."""
    now = now or utcnow()
    query = _scored_ready_videos(db)

    if category and category != "all":
        query = query.filter(Video.category == category)

    window = TIME_RANGE_WINDOWS[TimeRange(time_range)]
    query = query.filter(Video.published_at >= now - window)

    return (
        query.order_by(Video.trending_score.desc(), Video.id)
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_trending_categories(db: Session) -> List[str]:
    rows = (
        _scored_ready_videos(db)
        .filter(Video.category.isnot(None))
        .with_entities(Video.category)
        .distinct()
        .order_by(Video.category)
        .all()
    )
    return [row.category for row in rows]


def get_processing_status(db: Session, video_id: UUID) -> Optional[Video]:
    return db.query(Video).filter(Video.id == video_id).first()

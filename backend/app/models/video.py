import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Integer, Float, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VideoStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class Video(Base):
    __tablename__ = "videos"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(UUID(as_uuid=True), nullable=False)
    title = Column(String, nullable=True)
    status = Column(String, nullable=False, default=VideoStatus.PENDING.value)
    video_url = Column(String, nullable=True)  # HLS manifest URL once ready
    thumbnail_url = Column(String, nullable=True)
    views = Column(Integer, nullable=False, default=0)
    duration = Column(Float, nullable=True)
    category = Column(String, nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)  # Set on first transition to ready
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    processing_progress = Column(Integer, nullable=False, default=0)  # 0-100
    processing_error = Column(String, nullable=True)
    trending_score = Column(Float, nullable=False, default=0.0)
    last_trending_update = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_videos_status", "status"),
        Index("ix_videos_trending_score", "trending_score"),
        Index("ix_videos_published_at", "published_at"),
        Index("ix_videos_category", "category"),
    )

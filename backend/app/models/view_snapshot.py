from sqlalchemy import Column, DateTime, Integer, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from app.models.video import Base, utcnow


class ViewSnapshot(Base):
    """Point-in-time view count for one video. Append-only."""

    __tablename__ = "view_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    video_id = Column(UUID(as_uuid=True), ForeignKey("videos.id"), nullable=False)
    views = Column(Integer, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_view_snapshots_video_timestamp", "video_id", "timestamp"),
        Index("ix_view_snapshots_timestamp", "timestamp"),
    )

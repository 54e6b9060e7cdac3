from datetime import datetime
from uuid import UUID
from typing import Optional
from pydantic import BaseModel, ConfigDict


class ProcessingStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    video_id: UUID
    status: str
    processing_progress: int
    processing_error: Optional[str] = None
    video_url: Optional[str] = None  # HLS manifest, only set once ready
    thumbnail_url: Optional[str] = None
    published_at: Optional[datetime] = None


class TrendingVideoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    title: Optional[str] = None
    category: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    views: int
    duration: Optional[float] = None
    trending_score: float
    published_at: Optional[datetime] = None


class TrendingResponse(BaseModel):
    videos: list[TrendingVideoResponse]
    categories: list[str]  # Always starts with "all"
    updated_at: datetime

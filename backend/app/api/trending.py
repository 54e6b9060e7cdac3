import logging
import uuid
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.models.video import utcnow
from app.schemas.video import ProcessingStatusResponse, TrendingResponse, TrendingVideoResponse
from app.trending.query import (
    TimeRange,
    get_processing_status,
    get_trending_categories,
    get_trending_videos,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/trending", response_model=TrendingResponse)
async def trending(
    category: Optional[str] = None,
    time_range: TimeRange = Query(TimeRange.TODAY, alias="timeRange"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Get trending videos plus the categories available for filtering."""
    videos = get_trending_videos(
        db, category=category, time_range=time_range, limit=limit, offset=offset
    )
    categories = get_trending_categories(db)
    logger.debug(f"Returning {len(videos)} trending videos (category={category}, range={time_range.value})")

    return TrendingResponse(
        videos=[TrendingVideoResponse.model_validate(v) for v in videos],
        categories=["all", *categories],
        updated_at=utcnow(),
    )


@router.get("/trending/categories", response_model=list[str])
async def trending_categories(db: Session = Depends(get_db)):
    return get_trending_categories(db)


@router.get("/videos/{video_id}/status", response_model=ProcessingStatusResponse)
async def video_status(video_id: uuid.UUID, db: Session = Depends(get_db)):
    """Get video processing status and progress."""
    video = get_processing_status(db, video_id)
    if not video:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Video {video_id} not found",
        )

    return ProcessingStatusResponse(
        video_id=video.id,
        status=video.status,
        processing_progress=video.processing_progress,
        processing_error=video.processing_error,
        video_url=video.video_url,
        thumbnail_url=video.thumbnail_url,
        published_at=video.published_at,
    )

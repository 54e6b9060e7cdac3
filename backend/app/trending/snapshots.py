import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from sqlalchemy.orm import Session
from app.core.config import settings
from app.models.video import Video, VideoStatus, utcnow
from app.models.view_snapshot import ViewSnapshot

logger = logging.getLogger(__name__)


@dataclass
class SnapshotReport:
    created: int
    pruned: int


class ViewSnapshotRecorder:
    """Appends a view count sample for every ready video, then prunes old samples."""

    def __init__(self, session_factory: Callable[[], Session], retention_days: Optional[int] = None):
        self.session_factory = session_factory
        self.retention = timedelta(days=retention_days or settings.snapshot_retention_days)

    def record(self, now: Optional[datetime] = None) -> SnapshotReport:
        now = now or utcnow()
        db = self.session_factory()
        try:
            # Views may move between this read and the insert; samples are approximate
            videos = db.query(Video.id, Video.views).filter(Video.status == VideoStatus.READY.value).all()
            if videos:
                db.bulk_insert_mappings(
                    ViewSnapshot,
                    [{"video_id": v.id, "views": v.views, "timestamp": now} for v in videos],
                )

            pruned = (
                db.query(ViewSnapshot)
                .filter(ViewSnapshot.timestamp < now - self.retention)
                .delete(synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(f"Recorded {len(videos)} view snapshots, pruned {pruned}")
        return SnapshotReport(created=len(videos), pruned=pruned)

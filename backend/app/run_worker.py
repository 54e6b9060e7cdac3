"""Standalone process for the media worker and trending scheduler.

Usage: python -m app.run_worker
"""
import logging
import signal
import threading
from app.core.config import settings
from app.core.database import init_db
from app.processing.bootstrap import build_media_worker, build_trending_scheduler

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def main() -> None:
    init_db()
    worker = build_media_worker()
    scheduler = build_trending_scheduler()

    stop = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    worker.start()
    scheduler.start()
    stop.wait()

    scheduler.stop(timeout=30)
    worker.stop(timeout=settings.transcode_timeout)


if __name__ == "__main__":
    main()

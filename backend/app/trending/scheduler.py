import logging
import threading
from typing import Callable, Optional
from app.core.config import settings
from app.trending.calculator import TrendingScoreCalculator
from app.trending.snapshots import ViewSnapshotRecorder

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs a function on a fixed interval in its own thread until stopped."""

    def __init__(self, name: str, func: Callable[[], object], interval: float, initial_delay: float = 0):
        self.name = name
        self.func = func
        self.interval = interval
        self.initial_delay = initial_delay
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> bool:
        """Run the function once. A failing run is logged and the schedule continues."""
        logger.info(f"Running {self.name}...")
        try:
            self.func()
        except Exception as e:
            logger.error(f"{self.name} failed: {e}", exc_info=True)
            return False
        logger.info(f"{self.name} completed")
        return True

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info(f"{self.name} scheduled every {self.interval}s (first run in {self.initial_delay}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        if self._stop_event.wait(self.initial_delay):
            return
        while not self._stop_event.is_set():
            self.tick()
            if self._stop_event.wait(self.interval):
                return


class TrendingScheduler:
    """Owns the view snapshot and trending score schedules. The two never coordinate."""

    def __init__(
        self,
        recorder: ViewSnapshotRecorder,
        calculator: TrendingScoreCalculator,
        snapshot_interval: Optional[float] = None,
        trending_interval: Optional[float] = None,
        snapshot_initial_delay: Optional[float] = None,
        trending_initial_delay: Optional[float] = None,
    ):
        self.recorder = recorder
        self.calculator = calculator
        self.snapshot_task = PeriodicTask(
            "view-snapshots",
            recorder.record,
            snapshot_interval or settings.snapshot_interval,
            settings.snapshot_initial_delay if snapshot_initial_delay is None else snapshot_initial_delay,
        )
        self.trending_task = PeriodicTask(
            "trending-scores",
            calculator.update_all,
            trending_interval or settings.trending_interval,
            settings.trending_initial_delay if trending_initial_delay is None else trending_initial_delay,
        )

    def start(self) -> None:
        self.snapshot_task.start()
        self.trending_task.start()
        logger.info("Trending scheduler started")

    def stop(self, timeout: Optional[float] = None) -> None:
        self.snapshot_task.stop(timeout)
        self.trending_task.stop(timeout)
        logger.info("Trending scheduler stopped")

    def run_snapshot_tick(self) -> bool:
        return self.snapshot_task.tick()

    def run_scoring_tick(self) -> bool:
        return self.trending_task.tick()

"""
Trending score module.
Combines view velocity, total views, freshness and engagement into a single
ranking score for a video.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence, Tuple

# Component weights (sum to 1.0)
VELOCITY_WEIGHT = 0.4
TOTAL_VIEWS_WEIGHT = 0.25
FRESHNESS_WEIGHT = 0.2
ENGAGEMENT_WEIGHT = 0.15

MAX_SNAPSHOTS = 50  # Most recent snapshots considered for velocity
VELOCITY_WINDOW = timedelta(hours=24)
VELOCITY_CEILING = 10_000.0  # Views per hour mapped to a velocity of 1.0
FRESHNESS_HALF_LIFE_HOURS = 48.0
ENGAGEMENT_CAP = 0.1  # Comment-to-view ratios above 10% score the same


@dataclass(frozen=True)
class ScoreComponents:
    view_velocity: float
    total_views: float
    freshness: float
    engagement_rate: float

    def combine(self) -> float:
        return (
            self.view_velocity * VELOCITY_WEIGHT
            + self.total_views * TOTAL_VIEWS_WEIGHT
            + self.freshness * FRESHNESS_WEIGHT
            + self.engagement_rate * ENGAGEMENT_WEIGHT
        )


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _gain_per_hour(oldest: Tuple[datetime, int], latest: Tuple[datetime, int]) -> float:
    span_hours = (as_utc(latest[0]) - as_utc(oldest[0])).total_seconds() / 3600
    if span_hours <= 0:
        return 0.0
    return (latest[1] - oldest[1]) / span_hours


def view_velocity(snapshots: Sequence[Tuple[datetime, int]], now: datetime) -> float:
    """
    Normalized views gained per hour.

    Args:
        snapshots: (timestamp, views) pairs in any order; only the most recent
                   MAX_SNAPSHOTS are considered
        now: Reference time for the 24 hour window

    Returns:
        Velocity in [0, 1]: gain/hour divided by VELOCITY_CEILING. Uses the
        snapshots inside the last 24 hours when there are at least two of them,
        otherwise the oldest and newest retained snapshots. 0 with fewer than
        two snapshots or when counters went backwards.
    """
    recent = sorted(snapshots, key=lambda s: as_utc(s[0]), reverse=True)[:MAX_SNAPSHOTS]
    if len(recent) < 2:
        return 0.0

    window_start = as_utc(now) - VELOCITY_WINDOW
    in_window = [s for s in recent if as_utc(s[0]) >= window_start]
    candidates = in_window if len(in_window) >= 2 else recent

    velocity = _gain_per_hour(candidates[-1], candidates[0]) / VELOCITY_CEILING
    return min(max(velocity, 0.0), 1.0)


def total_views_score(views: int) -> float:
    # Unclamped above 10^10 views
    return math.log10(max(views or 0, 1)) / 10


def freshness_score(published_at: Optional[datetime], created_at: datetime, now: datetime) -> float:
    """Exponential decay with a 48 hour half-life from publication (or creation)."""
    reference = as_utc(published_at or created_at)
    age_hours = (as_utc(now) - reference).total_seconds() / 3600
    return math.exp(-(age_hours / FRESHNESS_HALF_LIFE_HOURS) * math.log(2))


def engagement_rate(comments: int, views: int) -> float:
    if not views or views <= 0:
        return 0.0
    return min(comments / views, ENGAGEMENT_CAP) * 10


def score_components(
    views: int,
    comments: int,
    snapshots: Sequence[Tuple[datetime, int]],
    published_at: Optional[datetime],
    created_at: datetime,
    now: datetime,
) -> ScoreComponents:
    return ScoreComponents(
        view_velocity=view_velocity(snapshots, now),
        total_views=total_views_score(views),
        freshness=freshness_score(published_at, created_at, now),
        engagement_rate=engagement_rate(comments, views),
    )

"""Tests for the trending score calculator."""
import threading
import time
import uuid
from datetime import timedelta
from unittest.mock import patch
import pytest
from app.models.comment import Comment
from app.models.view_snapshot import ViewSnapshot
from app.trending.calculator import TrendingScoreCalculator


@pytest.fixture
def calculator(session_factory):
    return TrendingScoreCalculator(session_factory, batch_size=3, max_workers=2)


def add_snapshots(db, video_id, samples):
    for timestamp, views in samples:
        db.add(ViewSnapshot(video_id=video_id, views=views, timestamp=timestamp))
    db.commit()


def add_comments(db, video_id, count):
    for i in range(count):
        db.add(Comment(video_id=video_id, user_id=uuid.uuid4(), content=f"comment {i}"))
    db.commit()


def test_scores_worked_example(calculator, db, make_video, get_video, now):
    video_id = make_video(status="ready", views=1000, published_at=now - timedelta(hours=24))
    add_snapshots(db, video_id, [(now - timedelta(hours=24), 520), (now, 1000)])
    add_comments(db, video_id, 10)

    score = calculator.calculate_for_video(video_id, now=now)

    assert score == pytest.approx(0.2322, abs=1e-4)
    video = get_video(video_id)
    assert video.trending_score == pytest.approx(score)
    assert video.last_trending_update == now.replace(tzinfo=None)


@pytest.mark.parametrize("status", ["pending", "processing", "failed"])
def test_non_ready_video_untouched(calculator, make_video, get_video, status, now):
    video_id = make_video(status=status, views=5000, trending_score=0.7)

    assert calculator.calculate_for_video(video_id, now=now) is None

    video = get_video(video_id)
    assert video.trending_score == 0.7
    assert video.last_trending_update is None


def test_unknown_video(calculator, now):
    assert calculator.calculate_for_video(uuid.uuid4(), now=now) is None


def test_update_all_scores_every_ready_video(calculator, make_video, get_video, now):
    ready = [make_video(status="ready", views=10 * (i + 1), published_at=now) for i in range(7)]
    pending = make_video(status="pending", views=100)

    report = calculator.update_all(now=now)

    assert report.scored == 7
    assert report.failed == 0
    for video_id in ready:
        assert get_video(video_id).trending_score > 0
    assert get_video(pending).trending_score == 0


def test_update_all_runs_batches_sequentially(session_factory, make_video, now):
    for _ in range(5):
        make_video(status="ready", published_at=now)
    calculator = TrendingScoreCalculator(session_factory, batch_size=2, max_workers=4)
    lock = threading.Lock()
    in_flight = [0]
    peak = [0]

    def tracking(video_id, when):
        with lock:
            in_flight[0] += 1
            peak[0] = max(peak[0], in_flight[0])
        time.sleep(0.05)
        with lock:
            in_flight[0] -= 1
        return 0.1

    with patch.object(calculator, "calculate_for_video", side_effect=tracking):
        report = calculator.update_all(now=now)

    assert report.scored == 5
    # The pool could run four at once, but a batch is only two videos
    assert peak[0] <= 2


def test_one_failure_does_not_affect_the_batch(calculator, make_video, get_video, now):
    ids = [make_video(status="ready", views=100, published_at=now) for _ in range(3)]
    broken = ids[1]
    original = calculator.calculate_for_video

    def flaky(video_id, when):
        if video_id == broken:
            raise RuntimeError("database hiccup")
        return original(video_id, when)

    with patch.object(calculator, "calculate_for_video", side_effect=flaky):
        report = calculator.update_all(now=now)

    assert report.scored == 2
    assert report.failed == 1
    assert get_video(ids[0]).trending_score > 0
    assert get_video(ids[2]).trending_score > 0
    assert get_video(broken).trending_score == 0


def test_score_write_does_not_clobber_views(calculator, session_factory, make_video, get_video, now):
    video_id = make_video(status="ready", views=100, published_at=now)

    calculator.calculate_for_video(video_id, now=now)

    assert get_video(video_id).views == 100
    assert get_video(video_id).status == "ready"

"""Tests for the video lifecycle state machine."""
from datetime import timedelta
import pytest
from app.core.errors import InvalidTransitionError
from app.models.video import Video, VideoStatus
from app.processing.lifecycle import (
    CLAIMED_PROGRESS,
    TRANSITIONS,
    allowed_sources,
    can_transition,
    claim_for_processing,
    is_terminal,
    mark_failed,
    mark_ready,
    update_progress,
)

ALL_STATUSES = list(VideoStatus)
ALLOWED_EDGES = {
    (VideoStatus.PENDING, VideoStatus.PROCESSING),
    (VideoStatus.PROCESSING, VideoStatus.READY),
    (VideoStatus.PROCESSING, VideoStatus.FAILED),
}


@pytest.mark.parametrize("current", ALL_STATUSES)
@pytest.mark.parametrize("target", ALL_STATUSES)
def test_only_documented_edges_exist(current, target):
    assert can_transition(current, target) == ((current, target) in ALLOWED_EDGES)


def test_terminal_states():
    assert is_terminal("ready")
    assert is_terminal("failed")
    assert not is_terminal("pending")
    assert not is_terminal("processing")


def test_claim_sets_processing_and_progress(db, make_video, get_video):
    video_id = make_video()

    assert claim_for_processing(db, video_id) is True

    video = get_video(video_id)
    assert video.status == VideoStatus.PROCESSING.value
    assert video.processing_progress == CLAIMED_PROGRESS


def test_claim_is_single_flight(db, make_video):
    video_id = make_video()

    assert claim_for_processing(db, video_id) is True
    assert claim_for_processing(db, video_id) is False


@pytest.mark.parametrize("status", ["processing", "ready", "failed"])
def test_claim_rejects_non_pending(db, make_video, get_video, status):
    video_id = make_video(status=status, processing_progress=55)

    assert claim_for_processing(db, video_id) is False
    video = get_video(video_id)
    assert video.status == status
    assert video.processing_progress == 55


def test_mark_ready_from_processing(db, make_video, get_video, now):
    video_id = make_video(status="processing", processing_progress=90, processing_error="stale")

    mark_ready(db, video_id, "https://cdn.test/m.m3u8", "https://cdn.test/t.png", now=now)

    video = get_video(video_id)
    assert video.status == VideoStatus.READY.value
    assert video.video_url == "https://cdn.test/m.m3u8"
    assert video.thumbnail_url == "https://cdn.test/t.png"
    assert video.processing_progress == 100
    assert video.processing_error is None
    assert video.published_at == now.replace(tzinfo=None)


def test_mark_ready_keeps_existing_publication_time(db, make_video, get_video, now):
    first_published = now - timedelta(days=3)
    video_id = make_video(status="processing", published_at=first_published)

    mark_ready(db, video_id, "u", "t", now=now)

    assert get_video(video_id).published_at == first_published.replace(tzinfo=None)


@pytest.mark.parametrize("status", ["pending", "ready", "failed"])
def test_mark_ready_requires_processing(db, make_video, get_video, status):
    video_id = make_video(status=status)

    with pytest.raises(InvalidTransitionError):
        mark_ready(db, video_id, "u", "t")
    assert get_video(video_id).status == status


def test_mark_failed_preserves_progress(db, make_video, get_video):
    video_id = make_video(status="processing", processing_progress=40)

    mark_failed(db, video_id, "HLS segmentation failed: Conversion failed!")

    video = get_video(video_id)
    assert video.status == VideoStatus.FAILED.value
    assert video.processing_progress == 40
    assert video.processing_error == "HLS segmentation failed: Conversion failed!"


def test_mark_failed_truncates_long_messages(db, make_video, get_video):
    video_id = make_video(status="processing")

    mark_failed(db, video_id, "x" * 2000)

    assert len(get_video(video_id).processing_error) == 500


@pytest.mark.parametrize("status", ["pending", "ready", "failed"])
def test_mark_failed_requires_processing(db, make_video, get_video, status):
    video_id = make_video(status=status)

    with pytest.raises(InvalidTransitionError):
        mark_failed(db, video_id, "boom")
    assert get_video(video_id).status == status


def test_progress_only_moves_forward_while_processing(db, make_video, get_video):
    video_id = make_video(status="processing", processing_progress=10)

    update_progress(db, video_id, 40)
    update_progress(db, video_id, 20)
    assert get_video(video_id).processing_progress == 40

    update_progress(db, video_id, 250)
    assert get_video(video_id).processing_progress == 100


def test_progress_ignored_outside_processing(db, make_video, get_video):
    video_id = make_video(status="failed", processing_progress=40)

    update_progress(db, video_id, 90)

    assert get_video(video_id).processing_progress == 40


def test_transitions_do_not_touch_other_writers_fields(db, make_video, session_factory, get_video):
    video_id = make_video(status="processing", views=10, trending_score=0.5)

    # A concurrent playback increment lands between claim and completion
    other = session_factory()
    other.query(Video).filter(Video.id == video_id).update({Video.views: Video.views + 5})
    other.commit()
    other.close()

    mark_ready(db, video_id, "u", "t")

    video = get_video(video_id)
    assert video.views == 15
    assert video.trending_score == 0.5


@pytest.mark.parametrize("target", ALL_STATUSES)
def test_allowed_sources_follow_transition_table(target):
    expected = {current.value for current, targets in TRANSITIONS.items() if target in targets}

    assert set(allowed_sources(target)) == expected
    assert allowed_sources(VideoStatus.PENDING) == []


def test_transition_guard_reads_the_table(db, make_video, get_video, monkeypatch):
    video_id = make_video(status="pending")
    # Without an edge into processing the claim has nothing to match
    monkeypatch.setitem(TRANSITIONS, VideoStatus.PENDING, frozenset())

    assert claim_for_processing(db, video_id) is False
    assert get_video(video_id).status == VideoStatus.PENDING.value


def test_mark_ready_stores_duration(db, make_video, get_video):
    video_id = make_video(status="processing")

    mark_ready(db, video_id, "u", "t", duration=42.5)

    assert get_video(video_id).duration == 42.5


def test_mark_ready_without_duration_keeps_existing(db, make_video, get_video):
    video_id = make_video(status="processing", duration=7.0)

    mark_ready(db, video_id, "u", "t")

    assert get_video(video_id).duration == 7.0

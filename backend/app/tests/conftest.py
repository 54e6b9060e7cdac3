"""Pytest configuration and fixtures."""
import itertools
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path

# Set before app imports so settings and startup pick them up
os.environ["TESTING"] = "1"
os.environ.setdefault("DB_URL", "sqlite:///./test_vidstream.db")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from app.core.errors import InvalidSourceError, StorageError, TranscodeError
from app.models.video import Base, Video, VideoStatus
from app.processing.queue import InMemoryJobQueue
from app.processing.transcode import HlsOutput, MANIFEST_NAME
from app.processing.worker import MediaProcessingWorker
from app.services.storage import ObjectStore


@pytest.fixture
def engine(tmp_path):
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_video(session_factory):
    """Insert a video row and return its id."""

    def _make_video(**fields):
        fields.setdefault("owner_id", uuid.uuid4())
        fields.setdefault("status", VideoStatus.PENDING.value)
        session = session_factory()
        try:
            video = Video(**fields)
            session.add(video)
            session.commit()
            return video.id
        finally:
            session.close()

    return _make_video


@pytest.fixture
def get_video(session_factory):
    """Load a fresh copy of a video row."""

    def _get_video(video_id):
        session = session_factory()
        try:
            video = session.query(Video).filter(Video.id == video_id).first()
            session.expunge_all()
            return video
        finally:
            session.close()

    return _get_video


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


class RecordingStore(ObjectStore):
    """Object store that remembers what was uploaded and in which order."""

    def __init__(self, fail_on_key=None):
        self.uploads = []  # (sequence, key, content_type, content)
        self.deleted = []
        self.fail_on_key = fail_on_key
        self._sequence = itertools.count()

    def _put(self, local_path, key, content_type):
        if self.fail_on_key and self.fail_on_key in key:
            raise StorageError(f"Upload of {key} failed: simulated outage")
        self.uploads.append((next(self._sequence), key, content_type, Path(local_path).read_bytes()))

    def delete(self, key):
        self.deleted.append(key)

    def get_public_url(self, key):
        return f"https://cdn.test/{key}"

    def keys(self):
        return [key for _, key, _, _ in self.uploads]

    def sequence_of(self, key):
        return next(seq for seq, k, _, _ in self.uploads if k == key)


class FakeTranscoder:
    """Writes real thumbnail/HLS files without running ffmpeg."""

    def __init__(self, segment_count=3, fail_step=None, duration=12.5):
        self.segment_count = segment_count
        self.fail_step = fail_step
        self.duration = duration
        self.calls = []

    def probe_duration(self, source):
        self.calls.append("probe")
        if self.fail_step == "probe":
            raise InvalidSourceError("Source file is not a readable video: moov atom not found")
        return self.duration

    def extract_thumbnail(self, source, out_dir):
        self.calls.append("thumbnail")
        if self.fail_step == "thumbnail":
            raise TranscodeError("Thumbnail extraction failed: Invalid data found when processing input")
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / f"thumb-{source.stem}.png"
        path.write_bytes(b"png")
        return path

    def segment_hls(self, source, out_dir):
        self.calls.append("segment")
        hls_dir = out_dir / "hls"
        hls_dir.mkdir(parents=True, exist_ok=True)
        # Partial output left behind by a crashing encoder
        (hls_dir / "segment000.ts").write_bytes(b"partial")
        if self.fail_step == "segment":
            raise TranscodeError("HLS segmentation failed: Conversion failed!")
        segments = []
        lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-TARGETDURATION:10"]
        for i in range(self.segment_count):
            segment = hls_dir / f"segment{i:03d}.ts"
            segment.write_bytes(f"segment {i}".encode())
            segments.append(segment)
            lines.extend(["#EXTINF:10.0,", segment.name])
        lines.append("#EXT-X-ENDLIST")
        manifest = hls_dir / MANIFEST_NAME
        manifest.write_text("\n".join(lines) + "\n")
        return HlsOutput(manifest=manifest, segments=segments)


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def memory_queue():
    return InMemoryJobQueue(visibility_timeout=60)


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "uploads" / "raw-upload.mp4"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"fake video content" * 100)
    return path


@pytest.fixture
def worker(memory_queue, session_factory, store, transcoder, tmp_path):
    return MediaProcessingWorker(
        queue=memory_queue,
        session_factory=session_factory,
        store=store,
        transcoder=transcoder,
        work_dir=str(tmp_path / "work"),
        poll_timeout=0.01,
    )

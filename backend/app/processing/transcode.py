import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from PIL import Image, UnidentifiedImageError
from app.core.config import settings
from app.core.errors import InvalidSourceError, SourceNotFoundError, TranscodeError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "index.m3u8"
STDERR_TAIL = 400


@dataclass
class HlsOutput:
    manifest: Path
    segments: List[Path] = field(default_factory=list)


def _stderr_tail(stderr) -> str:
    if not stderr:
        return ""
    if isinstance(stderr, bytes):
        stderr = stderr.decode(errors="replace")
    return stderr.strip()[-STDERR_TAIL:]


def read_manifest_segments(manifest_path: Path) -> List[str]:
    """Return the segment URIs referenced by an HLS media playlist, in order."""
    with open(manifest_path, "r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip() and not line.startswith("#")]


class Transcoder:
    """Wraps the ffmpeg/ffprobe binaries. Every call blocks until the process exits."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        timeout: Optional[float] = None,
        thumbnail_offset: Optional[float] = None,
        thumbnail_size: Optional[str] = None,
        segment_seconds: Optional[int] = None,
    ):
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path
        self.timeout = timeout or settings.transcode_timeout
        self.thumbnail_offset = thumbnail_offset if thumbnail_offset is not None else settings.thumbnail_offset
        self.thumbnail_size = thumbnail_size or settings.thumbnail_size
        self.segment_seconds = segment_seconds or settings.hls_segment_seconds

    def _run(self, command: List[str], step: str) -> subprocess.CompletedProcess:
        logger.debug(f"Running {step}: {' '.join(command)}")
        try:
            return subprocess.run(command, capture_output=True, check=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise TranscodeError(f"{step} timed out after {self.timeout}s")
        except subprocess.CalledProcessError as e:
            tail = _stderr_tail(e.stderr)
            logger.error(f"{step} failed with exit code {e.returncode}: {tail}")
            raise TranscodeError(f"{step} failed: {tail or f'exit code {e.returncode}'}")
        except OSError as e:
            raise TranscodeError(f"{step} could not be started: {e}")

    def probe_duration(self, source: Path) -> float:
        """Get video duration in seconds using ffprobe. Rejects sources ffprobe cannot read."""
        try:
            result = self._run(
                [
                    self.ffprobe_path,
                    "-v",
                    "error",
                    "-show_entries",
                    "format=duration",
                    "-of",
                    "default=noprint_wrappers=1:nokey=1",
                    str(source),
                ],
                "ffprobe",
            )
        except TranscodeError as e:
            raise InvalidSourceError(f"Source file is not a readable video: {e.message}")
        output = result.stdout.decode() if isinstance(result.stdout, bytes) else result.stdout
        try:
            return float(output.strip())
        except (ValueError, AttributeError):
            raise InvalidSourceError("Source file is not a readable video: no duration")

    def extract_thumbnail(self, source: Path, out_dir: Path) -> Path:
        """Grab a single still at the configured offset, scaled to the target size."""
        out_dir.mkdir(parents=True, exist_ok=True)
        output_path = out_dir / f"thumb-{source.stem}.png"
        width, height = self.thumbnail_size.lower().split("x")
        self._run(
            [
                self.ffmpeg_path,
                "-y",
                "-ss",
                str(self.thumbnail_offset),
                "-i",
                str(source),
                "-frames:v",
                "1",
                "-vf",
                f"scale={width}:{height}",
                str(output_path),
            ],
            "Thumbnail extraction",
        )
        if not output_path.exists():
            raise TranscodeError("Thumbnail extraction produced no image")

        try:
            with Image.open(output_path) as img:
                img.verify()
                logger.info(f"Extracted thumbnail {output_path.name} ({img.size[0]}x{img.size[1]})")
        except (UnidentifiedImageError, OSError) as e:
            raise TranscodeError(f"Thumbnail extraction produced an invalid image: {e}")
        return output_path

    def segment_hls(self, source: Path, out_dir: Path) -> HlsOutput:
        """Encode the source into an HLS playlist plus media segments under out_dir/hls."""
        hls_dir = out_dir / "hls"
        hls_dir.mkdir(parents=True, exist_ok=True)
        manifest = hls_dir / MANIFEST_NAME
        self._run(
            [
                self.ffmpeg_path,
                "-y",
                "-i",
                str(source),
                "-profile:v",
                "baseline",
                "-level",
                "3.0",
                "-start_number",
                "0",
                "-hls_time",
                str(self.segment_seconds),
                "-hls_list_size",
                "0",
                "-hls_segment_filename",
                str(hls_dir / "segment%03d.ts"),
                "-f",
                "hls",
                str(manifest),
            ],
            "HLS segmentation",
        )
        if not manifest.exists():
            raise TranscodeError("HLS segmentation produced no manifest")

        segments = []
        for name in read_manifest_segments(manifest):
            segment = hls_dir / name
            if not segment.exists():
                raise TranscodeError(f"HLS manifest references missing segment {name}")
            segments.append(segment)
        if not segments:
            raise TranscodeError("HLS segmentation produced no segments")

        logger.info(f"Generated HLS stream with {len(segments)} segments in {hls_dir}")
        return HlsOutput(manifest=manifest, segments=segments)


def check_source(path: str) -> Path:
    """Validate the worker's input file before any transcoding work starts."""
    source = Path(path)
    if not source.is_file():
        raise SourceNotFoundError()
    try:
        if os.path.getsize(source) == 0:
            raise InvalidSourceError("Source file is empty")
        with open(source, "rb") as f:
            f.read(1)
    except OSError as e:
        raise InvalidSourceError(f"Source file is not readable: {e}")
    return source

"""
Transcoding cascade.

When an original video upload completes, lower renditions are derived from it
with ffmpeg and each one is queued as an ordinary upload job. Renditions are
independent: a failed conversion is logged and the others carry on.
"""
import json
import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path

from django.conf import settings

from uploads.exceptions import ConversionError, UploadQueueError
from uploads.models import DEFAULT_VIDEO_QUALITY, UploadJob
from uploads.services import queue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QualityProfile:
    name: str
    max_width: int
    max_height: int
    bitrate: str
    audio_bitrate: str = "128k"


QUALITY_PROFILES = {
    "480p": QualityProfile("480p", 854, 480, "1000k", "96k"),
    "720p": QualityProfile("720p", 1280, 720, "2500k"),
    "1080p": QualityProfile("1080p", 1920, 1080, "5000k", "160k"),
}

# source quality -> renditions derived from it
CASCADE = {
    "1080p": ("720p", "480p"),
    "720p": ("480p",),
    "480p": (),
}


def derived_qualities(source_quality: str | None) -> tuple:
    return CASCADE.get(source_quality or DEFAULT_VIDEO_QUALITY, ())


def fit_dimensions(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """
    Fit width x height inside the box with one uniform scale factor.

    A source that already fits is returned unchanged. A scaled result is
    rounded down to even sides because libx264 rejects odd frame sizes.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid source dimensions {width}x{height}")
    if width <= max_width and height <= max_height:
        return width, height

    scale = min(Fraction(max_width, width), Fraction(max_height, height))
    new_w = int(width * scale)
    new_h = int(height * scale)
    return max(2, new_w - new_w % 2), max(2, new_h - new_h % 2)


def probe_dimensions(path: Path) -> tuple[int, int]:
    cmd = [
        settings.FFPROBE_BIN,
        "-v", "error",
        "-select_streams", "v:0",
        "-show_entries", "stream=width,height",
        "-of", "json",
        str(path),
    ]
    p = subprocess.run(cmd, capture_output=True, text=True, timeout=60, check=False)
    if p.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {p.stderr.strip()[-2000:]}")

    try:
        stream = (json.loads(p.stdout).get("streams") or [])[0]
        return int(stream["width"]), int(stream["height"])
    except (ValueError, KeyError, IndexError) as exc:
        raise RuntimeError(f"No video stream found: {exc}") from exc


def convert_video(source: Path, quality: str, out_dir: Path) -> Path:
    """Encode one rendition of `source` into `out_dir`; returns the output path."""
    profile = QUALITY_PROFILES.get(quality)
    if profile is None:
        raise ConversionError(quality, "unknown quality")

    try:
        width, height = probe_dimensions(source)
        new_w, new_h = fit_dimensions(width, height, profile.max_width, profile.max_height)
        logger.info("Converting %s to %s: %dx%d -> %dx%d", source.name, quality, width, height, new_w, new_h)

        output = out_dir / f"{source.stem}-{quality}.mp4"
        cmd = [
            settings.FFMPEG_BIN,
            "-y",
            "-i", str(source),
            "-vf", f"scale={new_w}:{new_h}",
            "-c:v", "libx264",
            "-preset", "medium",
            "-b:v", profile.bitrate,
            "-maxrate", profile.bitrate,
            "-bufsize", profile.bitrate,
            "-c:a", "aac",
            "-b:a", profile.audio_bitrate,
            "-movflags", "+faststart",
            str(output),
        ]
        subprocess.run(
            cmd,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=settings.TRANSCODE_TIMEOUT,
        )
    except subprocess.CalledProcessError as e:
        err = e.stderr.decode("utf-8", errors="ignore") if e.stderr else str(e)
        raise ConversionError(quality, f"ffmpeg failed: {err[-2000:]}") from e
    except (subprocess.TimeoutExpired, OSError, RuntimeError, ValueError) as e:
        raise ConversionError(quality, str(e)) from e

    if not output.exists() or output.stat().st_size == 0:
        raise ConversionError(quality, "ffmpeg produced no output")
    return output


def _copy_source(job: UploadJob, dest: Path) -> None:
    with job.staged_file.open("rb") as src, open(dest, "wb") as dst:
        shutil.copyfileobj(src, dst, length=1024 * 1024)


def _enqueue_rendition(job: UploadJob, quality: str, rendition: Path) -> UploadJob:
    with open(rendition, "rb") as fh:
        return queue.enqueue(
            queue.EnqueueSpec(
                movie_id=job.movie_id,
                user_id=job.user_id,
                file_type=UploadJob.FileType.VIDEO,
                file_name=f"{Path(job.file_name).stem}-{quality}.mp4",
                file_bytes=fh,
                file_size=rendition.stat().st_size,
                mime_type="video/mp4",
                folder=queue.DEFAULT_FOLDERS[UploadJob.FileType.VIDEO],
                metadata={"quality": quality, "isOriginal": False},
            )
        )


def should_cascade(job: UploadJob) -> bool:
    return (
        job.status == UploadJob.Status.COMPLETED
        and job.file_type == UploadJob.FileType.VIDEO
        and job.is_original
    )


def _derive_renditions(job: UploadJob, targets: tuple, tmp_dir: Path, created: list) -> None:
    source = tmp_dir / f"source{Path(job.file_name).suffix or '.mp4'}"
    try:
        _copy_source(job, source)
    except (OSError, ValueError):
        logger.exception("Could not read staged payload of job %s; skipping cascade", job.id)
        return

    for quality in targets:
        try:
            rendition = convert_video(source, quality, tmp_dir)
            new_job = _enqueue_rendition(job, quality, rendition)
        except ConversionError as exc:
            logger.error("Video conversion failed for job %s: %s", job.id, exc)
            continue
        except UploadQueueError as exc:
            logger.error("Failed to queue %s upload for job %s: %s", quality, job.id, exc)
            continue
        except Exception:
            logger.exception("Failed to queue %s upload for job %s", quality, job.id)
            continue
        created.append(new_job)
        logger.info("Queued %s conversion upload job %s", quality, new_job.id)


def run_cascade(job: UploadJob) -> list[UploadJob]:
    """
    Derive and queue the lower renditions of a completed original video.

    Never raises: the original job is already completed and stays that way.
    Returns the jobs queued before any failure.
    """
    if not should_cascade(job):
        return []
    targets = derived_qualities(job.quality)
    if not targets:
        return []

    logger.info("Auto-converting job %s to qualities: %s", job.id, ", ".join(targets))
    created = []
    try:
        with tempfile.TemporaryDirectory(prefix="transcode-") as tmp:
            _derive_renditions(job, targets, Path(tmp), created)
    except OSError:
        logger.exception("Transcoding workspace failed for job %s", job.id)
    return created

"""
Queue service: the only place that creates or transitions UploadJob rows.

Every submitted file becomes its own job. Jobs are claimed oldest-first with a
conditional update, so any number of workers can share the table without
processing the same job twice.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count
from django.utils import timezone

from catalog.models import Movie
from uploads.exceptions import InvalidStateError, ValidationError
from uploads.models import UploadJob
from uploads.utils import as_django_file, guess_mime_type, payload_size, staging_name

logger = logging.getLogger(__name__)

ERROR_MAX_LENGTH = 4000
LEASE_EXPIRED_ERROR = "Worker lease expired before the upload finished"

# Default destination prefixes per file type
DEFAULT_FOLDERS = {
    UploadJob.FileType.VIDEO: "movies",
    UploadJob.FileType.THUMBNAIL: "thumbnails",
    UploadJob.FileType.POSTER: "thumbnails",
    UploadJob.FileType.SUBTITLE: "subtitles",
}


@dataclass
class EnqueueSpec:
    movie_id: Any
    file_type: str
    file_name: str
    file_bytes: Any  # bytes or a binary file object
    folder: str
    user_id: Any = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    metadata: dict = field(default_factory=dict)


def _validate(spec: EnqueueSpec) -> int:
    if spec.movie_id in (None, ""):
        raise ValidationError("Movie ID is required")
    if spec.file_bytes is None:
        raise ValidationError("File bytes are required")
    if not spec.file_type:
        raise ValidationError("File type is required")
    if spec.file_type not in UploadJob.FileType.values:
        raise ValidationError(
            f"Unsupported file type: {spec.file_type}. Allowed: {sorted(UploadJob.FileType.values)}"
        )
    if not spec.folder or not str(spec.folder).strip("/ "):
        raise ValidationError("Destination folder is required")
    if not spec.file_name:
        raise ValidationError("File name is required")
    if spec.metadata is not None and not isinstance(spec.metadata, dict):
        raise ValidationError("Metadata must be a mapping")

    measured = payload_size(spec.file_bytes)
    if spec.file_size is not None and measured is not None and spec.file_size != measured:
        raise ValidationError(f"Declared file size {spec.file_size} does not match payload size {measured}")
    size = spec.file_size if spec.file_size is not None else measured
    if not size or size <= 0:
        raise ValidationError("File bytes are required")

    try:
        movie_exists = Movie.objects.filter(pk=spec.movie_id).exists()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid movie ID: {spec.movie_id}")
    if not movie_exists:
        raise ValidationError(f"Movie {spec.movie_id} does not exist")
    return int(size)


def enqueue(spec: EnqueueSpec) -> UploadJob:
    """Validate the request, stage the payload and create a pending job."""
    size = _validate(spec)
    django_file = as_django_file(spec.file_bytes, spec.file_name)
    if django_file is None:
        raise ValidationError("File bytes must be bytes or a binary file object")

    job = UploadJob(
        movie_id=spec.movie_id,
        user_id=spec.user_id,
        file_type=spec.file_type,
        file_name=spec.file_name,
        file_size=size,
        mime_type=spec.mime_type or guess_mime_type(spec.file_name),
        folder=str(spec.folder).strip("/"),
        status=UploadJob.Status.PENDING,
        progress=0,
        metadata=dict(spec.metadata or {}),
    )
    job.staged_file.save(staging_name(spec.file_name), django_file, save=False)
    try:
        job.save()
    except Exception:
        job.staged_file.delete(save=False)
        raise

    logger.info("Queued %s upload job %s (%s, %d bytes)", job.file_type, job.id, job.file_name, size)
    return job


def pending_batch(limit: int = 10) -> list[UploadJob]:
    """Up to `limit` pending jobs, oldest first."""
    if limit <= 0:
        return []
    return list(
        UploadJob.objects.filter(status=UploadJob.Status.PENDING).order_by("created_at", "id")[:limit]
    )


def job_summary(job: UploadJob) -> dict:
    return {
        "id": str(job.id),
        "file_type": job.file_type,
        "file_name": job.file_name,
        "status": job.status,
        "progress": job.progress,
        "uploaded_size": job.uploaded_size,
        "file_size": job.file_size,
        "error": job.error or None,
        "storage_url": job.storage_url or None,
    }


def job_status(job_id) -> dict:
    job = UploadJob.objects.get(pk=job_id)
    summary = job_summary(job)
    return {k: summary[k] for k in ("status", "progress", "uploaded_size", "file_size", "error", "storage_url")}


def _overall_status(statuses: list[str]) -> str:
    if not statuses:
        return "no-jobs"
    if UploadJob.Status.FAILED in statuses:
        return UploadJob.Status.FAILED
    if UploadJob.Status.PROCESSING in statuses:
        return UploadJob.Status.PROCESSING
    if all(s == UploadJob.Status.COMPLETED for s in statuses):
        return UploadJob.Status.COMPLETED
    return UploadJob.Status.PENDING


def status_for_entity(movie_id) -> dict:
    jobs = list(UploadJob.objects.filter(movie_id=movie_id).order_by("created_at", "id"))
    statuses = [j.status for j in jobs]
    overall = sum(j.progress for j in jobs) / len(jobs) if jobs else 0

    return {
        "movie_id": movie_id,
        "status": str(_overall_status(statuses)),
        "overall_progress": round(overall),
        "total_jobs": len(jobs),
        "completed_jobs": statuses.count(UploadJob.Status.COMPLETED),
        "failed_jobs": statuses.count(UploadJob.Status.FAILED),
        "jobs": [job_summary(j) for j in jobs],
    }


def retry(job_id) -> UploadJob:
    """Put a failed job back in the queue. The staged payload is reused as is."""
    with transaction.atomic():
        job = UploadJob.objects.select_for_update().get(pk=job_id)
        if job.status != UploadJob.Status.FAILED:
            raise InvalidStateError(f"Can only retry failed jobs (current status: {job.status})")

        job.status = UploadJob.Status.PENDING
        job.progress = 0
        job.uploaded_size = 0
        job.error = ""
        job.started_at = None
        job.completed_at = None
        job.locked_by = ""
        job.lease_expires_at = None
        job.retry_count += 1
        job.save()

    logger.info("Job %s queued for retry (attempt %d)", job.id, job.retry_count + 1)
    return job


def delete_job(job_id) -> None:
    job = UploadJob.objects.get(pk=job_id)
    if not job.is_terminal:
        raise InvalidStateError("Cannot delete processing or pending jobs")
    release_payload(job)
    job.delete()
    logger.info("Deleted upload job %s", job_id)


def queue_stats() -> dict:
    counts = {s: 0 for s in UploadJob.Status.values}
    for row in UploadJob.objects.values("status").annotate(n=Count("id")):
        counts[row["status"]] = row["n"]
    counts["total"] = sum(counts.values())
    return counts


def _lease_delta(lease_seconds: Optional[int]) -> timedelta:
    return timedelta(seconds=lease_seconds or settings.UPLOAD_WORKER_LEASE_SECONDS)


def claim_next(worker_id: str, lease_seconds: Optional[int] = None) -> Optional[UploadJob]:
    """
    Claim the oldest pending job for `worker_id`.

    The status flip is a conditional update on `status=pending`, so when two
    workers race for the same row only one of them gets it.
    """
    with transaction.atomic():
        candidate = (
            UploadJob.objects.select_for_update(skip_locked=True)
            .filter(status=UploadJob.Status.PENDING)
            .order_by("created_at", "id")
            .first()
        )
        if candidate is None:
            return None

        now = timezone.now()
        claimed = UploadJob.objects.filter(pk=candidate.pk, status=UploadJob.Status.PENDING).update(
            status=UploadJob.Status.PROCESSING,
            started_at=now,
            locked_by=worker_id,
            lease_expires_at=now + _lease_delta(lease_seconds),
            updated_at=now,
        )
        if not claimed:
            return None

    candidate.refresh_from_db()
    return candidate


def record_progress(job_id, percent: int, uploaded_bytes: int, worker_id: str,
                    lease_seconds: Optional[int] = None) -> Optional[UploadJob]:
    """
    Persist one progress tick and extend the worker's lease.

    The row is re-read first; progress never moves backwards and ticks from a
    worker that no longer owns the job are ignored.
    """
    with transaction.atomic():
        job = UploadJob.objects.select_for_update().filter(pk=job_id).first()
        if job is None or job.status != UploadJob.Status.PROCESSING or job.locked_by != worker_id:
            return None

        percent = max(0, min(100, int(percent)))
        job.progress = max(job.progress, percent)
        job.uploaded_size = max(job.uploaded_size, min(job.file_size, int(uploaded_bytes)))
        job.lease_expires_at = timezone.now() + _lease_delta(lease_seconds)
        job.save(update_fields=["progress", "uploaded_size", "lease_expires_at", "updated_at"])

    logger.debug("Job %s progress: %d%% (%d/%d bytes)", job_id, job.progress, job.uploaded_size, job.file_size)
    return job


def complete_job(job: UploadJob, *, key: str, url: str, worker_id: str) -> UploadJob:
    now = timezone.now()
    updated = UploadJob.objects.filter(
        pk=job.pk, status=UploadJob.Status.PROCESSING, locked_by=worker_id
    ).update(
        status=UploadJob.Status.COMPLETED,
        progress=100,
        uploaded_size=job.file_size,
        storage_key=key,
        storage_url=url,
        error="",
        completed_at=now,
        locked_by="",
        lease_expires_at=None,
        updated_at=now,
    )
    if not updated:
        raise InvalidStateError(f"Job {job.pk} is no longer held by worker {worker_id}")
    job.refresh_from_db()
    return job


def fail_job(job_id, message: str) -> bool:
    """Mark a processing job failed. Returns False if it was not processing."""
    now = timezone.now()
    updated = UploadJob.objects.filter(pk=job_id, status=UploadJob.Status.PROCESSING).update(
        status=UploadJob.Status.FAILED,
        error=(message or "Unknown error")[:ERROR_MAX_LENGTH],
        completed_at=now,
        locked_by="",
        lease_expires_at=None,
        updated_at=now,
    )
    return bool(updated)


def reclaim_expired(now=None) -> int:
    """
    Fail processing jobs whose worker lease has run out.

    A worker that crashed mid-upload stops refreshing its lease; the job is
    failed with LEASE_EXPIRED_ERROR so an operator can retry it.
    """
    now = now or timezone.now()
    with transaction.atomic():
        stale_ids = list(
            UploadJob.objects.select_for_update(skip_locked=True)
            .filter(
                status=UploadJob.Status.PROCESSING,
                lease_expires_at__isnull=False,
                lease_expires_at__lt=now,
            )
            .values_list("id", flat=True)
        )
        if not stale_ids:
            return 0
        UploadJob.objects.filter(pk__in=stale_ids, status=UploadJob.Status.PROCESSING).update(
            status=UploadJob.Status.FAILED,
            error=LEASE_EXPIRED_ERROR,
            completed_at=now,
            locked_by="",
            lease_expires_at=None,
            updated_at=now,
        )

    logger.warning("Reclaimed %d upload job(s) with expired leases: %s", len(stale_ids), stale_ids)
    return len(stale_ids)


def release_payload(job: UploadJob) -> None:
    """Remove the staged payload; the row keeps its metadata."""
    if not job.staged_file:
        return
    try:
        job.staged_file.delete(save=False)
    except OSError:
        logger.warning("Could not remove staged payload for job %s", job.id, exc_info=True)
    UploadJob.objects.filter(pk=job.pk).update(staged_file="")

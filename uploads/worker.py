"""
Single-flight upload worker.

One instance executes at most one job at a time: it claims the oldest pending
job, uploads the staged payload, writes the URL back to the movie and, for an
original video, runs the transcoding cascade. A failing job is marked failed
and the loop moves on.
"""
import io
import logging
import os
import socket
import threading
from dataclasses import asdict, dataclass
from typing import Optional
from uuid import uuid4

from django.conf import settings
from django.db import close_old_connections

from uploads.exceptions import UploadQueueError
from uploads.models import UploadJob
from uploads.services import queue, transcoding, writeback
from uploads.services.images import jpeg_name, optimize_image
from uploads.services.storage import StorageUploader, UploadResult
from uploads.utils import guess_kind

logger = logging.getLogger(__name__)

IMAGE_FILE_TYPES = (UploadJob.FileType.THUMBNAIL, UploadJob.FileType.POSTER)


@dataclass
class JobOutcome:
    job_id: str
    success: bool
    error: Optional[str] = None
    storage_url: Optional[str] = None
    derived_jobs: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


class UploadWorker:
    def __init__(self, worker_id: str | None = None, uploader: StorageUploader | None = None,
                 lease_seconds: int | None = None):
        self.worker_id = worker_id or default_worker_id()
        self.lease_seconds = lease_seconds or settings.UPLOAD_WORKER_LEASE_SECONDS
        self._uploader = uploader
        self._in_flight = threading.Lock()
        self._stop = threading.Event()

    @property
    def uploader(self) -> StorageUploader:
        if self._uploader is None:
            self._uploader = StorageUploader()
        return self._uploader

    @property
    def is_executing(self) -> bool:
        return self._in_flight.locked()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    def tick(self) -> Optional[JobOutcome]:
        """Claim and execute one job unless this worker is already busy."""
        if not self._in_flight.acquire(blocking=False):
            return None
        try:
            queue.reclaim_expired()
            job = queue.claim_next(self.worker_id, self.lease_seconds)
            if job is None:
                return None
            return self.execute(job)
        except Exception:
            logger.exception("Upload worker %s tick failed", self.worker_id)
            return None
        finally:
            self._in_flight.release()

    def drain(self, count: int = 10) -> list[JobOutcome]:
        """Process up to `count` pending jobs right now, one after another."""
        results = []
        with self._in_flight:
            queue.reclaim_expired()
            for _ in range(max(0, count)):
                job = queue.claim_next(self.worker_id, self.lease_seconds)
                if job is None:
                    break
                results.append(self.execute(job))
        return results

    def run_forever(self, interval: float | None = None) -> None:
        interval = interval or settings.UPLOAD_WORKER_INTERVAL
        logger.info("Starting upload worker %s (checking every %ss)", self.worker_id, interval)
        while not self._stop.is_set():
            close_old_connections()
            self.tick()
            self._stop.wait(interval)
        logger.info("Upload worker %s stopped", self.worker_id)

    def stop(self) -> None:
        self._stop.set()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def execute(self, job: UploadJob) -> JobOutcome:
        """Run the pipeline for a job this worker has already claimed."""
        logger.info("Processing upload job %s (%s: %s)", job.id, job.file_type, job.file_name)
        try:
            result = self._upload(job)
            job = queue.complete_job(job, key=result.key, url=result.url, worker_id=self.worker_id)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error("Upload job %s failed: %s", job.id, message, exc_info=True)
            queue.fail_job(job.id, message)
            return JobOutcome(job_id=str(job.id), success=False, error=message)

        writeback.apply_upload_result(job)
        derived = transcoding.run_cascade(job) if transcoding.should_cascade(job) else []
        queue.release_payload(job)

        logger.info("Completed upload job %s -> %s", job.id, job.storage_url)
        return JobOutcome(
            job_id=str(job.id),
            success=True,
            storage_url=job.storage_url,
            derived_jobs=len(derived),
        )

    def _progress_callback(self, job: UploadJob):
        def on_progress(percent: int, uploaded: int) -> None:
            try:
                queue.record_progress(job.id, percent, uploaded, self.worker_id, self.lease_seconds)
            except Exception:
                logger.warning("Error updating progress for job %s", job.id, exc_info=True)
        return on_progress

    def _should_optimize(self, job: UploadJob) -> bool:
        return (
            settings.UPLOAD_OPTIMIZE_IMAGES
            and job.file_type in IMAGE_FILE_TYPES
            and guess_kind(job.file_name) == "image"
        )

    def _upload(self, job: UploadJob) -> UploadResult:
        if not job.staged_file:
            raise UploadQueueError(f"Staged payload for job {job.id} is missing")

        on_progress = self._progress_callback(job)
        with job.staged_file.open("rb") as source:
            if self._should_optimize(job):
                data = optimize_image(source)
                return self.uploader.upload(
                    io.BytesIO(data), len(data), "image/jpeg", job.folder, jpeg_name(job.file_name), on_progress
                )
            return self.uploader.upload(
                source, job.file_size, job.mime_type, job.folder, job.file_name, on_progress
            )

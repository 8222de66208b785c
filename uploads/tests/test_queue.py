"""
Tests for uploads/services/queue.py
"""
import io
from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from catalog.models import Movie
from uploads.exceptions import InvalidStateError, ValidationError
from uploads.models import UploadJob
from uploads.services import queue
from uploads.tests.base import UploadTestMixin


class EnqueueTest(UploadTestMixin, TestCase):

    def test_enqueued_job_starts_pending_at_zero(self):
        job = self.enqueue("thumbnail", b"jpeg-bytes")

        self.assertEqual(job.status, UploadJob.Status.PENDING)
        self.assertEqual(job.progress, 0)
        self.assertEqual(job.uploaded_size, 0)
        self.assertEqual(job.file_size, len(b"jpeg-bytes"))
        self.assertEqual(job.mime_type, "image/jpeg")
        self.assertEqual(job.folder, "thumbnails")
        self.assertEqual(job.user, self.user)
        self.assertEqual(job.storage_url, "")
        self.assertEqual(job.error, "")

    def test_payload_is_staged_not_stored_on_row(self):
        job = self.enqueue("subtitle", b"WEBVTT\n\n")

        self.assertTrue(job.staged_file.name.startswith("staging/"))
        with job.staged_file.open("rb") as fh:
            self.assertEqual(fh.read(), b"WEBVTT\n\n")

    def test_accepts_file_objects(self):
        job = queue.enqueue(queue.EnqueueSpec(
            movie_id=self.movie.pk,
            file_type="video",
            file_name="clip.mp4",
            file_bytes=io.BytesIO(b"0123456789"),
            folder="movies",
            metadata={"quality": "720p", "isOriginal": True},
        ))

        self.assertEqual(job.file_size, 10)
        self.assertEqual(job.mime_type, "video/mp4")
        self.assertIsNone(job.user)
        self.assertEqual(job.metadata, {"quality": "720p", "isOriginal": True})

    def test_same_file_twice_creates_two_jobs(self):
        first = self.enqueue("poster")
        second = self.enqueue("poster")

        self.assertNotEqual(first.pk, second.pk)
        self.assertEqual(UploadJob.objects.filter(movie=self.movie, file_type="poster").count(), 2)

    def test_rejects_missing_fields(self):
        base = dict(
            movie_id=self.movie.pk,
            file_type="thumbnail",
            file_name="thumb.jpg",
            file_bytes=b"x",
            folder="thumbnails",
        )
        for field_name, bad in (
            ("movie_id", None),
            ("file_bytes", None),
            ("file_bytes", b""),
            ("file_type", ""),
            ("file_type", "trailer"),
            ("folder", ""),
            ("folder", "/"),
            ("file_name", ""),
        ):
            with self.subTest(field=field_name, value=bad):
                with self.assertRaises(ValidationError):
                    queue.enqueue(queue.EnqueueSpec(**{**base, field_name: bad}))

        self.assertEqual(UploadJob.objects.count(), 0)

    def test_rejects_size_that_disagrees_with_payload(self):
        for payload in (b"0123456789", io.BytesIO(b"0123456789")):
            with self.subTest(payload=type(payload).__name__):
                with self.assertRaises(ValidationError):
                    queue.enqueue(queue.EnqueueSpec(
                        movie_id=self.movie.pk,
                        file_type="video",
                        file_name="clip.mp4",
                        file_bytes=payload,
                        file_size=6,
                        folder="movies",
                    ))

        self.assertEqual(UploadJob.objects.count(), 0)

    def test_matching_declared_size_is_accepted(self):
        job = queue.enqueue(queue.EnqueueSpec(
            movie_id=self.movie.pk,
            file_type="video",
            file_name="clip.mp4",
            file_bytes=b"0123456789",
            file_size=10,
            folder="movies",
        ))

        self.assertEqual(job.file_size, 10)

    def test_rejects_unknown_movie(self):
        with self.assertRaises(ValidationError):
            queue.enqueue(queue.EnqueueSpec(
                movie_id=999999,
                file_type="thumbnail",
                file_name="thumb.jpg",
                file_bytes=b"x",
                folder="thumbnails",
            ))
        self.assertEqual(UploadJob.objects.count(), 0)


class PendingBatchTest(UploadTestMixin, TestCase):

    def test_oldest_first(self):
        jobs = [self.enqueue("thumbnail") for _ in range(3)]
        base = timezone.now()
        # newest row gets the oldest timestamp
        for offset, job in zip((3, 2, 1), jobs):
            UploadJob.objects.filter(pk=job.pk).update(created_at=base - timedelta(minutes=offset))

        batch = queue.pending_batch(2)

        self.assertEqual([j.pk for j in batch], [jobs[0].pk, jobs[1].pk])

    def test_only_pending(self):
        done = self.set_status(self.enqueue(), UploadJob.Status.COMPLETED)
        pending = self.enqueue()

        self.assertEqual([j.pk for j in queue.pending_batch(10)], [pending.pk])
        self.assertNotIn(done.pk, [j.pk for j in queue.pending_batch(10)])

    def test_zero_limit(self):
        self.enqueue()
        self.assertEqual(queue.pending_batch(0), [])


class StatusForEntityTest(UploadTestMixin, TestCase):

    def test_no_jobs(self):
        result = queue.status_for_entity(self.movie.pk)

        self.assertEqual(result["status"], "no-jobs")
        self.assertEqual(result["overall_progress"], 0)
        self.assertEqual(result["jobs"], [])

    def test_all_completed(self):
        for _ in range(2):
            self.set_status(self.enqueue(), UploadJob.Status.COMPLETED, progress=100)

        result = queue.status_for_entity(self.movie.pk)

        self.assertEqual(result["status"], "completed")
        self.assertEqual(result["overall_progress"], 100)
        self.assertEqual(result["completed_jobs"], 2)

    def test_any_failed_wins(self):
        self.set_status(self.enqueue(), UploadJob.Status.COMPLETED, progress=100)
        self.set_status(self.enqueue(), UploadJob.Status.PROCESSING, progress=40)
        self.set_status(self.enqueue(), UploadJob.Status.FAILED, progress=10, error="boom")

        result = queue.status_for_entity(self.movie.pk)

        self.assertEqual(result["status"], "failed")
        self.assertEqual(result["failed_jobs"], 1)
        self.assertEqual(result["overall_progress"], round((100 + 40 + 10) / 3))

    def test_processing_without_failures(self):
        self.set_status(self.enqueue(), UploadJob.Status.COMPLETED, progress=100)
        self.set_status(self.enqueue(), UploadJob.Status.PROCESSING, progress=50)

        result = queue.status_for_entity(self.movie.pk)

        self.assertEqual(result["status"], "processing")
        self.assertEqual(result["overall_progress"], 75)

    def test_completed_and_pending_is_pending(self):
        self.set_status(self.enqueue(), UploadJob.Status.COMPLETED, progress=100)
        self.enqueue()

        self.assertEqual(queue.status_for_entity(self.movie.pk)["status"], "pending")

    def test_scoped_to_movie(self):
        other = Movie.objects.create(title="Other Movie")
        self.set_status(self.enqueue(movie=other), UploadJob.Status.FAILED)

        self.assertEqual(queue.status_for_entity(self.movie.pk)["status"], "no-jobs")


class RetryTest(UploadTestMixin, TestCase):

    def test_retry_failed_resets_job(self):
        job = self.set_status(
            self.enqueue(),
            UploadJob.Status.FAILED,
            progress=60,
            uploaded_size=5,
            error="S3 upload failed: timeout",
            started_at=timezone.now(),
            completed_at=timezone.now(),
        )

        job = queue.retry(job.pk)

        self.assertEqual(job.status, UploadJob.Status.PENDING)
        self.assertEqual(job.progress, 0)
        self.assertEqual(job.uploaded_size, 0)
        self.assertEqual(job.error, "")
        self.assertIsNone(job.started_at)
        self.assertIsNone(job.completed_at)
        self.assertEqual(job.retry_count, 1)
        self.assertTrue(job.staged_file)

    def test_retry_non_failed_is_rejected_and_untouched(self):
        for status in (UploadJob.Status.PENDING, UploadJob.Status.PROCESSING, UploadJob.Status.COMPLETED):
            with self.subTest(status=status):
                job = self.set_status(self.enqueue(), status, progress=30)
                before = UploadJob.objects.values().get(pk=job.pk)

                with self.assertRaises(InvalidStateError):
                    queue.retry(job.pk)

                self.assertEqual(UploadJob.objects.values().get(pk=job.pk), before)


class DeleteJobTest(UploadTestMixin, TestCase):

    def test_terminal_jobs_can_be_deleted(self):
        job = self.set_status(self.enqueue(), UploadJob.Status.FAILED)
        storage, name = job.staged_file.storage, job.staged_file.name

        queue.delete_job(job.pk)

        self.assertFalse(UploadJob.objects.filter(pk=job.pk).exists())
        self.assertFalse(storage.exists(name))

    def test_active_jobs_cannot_be_deleted(self):
        for status in (UploadJob.Status.PENDING, UploadJob.Status.PROCESSING):
            with self.subTest(status=status):
                job = self.set_status(self.enqueue(), status)
                with self.assertRaises(InvalidStateError):
                    queue.delete_job(job.pk)
                self.assertTrue(UploadJob.objects.filter(pk=job.pk).exists())


class ClaimTest(UploadTestMixin, TestCase):

    def test_claim_marks_processing_with_lease(self):
        job = self.enqueue()

        claimed = queue.claim_next("worker-a", lease_seconds=60)

        self.assertEqual(claimed.pk, job.pk)
        self.assertEqual(claimed.status, UploadJob.Status.PROCESSING)
        self.assertEqual(claimed.locked_by, "worker-a")
        self.assertIsNotNone(claimed.started_at)
        self.assertGreater(claimed.lease_expires_at, timezone.now())

    def test_claimed_job_is_not_claimed_again(self):
        self.enqueue()

        self.assertIsNotNone(queue.claim_next("worker-a"))
        self.assertIsNone(queue.claim_next("worker-b"))

    def test_record_progress_is_monotonic_and_owner_only(self):
        self.enqueue(payload=b"x" * 100)
        job = queue.claim_next("worker-a")

        queue.record_progress(job.pk, 50, 50, "worker-a")
        queue.record_progress(job.pk, 20, 20, "worker-a")
        queue.record_progress(job.pk, 90, 90, "worker-b")

        job.refresh_from_db()
        self.assertEqual(job.progress, 50)
        self.assertEqual(job.uploaded_size, 50)

    def test_complete_requires_owner(self):
        self.enqueue()
        job = queue.claim_next("worker-a")

        with self.assertRaises(InvalidStateError):
            queue.complete_job(job, key="k", url="https://example.com/k", worker_id="worker-b")

        job = queue.complete_job(job, key="k", url="https://example.com/k", worker_id="worker-a")
        self.assertEqual(job.status, UploadJob.Status.COMPLETED)
        self.assertEqual(job.progress, 100)
        self.assertEqual(job.uploaded_size, job.file_size)

    def test_fail_only_from_processing(self):
        job = self.enqueue()
        self.assertFalse(queue.fail_job(job.pk, "nope"))

        queue.claim_next("worker-a")
        self.assertTrue(queue.fail_job(job.pk, "x" * 5000))

        job.refresh_from_db()
        self.assertEqual(job.status, UploadJob.Status.FAILED)
        self.assertEqual(len(job.error), queue.ERROR_MAX_LENGTH)
        self.assertIsNotNone(job.completed_at)


class ReclaimExpiredTest(UploadTestMixin, TestCase):

    def test_expired_lease_fails_job(self):
        self.enqueue()
        job = queue.claim_next("crashed-worker", lease_seconds=60)
        UploadJob.objects.filter(pk=job.pk).update(lease_expires_at=timezone.now() - timedelta(seconds=1))

        self.assertEqual(queue.reclaim_expired(), 1)

        job.refresh_from_db()
        self.assertEqual(job.status, UploadJob.Status.FAILED)
        self.assertEqual(job.error, queue.LEASE_EXPIRED_ERROR)
        self.assertEqual(job.locked_by, "")

    def test_live_lease_untouched(self):
        self.enqueue()
        job = queue.claim_next("busy-worker", lease_seconds=600)

        self.assertEqual(queue.reclaim_expired(), 0)

        job.refresh_from_db()
        self.assertEqual(job.status, UploadJob.Status.PROCESSING)


class QueueStatsTest(UploadTestMixin, TestCase):

    def test_counts_per_status(self):
        self.enqueue()
        self.enqueue()
        self.set_status(self.enqueue(), UploadJob.Status.FAILED)

        stats = queue.queue_stats()

        self.assertEqual(stats["pending"], 2)
        self.assertEqual(stats["failed"], 1)
        self.assertEqual(stats["processing"], 0)
        self.assertEqual(stats["total"], 3)

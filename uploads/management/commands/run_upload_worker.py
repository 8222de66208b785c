import signal

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from uploads.worker import UploadWorker


class Command(BaseCommand):
    help = "Run the upload worker (polls the DB for pending upload jobs)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--interval",
            type=float,
            default=None,
            help="Seconds between polls (default: UPLOAD_WORKER_INTERVAL).",
        )
        parser.add_argument("--worker-id", default=None, help="Identity recorded on claimed jobs.")
        parser.add_argument(
            "--drain",
            type=int,
            default=None,
            metavar="N",
            help="Process up to N pending jobs now and exit instead of polling.",
        )

    def handle(self, *args, **opts):
        if not settings.S3_BUCKET:
            raise CommandError("S3_BUCKET not set")

        worker = UploadWorker(worker_id=opts["worker_id"])

        if opts["drain"] is not None:
            results = worker.drain(opts["drain"])
            for r in results:
                if r.success:
                    self.stdout.write(self.style.SUCCESS(f"{r.job_id} completed {r.storage_url}"))
                else:
                    self.stdout.write(self.style.ERROR(f"{r.job_id} failed: {r.error}"))
            self.stdout.write(f"Processed {len(results)} jobs")
            return

        def _shutdown(signum, frame):
            self.stdout.write("Stopping upload worker...")
            worker.stop()

        signal.signal(signal.SIGINT, _shutdown)
        signal.signal(signal.SIGTERM, _shutdown)

        self.stdout.write(self.style.SUCCESS(f"Upload worker {worker.worker_id} started"))
        worker.run_forever(opts["interval"])

from celery import shared_task

from .worker import UploadWorker

_worker = None


def get_worker() -> UploadWorker:
    """One worker per process so the single-flight guard covers every task run here."""
    global _worker
    if _worker is None:
        _worker = UploadWorker()
    return _worker


@shared_task(ignore_result=True)
def poll_upload_queue():
    """Beat-scheduled tick: claim and execute at most one pending job."""
    outcome = get_worker().tick()
    return outcome.as_dict() if outcome else None


@shared_task(bind=True)
def drain_upload_queue(self, count: int = 10):
    return [o.as_dict() for o in get_worker().drain(count)]

import os
from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "media_ingest.settings")

celery_app = Celery("media_ingest")
celery_app.config_from_object("django.conf:settings", namespace="CELERY")

# Uploads can run for minutes; a worker should not reserve ticks it cannot start.
celery_app.conf.update(
    worker_prefetch_multiplier=1,
    beat_max_loop_interval=30,
)
celery_app.autodiscover_tasks(["uploads"])

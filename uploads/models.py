import uuid
from django.conf import settings
from django.db import models


# quality assumed for a video upload that carries none
DEFAULT_VIDEO_QUALITY = "1080p"


def default_max_retries():
    return settings.UPLOAD_DEFAULT_MAX_RETRIES


class UploadJob(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        COMPLETED = "completed"
        FAILED = "failed"

    class FileType(models.TextChoices):
        VIDEO = "video"
        THUMBNAIL = "thumbnail"
        POSTER = "poster"
        SUBTITLE = "subtitle"

    TERMINAL_STATUSES = (Status.COMPLETED, Status.FAILED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    movie = models.ForeignKey("catalog.Movie", on_delete=models.CASCADE, related_name="upload_jobs")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="upload_jobs",
    )

    file_type = models.CharField(max_length=16, choices=FileType.choices)
    file_name = models.CharField(max_length=255)
    # Payload is spilled to staging storage; the row only keeps the reference
    staged_file = models.FileField(max_length=512, blank=True, default="")
    file_size = models.BigIntegerField(default=0)
    mime_type = models.CharField(max_length=128)
    folder = models.CharField(max_length=255)

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    progress = models.PositiveSmallIntegerField(default=0)  # 0..100
    uploaded_size = models.BigIntegerField(default=0)

    storage_key = models.CharField(max_length=1024, blank=True, default="")
    storage_url = models.URLField(max_length=2048, blank=True, default="")
    error = models.TextField(blank=True, default="")

    retry_count = models.PositiveIntegerField(default=0)
    max_retries = models.PositiveIntegerField(default=default_max_retries)

    # video: {"quality": "1080p", "isOriginal": true}; subtitle: {"language", "languageCode"}
    metadata = models.JSONField(default=dict, blank=True)

    locked_by = models.CharField(max_length=128, blank=True, default="")
    lease_expires_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="uploadjob_status_created"),
            models.Index(fields=["movie", "status"], name="uploadjob_movie_status"),
            models.Index(fields=["file_type", "status"], name="uploadjob_type_status"),
        ]

    @property
    def quality(self):
        return (self.metadata or {}).get("quality")

    @property
    def is_original(self) -> bool:
        return bool((self.metadata or {}).get("isOriginal"))

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def __str__(self):
        return f"{self.id} {self.file_type}:{self.file_name} {self.status}"

import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import uploads.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="UploadJob",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("file_type", models.CharField(choices=[("video", "Video"), ("thumbnail", "Thumbnail"), ("poster", "Poster"), ("subtitle", "Subtitle")], max_length=16)),
                ("file_name", models.CharField(max_length=255)),
                ("staged_file", models.FileField(blank=True, default="", max_length=512, upload_to="")),
                ("file_size", models.BigIntegerField(default=0)),
                ("mime_type", models.CharField(max_length=128)),
                ("folder", models.CharField(max_length=255)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("processing", "Processing"), ("completed", "Completed"), ("failed", "Failed")], default="pending", max_length=16)),
                ("progress", models.PositiveSmallIntegerField(default=0)),
                ("uploaded_size", models.BigIntegerField(default=0)),
                ("storage_key", models.CharField(blank=True, default="", max_length=1024)),
                ("storage_url", models.URLField(blank=True, default="", max_length=2048)),
                ("error", models.TextField(blank=True, default="")),
                ("retry_count", models.PositiveIntegerField(default=0)),
                ("max_retries", models.PositiveIntegerField(default=uploads.models.default_max_retries)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("locked_by", models.CharField(blank=True, default="", max_length=128)),
                ("lease_expires_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("movie", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="upload_jobs", to="catalog.movie")),
                ("user", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="upload_jobs", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="uploadjob_status_created"),
                    models.Index(fields=["movie", "status"], name="uploadjob_movie_status"),
                    models.Index(fields=["file_type", "status"], name="uploadjob_type_status"),
                ],
            },
        ),
    ]

from django.contrib import admin, messages

from .models import UploadJob
from .services import queue


@admin.register(UploadJob)
class UploadJobAdmin(admin.ModelAdmin):
    list_display = ("id", "movie", "file_type", "file_name", "status", "progress", "retry_count", "created_at")
    list_filter = ("status", "file_type")
    search_fields = ("id", "file_name", "movie__title")
    # state is owned by the queue service and the worker
    readonly_fields = (
        "status",
        "progress",
        "uploaded_size",
        "error",
        "metadata",
        "staged_file",
        "storage_key",
        "storage_url",
        "retry_count",
        "locked_by",
        "lease_expires_at",
        "started_at",
        "completed_at",
    )

    def has_add_permission(self, request):
        # jobs are created through the upload endpoint so the payload gets staged
        return False

    def has_delete_permission(self, request, obj=None):
        if obj is not None and not obj.is_terminal:
            return False
        return super().has_delete_permission(request, obj)

    def delete_model(self, request, obj):
        queue.delete_job(obj.pk)

    def delete_queryset(self, request, queryset):
        active = queryset.exclude(status__in=UploadJob.TERMINAL_STATUSES)
        if active.exists():
            self.message_user(
                request,
                f"Skipped {active.count()} pending or processing job(s)",
                level=messages.WARNING,
            )
        for job in queryset.filter(status__in=UploadJob.TERMINAL_STATUSES):
            queue.delete_job(job.pk)

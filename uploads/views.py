from django.conf import settings
from django.shortcuts import get_object_or_404
from rest_framework import status, views
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from catalog.models import Movie

from .exceptions import InvalidStateError, ValidationError
from .models import UploadJob
from .serializers import (
    JobListSerializer,
    JobSerializer,
    ProcessJobsSerializer,
    UploadCreateSerializer,
)
from .services import queue
from .services.storage import create_presigned_get
from .tasks import get_worker


class QueueAPIView(views.APIView):
    # Access control belongs to the gateway in front of this service
    permission_classes = [AllowAny]


class MovieUploadCreateView(QueueAPIView):
    """
    Accepts one file for a movie, stages it and queues it for upload.
    Returns immediately; the worker ships the file to object storage.
    """

    def post(self, request, movie_id):
        movie = get_object_or_404(Movie, pk=movie_id)
        ser = UploadCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        upload = ser.validated_data["file"]
        file_type = ser.validated_data["file_type"]
        folder = ser.validated_data.get("folder") or queue.DEFAULT_FOLDERS[file_type]
        user = request.user if request.user.is_authenticated else None

        try:
            job = queue.enqueue(
                queue.EnqueueSpec(
                    movie_id=movie.pk,
                    user_id=user.pk if user else None,
                    file_type=file_type,
                    file_name=upload.name,
                    file_bytes=upload,
                    file_size=upload.size,
                    mime_type=upload.content_type or None,
                    folder=folder,
                    metadata=ser.metadata(),
                )
            )
        except ValidationError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(JobSerializer(job).data, status=status.HTTP_202_ACCEPTED)


class MovieUploadProgressView(QueueAPIView):
    def get(self, request, movie_id):
        movie = get_object_or_404(Movie, pk=movie_id)
        return Response(queue.status_for_entity(movie.pk))


class JobListView(QueueAPIView):
    """All jobs, newest first. Filters: status, file_type, movie."""

    def get(self, request):
        qs = UploadJob.objects.all().order_by("-created_at")
        for param, lookup in (("status", "status"), ("file_type", "file_type"), ("movie", "movie_id")):
            value = request.query_params.get(param)
            if not value:
                continue
            if lookup == "movie_id" and not value.isdigit():
                return Response({"detail": "Invalid movie ID"}, status=status.HTTP_400_BAD_REQUEST)
            qs = qs.filter(**{lookup: value})

        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(JobListSerializer(page, many=True).data)


class PendingJobListView(QueueAPIView):
    """Pending jobs in the order the worker will claim them."""

    def get(self, request):
        qs = UploadJob.objects.filter(status=UploadJob.Status.PENDING).order_by("created_at", "id")
        file_type = request.query_params.get("file_type")
        if file_type:
            qs = qs.filter(file_type=file_type)

        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(JobListSerializer(page, many=True).data)


class JobDetailView(QueueAPIView):
    def get(self, request, job_id):
        job = get_object_or_404(UploadJob, pk=job_id)
        data = JobSerializer(job).data
        # Time-limited download link for private buckets
        data["download_url"] = create_presigned_get(job.storage_key) if job.storage_key else None
        return Response(data)

    def delete(self, request, job_id):
        get_object_or_404(UploadJob, pk=job_id)
        try:
            queue.delete_job(job_id)
        except InvalidStateError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(status=status.HTTP_204_NO_CONTENT)


class JobStatusView(QueueAPIView):
    def get(self, request, job_id):
        get_object_or_404(UploadJob, pk=job_id)
        return Response(queue.job_status(job_id))


class JobRetryView(QueueAPIView):
    def post(self, request, job_id):
        get_object_or_404(UploadJob, pk=job_id)
        try:
            job = queue.retry(job_id)
        except InvalidStateError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(
            {"id": str(job.id), "status": job.status, "file_type": job.file_type, "file_name": job.file_name}
        )


class WorkerProcessJobsView(QueueAPIView):
    """Operational trigger: drain up to `count` pending jobs synchronously."""

    def post(self, request):
        ser = ProcessJobsSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        results = get_worker().drain(ser.validated_data["count"])
        return Response({
            "detail": f"Processed {len(results)} jobs",
            "results": [r.as_dict() for r in results],
        })


class WorkerStatusView(QueueAPIView):
    def get(self, request):
        return Response({
            "queue": queue.queue_stats(),
            "worker": {
                "interval": settings.UPLOAD_WORKER_INTERVAL,
                "lease_seconds": settings.UPLOAD_WORKER_LEASE_SECONDS,
                "multipart_threshold": settings.UPLOAD_MULTIPART_THRESHOLD,
                "part_size": settings.UPLOAD_PART_SIZE,
            },
        })

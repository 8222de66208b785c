from django.urls import path
from .views import (
    JobDetailView,
    JobListView,
    JobRetryView,
    JobStatusView,
    MovieUploadCreateView,
    MovieUploadProgressView,
    PendingJobListView,
    WorkerProcessJobsView,
    WorkerStatusView,
)

urlpatterns = [
    path("movies/<int:movie_id>/uploads/", MovieUploadCreateView.as_view(), name="movie_upload_create"),
    path("movies/<int:movie_id>/upload-progress/", MovieUploadProgressView.as_view(), name="movie_upload_progress"),
    path("jobs/", JobListView.as_view(), name="job_list"),
    path("jobs/pending/", PendingJobListView.as_view(), name="job_pending"),
    path("jobs/<uuid:job_id>/", JobDetailView.as_view(), name="job_detail"),
    path("jobs/<uuid:job_id>/status/", JobStatusView.as_view(), name="job_status"),
    path("jobs/<uuid:job_id>/retry/", JobRetryView.as_view(), name="job_retry"),
    path("worker/process-jobs/", WorkerProcessJobsView.as_view(), name="worker_process_jobs"),
    path("worker/status/", WorkerStatusView.as_view(), name="worker_status"),
]

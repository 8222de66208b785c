import logging

from django.db import transaction

from catalog.models import Movie
from uploads.models import DEFAULT_VIDEO_QUALITY, UploadJob

logger = logging.getLogger(__name__)

DEFAULT_SUBTITLE_LANGUAGE = "English"
DEFAULT_SUBTITLE_LANGUAGE_CODE = "en"


def _apply(movie: Movie, job: UploadJob) -> list[str]:
    meta = job.metadata or {}

    if job.file_type == UploadJob.FileType.THUMBNAIL:
        movie.thumbnail = job.storage_url
        return ["thumbnail"]

    if job.file_type == UploadJob.FileType.POSTER:
        movie.poster = job.storage_url
        return ["poster"]

    if job.file_type == UploadJob.FileType.VIDEO:
        quality = meta.get("quality") or DEFAULT_VIDEO_QUALITY
        entry = {
            "quality": quality,
            "url": job.storage_url,
            "file_size": job.file_size,
            "is_original": bool(meta.get("isOriginal", False)),
        }
        videos = list(movie.videos or [])
        index = next((i for i, v in enumerate(videos) if v.get("quality") == quality), None)
        if index is None:
            videos.append(entry)
        else:
            videos[index] = entry
        movie.videos = videos
        return ["videos"]

    if job.file_type == UploadJob.FileType.SUBTITLE:
        movie.subtitles = list(movie.subtitles or []) + [{
            "language": meta.get("language") or DEFAULT_SUBTITLE_LANGUAGE,
            "language_code": meta.get("languageCode") or DEFAULT_SUBTITLE_LANGUAGE_CODE,
            "url": job.storage_url,
        }]
        return ["subtitles"]

    return []


def apply_upload_result(job: UploadJob) -> bool:
    """
    Copy a completed job's storage URL into its movie.

    Returns False when there was nothing to update. Errors are logged and
    swallowed: the upload itself already succeeded.
    """
    try:
        with transaction.atomic():
            movie = Movie.objects.select_for_update().filter(pk=job.movie_id).first()
            if movie is None:
                logger.warning("Movie %s for job %s no longer exists; skipping write-back", job.movie_id, job.id)
                return False
            fields = _apply(movie, job)
            if not fields:
                return False
            movie.save(update_fields=fields + ["updated_at"])
    except Exception:
        logger.exception("Failed to update movie %s with upload result of job %s", job.movie_id, job.id)
        return False

    logger.info("Movie %s %s updated from job %s", job.movie_id, "/".join(fields), job.id)
    return True

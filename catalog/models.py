from django.db import models
from django.utils.text import slugify


class Movie(models.Model):
    """Owning entity for upload jobs; the worker writes storage URLs back here."""

    title = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255, unique=True, blank=True)
    description = models.TextField(blank=True, default="")

    thumbnail = models.URLField(max_length=1024, blank=True, default="")
    poster = models.URLField(max_length=1024, blank=True, default="")
    # [{quality, url, file_size, is_original}]
    videos = models.JSONField(default=list, blank=True)
    # [{language, language_code, url}]
    subtitles = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.title)[:255] or "movie"
        super().save(*args, **kwargs)

    def video_for(self, quality: str):
        return next((v for v in self.videos or [] if v.get("quality") == quality), None)

    def __str__(self):
        return self.title

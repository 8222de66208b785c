from rest_framework import serializers
from .models import DEFAULT_VIDEO_QUALITY, UploadJob

ALLOWED_QUALITIES = ("480p", "720p", "1080p")


class JobSerializer(serializers.ModelSerializer):
    movie = serializers.PrimaryKeyRelatedField(read_only=True)
    user = serializers.PrimaryKeyRelatedField(read_only=True)

    class Meta:
        model = UploadJob
        fields = [
            "id",
            "movie",
            "user",
            "file_type",
            "file_name",
            "file_size",
            "mime_type",
            "folder",
            "status",
            "progress",
            "uploaded_size",
            "storage_key",
            "storage_url",
            "error",
            "metadata",
            "retry_count",
            "max_retries",
            "created_at",
            "started_at",
            "completed_at",
            "updated_at",
        ]


class JobListSerializer(serializers.ModelSerializer):
    class Meta:
        model = UploadJob
        fields = [
            "id",
            "movie",
            "file_type",
            "file_name",
            "file_size",
            "status",
            "progress",
            "uploaded_size",
            "storage_url",
            "error",
            "retry_count",
            "max_retries",
            "created_at",
        ]


class UploadCreateSerializer(serializers.Serializer):
    file_type = serializers.ChoiceField(choices=UploadJob.FileType.choices)
    file = serializers.FileField()
    folder = serializers.CharField(required=False, allow_blank=True)
    # video only
    quality = serializers.ChoiceField(choices=ALLOWED_QUALITIES, required=False)
    # subtitle only
    language = serializers.CharField(required=False, max_length=64)
    language_code = serializers.CharField(required=False, max_length=16)

    def metadata(self) -> dict:
        data = self.validated_data
        if data["file_type"] == UploadJob.FileType.VIDEO:
            return {"quality": data.get("quality") or DEFAULT_VIDEO_QUALITY, "isOriginal": True}
        if data["file_type"] == UploadJob.FileType.SUBTITLE:
            return {
                "language": data.get("language") or "English",
                "languageCode": data.get("language_code") or "en",
            }
        return {}


class ProcessJobsSerializer(serializers.Serializer):
    count = serializers.IntegerField(required=False, default=10, min_value=1, max_value=100)

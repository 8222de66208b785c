"""
Storage upload engine.

Small payloads go up in a single PUT; anything at or above
``UPLOAD_MULTIPART_THRESHOLD`` uses the S3 multipart protocol so the caller
gets per-part progress. Progress is reported as a percentage (0..100) plus the
number of bytes the store has acknowledged.
"""
import logging
import math
import os
import time
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
)
from django.conf import settings

from uploads.exceptions import PermanentAuthError, TransientUploadError, UploadError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

# Multipart progress weighting: initiate / parts / completion acknowledgment
INITIATE_WEIGHT = 5
PARTS_WEIGHT = 90

AUTH_ERROR_CODES = {
    "AccessDenied",
    "AllAccessDisabled",
    "AccountProblem",
    "ExpiredToken",
    "InvalidAccessKeyId",
    "InvalidToken",
    "SignatureDoesNotMatch",
    "TokenRefreshRequired",
}


@dataclass(frozen=True)
class UploadResult:
    url: str
    key: str


def _client_config() -> BotoConfig:
    return BotoConfig(
        s3={"addressing_style": "path" if settings.S3_FORCE_PATH_STYLE else "auto"},
        signature_version="s3v4",
        retries={"max_attempts": 3, "mode": "standard"},
    )


def get_s3_client():
    """
    SDK client for server-side uploads.
    """
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    return session.client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT_URL,  # None -> AWS default endpoint
        config=_client_config(),
    )


def get_presign_client():
    """
    Separate client for generating presigned URLs that the browser will call.
    Uses S3_PUBLIC_ENDPOINT so the URL host matches what the client reaches.
    """
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    return session.client(
        "s3",
        endpoint_url=settings.S3_PUBLIC_ENDPOINT,
        config=_client_config(),
    )


def create_presigned_get(key: str, expires: int | None = None) -> str:
    """
    Create a presigned GET URL to download an object.
    """
    s3 = get_presign_client()
    return s3.generate_presigned_url(
        ClientMethod="get_object",
        Params={"Bucket": settings.S3_BUCKET, "Key": key},
        ExpiresIn=expires or settings.S3_PRESIGN_EXPIRE_SECONDS,
        HttpMethod="GET",
    )


def object_url(key: str, *, bucket: str | None = None, region: str | None = None) -> str:
    """
    Canonical object URL for when the provider does not report a Location.

    A custom (public) endpoint gets path-style URLs. On AWS the default region
    uses the short virtual-hosted form, every other region carries its name.
    """
    bucket = bucket or settings.S3_BUCKET
    region = region if region is not None else settings.S3_REGION
    clean_key = key.lstrip("/")

    if settings.S3_PUBLIC_ENDPOINT:
        base = settings.S3_PUBLIC_ENDPOINT.rstrip("/")
        return f"{base}/{bucket}/{clean_key}"
    if not region or region == "us-east-1":
        return f"https://{bucket}.s3.amazonaws.com/{clean_key}"
    return f"https://{bucket}.s3.{region}.amazonaws.com/{clean_key}"


def build_key(folder: str, file_name: str) -> str:
    """`<folder>/<epoch millis>-<file name>`; folder slashes are normalised."""
    prefix = folder.strip("/").replace("\\", "/")
    name = os.path.basename(file_name.replace("\\", "/")) or "file"
    stamp = int(time.time() * 1000)
    return f"{prefix}/{stamp}-{name}" if prefix else f"{stamp}-{name}"


def classify_error(exc: Exception) -> UploadError:
    if isinstance(exc, UploadError):
        return exc
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return PermanentAuthError(f"S3 upload failed: {exc}")
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in AUTH_ERROR_CODES or status == 403:
            return PermanentAuthError(f"S3 upload failed: {exc}")
    return TransientUploadError(f"S3 upload failed: {exc}")


def delete_object(key: str, client=None) -> None:
    s3 = client or get_s3_client()
    s3.delete_object(Bucket=settings.S3_BUCKET, Key=key)


class StorageUploader:
    """Uploads one payload to the configured bucket, simple or multipart."""

    def __init__(
        self,
        client=None,
        *,
        bucket: str | None = None,
        multipart_threshold: int | None = None,
        part_size: int | None = None,
    ):
        self.client = client or get_s3_client()
        self.bucket = bucket or settings.S3_BUCKET
        self.multipart_threshold = multipart_threshold or settings.UPLOAD_MULTIPART_THRESHOLD
        self.part_size = part_size or settings.UPLOAD_PART_SIZE

    def uses_multipart(self, size: int) -> bool:
        return size >= self.multipart_threshold

    def upload(
        self,
        source: BinaryIO,
        size: int,
        mime_type: str,
        folder: str,
        file_name: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        key = build_key(folder, file_name)
        report = on_progress or (lambda percent, uploaded: None)
        try:
            if self.uses_multipart(size):
                return self._upload_multipart(source, size, key, mime_type, report)
            return self._upload_simple(source, size, key, mime_type, report)
        except (BotoCoreError, ClientError) as exc:
            raise classify_error(exc) from exc

    def _upload_simple(self, source, size, key, mime_type, report) -> UploadResult:
        # put_object gives no incremental feedback
        report(0, 0)
        report(50, 0)
        response = self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=source,
            ContentLength=size,
            ContentType=mime_type,
        )
        report(100, size)
        return UploadResult(url=self._url_from(response, key), key=key)

    def _upload_multipart(self, source, size, key, mime_type, report) -> UploadResult:
        total_parts = max(1, math.ceil(size / self.part_size))
        upload_id = None
        parts = []

        try:
            created = self.client.create_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                ContentType=mime_type,
            )
            upload_id = created["UploadId"]
            logger.info("Multipart upload %s started for %s (%d parts)", upload_id, key, total_parts)
            report(INITIATE_WEIGHT, 0)

            sent = 0
            for part_number in range(1, total_parts + 1):
                expected = min(self.part_size, size - sent)
                body = source.read(expected)
                if len(body) != expected:
                    raise TransientUploadError(
                        f"Payload ended early at part {part_number}: "
                        f"expected {expected} bytes, read {len(body)}"
                    )
                response = self.client.upload_part(
                    Bucket=self.bucket,
                    Key=key,
                    PartNumber=part_number,
                    UploadId=upload_id,
                    Body=body,
                )
                parts.append({"ETag": response["ETag"], "PartNumber": part_number})
                sent += expected
                report(INITIATE_WEIGHT + (part_number * PARTS_WEIGHT) // total_parts, sent)

            completed = self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
            report(100, size)
            return UploadResult(url=self._url_from(completed, key), key=key)
        except Exception:
            if upload_id:
                self._abort(key, upload_id)
            raise

    def _abort(self, key: str, upload_id: str) -> None:
        try:
            self.client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
        except Exception:
            logger.exception("Failed to abort multipart upload %s for %s", upload_id, key)

    def _url_from(self, response, key: str) -> str:
        location = (response or {}).get("Location")
        return location or object_url(key, bucket=self.bucket)

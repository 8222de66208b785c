class UploadQueueError(Exception):
    """Base class for upload queue errors."""


class ValidationError(UploadQueueError, ValueError):
    """Malformed enqueue request; raised before any job row exists."""


class InvalidStateError(UploadQueueError):
    """Operation not allowed for the job's current status."""


class UploadError(UploadQueueError):
    pass


class TransientUploadError(UploadError):
    """Network or provider failure mid-upload."""


class PermanentAuthError(UploadError):
    """Credential or permission failure against the object store."""


class ConversionError(UploadQueueError):
    def __init__(self, quality: str, message: str):
        super().__init__(f"{quality}: {message}")
        self.quality = quality

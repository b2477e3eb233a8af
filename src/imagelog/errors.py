class ImageLogError(Exception):
    pass


class ConfigError(ImageLogError):
    pass


class InvalidEvent(ImageLogError):
    pass


class NormalizationDepthExceeded(ImageLogError):
    pass


class MetadataKeyCollision(ImageLogError):
    pass


# --- COLLABORATOR ERRORS ---
class StorageError(ImageLogError):
    pass


class NotFound(StorageError):
    pass


class AccessDenied(StorageError):
    pass


class TransportError(StorageError):
    pass


class RecordStoreError(ImageLogError):
    pass


class RecordExists(RecordStoreError):
    pass


class ExifToolError(ImageLogError):
    pass


# --- PIPELINE STAGE ERRORS ---
class ProcessingFailed(ImageLogError):
    """Wraps a collaborator failure with the key being processed."""

    def __init__(self, key, cause):
        super().__init__(f"{key}: {cause}")
        self.key = key
        self.cause = cause


class DownloadFailed(ProcessingFailed):
    pass


class DerivationFailed(ProcessingFailed):
    pass


class ExtractionFailed(ProcessingFailed):
    pass


class UploadFailed(ProcessingFailed):
    pass


class PersistFailed(ProcessingFailed):
    pass

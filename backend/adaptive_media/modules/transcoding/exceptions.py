"""Transcoding errors.

``InputTooLarge``, ``ProbeFailed`` and ``SourceNotFound`` abort a whole job.
``EncodeFailed`` and ``UploadFailed`` only ever fail a single rendition and
are recorded in the manifest instead of propagating.
"""


class TranscodeError(Exception):
    """Base class for transcoding errors."""
    pass


class InputTooLarge(TranscodeError):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Source is {size / (1024 * 1024):.1f}MB, limit is {limit / (1024 * 1024):.0f}MB"
        )


class SourceNotFound(TranscodeError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Source not found: {path}")


class ProbeFailed(TranscodeError):
    pass


class EncodeFailed(TranscodeError):
    pass


class UploadFailed(TranscodeError):
    pass


class AssetNotFound(TranscodeError):
    def __init__(self, asset_id: str):
        self.asset_id = asset_id
        super().__init__(f"Media asset not found: {asset_id}")


class UnsupportedBucket(TranscodeError):
    def __init__(self, bucket: str):
        self.bucket = bucket
        super().__init__(f"Bucket {bucket!r} is not served by this deployment")

"""Batch file upload into the object store and knowledge-source registry."""

from woodpecker.upload.coordinator import (
    BatchResult,
    FileCandidate,
    Rejection,
    UploadCoordinator,
    UploadedFile,
    UploadStatus,
)

__all__ = [
    "BatchResult",
    "FileCandidate",
    "Rejection",
    "UploadCoordinator",
    "UploadStatus",
    "UploadedFile",
]

"""
Upload and playback domain models.
"""

from .models import (
    CompletedPart,
    MultipartSession,
    PlaybackLease,
    UploadFile,
    UploadSource,
    UploadStatus,
)
from .queue import UploadQueue

__all__ = [
    "CompletedPart",
    "MultipartSession",
    "PlaybackLease",
    "UploadFile",
    "UploadQueue",
    "UploadSource",
    "UploadStatus",
]

"""
Domain models for uploads and playback.

These are transient, in-memory objects. Nothing here is persisted; the
resulting object key is handed to an external metadata store once an
upload completes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePath
from typing import Optional, Protocol
from uuid import UUID, uuid4

from ..errors import InvalidTransitionError


class UploadSource(Protocol):
    """
    Byte source behind an upload.

    ``read`` returns the half-open range [start, end). Implementations
    must be safe to read out of order since parts can upload concurrently.
    """
    name: str
    content_type: str
    size: int

    async def read(self, start: int, end: int) -> bytes:
        ...


class UploadStatus(Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"


_ALLOWED_TRANSITIONS = {
    UploadStatus.PENDING: {UploadStatus.UPLOADING},
    UploadStatus.UPLOADING: {UploadStatus.COMPLETED, UploadStatus.ERROR},
    UploadStatus.COMPLETED: set(),
    UploadStatus.ERROR: set(),
}


@dataclass
class UploadFile:
    """
    One file the user queued for upload.

    Status only moves forward: pending -> uploading -> completed | error.
    Getting out of a terminal state means removing the file and adding
    it again.
    """
    source: UploadSource
    title: str = ""
    description: str = ""
    id: UUID = field(default_factory=uuid4)
    progress: int = 0
    status: UploadStatus = UploadStatus.PENDING
    error: Optional[str] = None
    object_key: Optional[str] = None
    get_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.title.strip():
            self.title = PurePath(self.source.name).stem or self.source.name

    @property
    def size(self) -> int:
        return self.source.size

    @property
    def is_finished(self) -> bool:
        return self.status in (UploadStatus.COMPLETED, UploadStatus.ERROR)

    def _move_to(self, status: UploadStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Cannot move upload {self.id} from {self.status.value} to {status.value}"
            )
        self.status = status

    def start(self) -> None:
        self._move_to(UploadStatus.UPLOADING)

    def report_progress(self, percent: float) -> None:
        """Record progress; values never go backwards and stay in 0..100."""
        value = max(0, min(100, int(percent)))
        if value > self.progress:
            self.progress = value

    def complete(self, object_key: str, get_url: Optional[str]) -> None:
        self._move_to(UploadStatus.COMPLETED)
        self.object_key = object_key
        self.get_url = get_url
        self.progress = 100

    def fail(self, message: str) -> None:
        self._move_to(UploadStatus.ERROR)
        self.error = message


@dataclass(frozen=True)
class CompletedPart:
    """A part the store acknowledged, with its integrity tag (ETag)."""
    part_number: int
    etag: str


@dataclass
class MultipartSession:
    """
    State of one in-progress multipart upload.

    Owned by exactly one orchestration flow. Parts may be acknowledged
    in any order; ``completed_parts`` always returns them ascending.
    """
    object_key: str
    upload_id: str
    content_type: str
    total_size: int
    part_count: int
    _parts: dict[int, str] = field(default_factory=dict, init=False, repr=False)

    def record_part(self, part_number: int, etag: str) -> None:
        if not 1 <= part_number <= self.part_count:
            raise ValueError(
                f"Part number {part_number} outside 1..{self.part_count}"
            )
        if part_number in self._parts:
            raise ValueError(f"Part {part_number} already recorded")
        if not etag:
            raise ValueError(f"Part {part_number} has no ETag")
        self._parts[part_number] = etag

    @property
    def acknowledged(self) -> int:
        return len(self._parts)

    @property
    def is_complete(self) -> bool:
        return len(self._parts) == self.part_count

    def completed_parts(self) -> list[CompletedPart]:
        return [
            CompletedPart(part_number=number, etag=self._parts[number])
            for number in sorted(self._parts)
        ]


@dataclass(frozen=True)
class PlaybackLease:
    """
    A signed playback URL and its validity window.

    Replaced, never mutated, on renewal. ``expires_at`` is None only
    for the degraded legacy-URL fallback, whose expiry is unknown.
    """
    object_key: Optional[str]
    url: str
    issued_at: datetime
    expires_at: Optional[datetime]

    @property
    def is_degraded(self) -> bool:
        return self.expires_at is None

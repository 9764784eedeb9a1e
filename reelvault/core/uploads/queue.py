"""
The user's upload queue.

Holds the files picked or dropped for upload, filters out anything that
isn't a video, and exposes the batch-level progress shown to the user.
"""

import logging
from typing import Iterable, Iterator, Optional
from uuid import UUID

from ..errors import InvalidTransitionError
from .models import UploadFile, UploadSource, UploadStatus

logger = logging.getLogger(__name__)


class UploadQueue:
    """Ordered collection of UploadFile entries."""

    def __init__(self, accepted_type_prefix: str = "video/") -> None:
        self._accepted_type_prefix = accepted_type_prefix
        self._files: dict[UUID, UploadFile] = {}

    def __iter__(self) -> Iterator[UploadFile]:
        return iter(list(self._files.values()))

    def __len__(self) -> int:
        return len(self._files)

    def get(self, file_id: UUID) -> UploadFile:
        return self._files[file_id]

    def add(
        self,
        source: UploadSource,
        title: Optional[str] = None,
        description: str = "",
    ) -> Optional[UploadFile]:
        """
        Queue a source for upload.

        Returns the new entry, or None when the content type is not
        accepted.
        """
        if self._accepted_type_prefix and not source.content_type.startswith(self._accepted_type_prefix):
            logger.warning(
                "Rejected file with unsupported type",
                extra={"file_name": source.name, "content_type": source.content_type},
            )
            return None

        item = UploadFile(source=source, title=title or "", description=description)
        self._files[item.id] = item
        return item

    def add_many(self, sources: Iterable[UploadSource]) -> list[UploadFile]:
        added = [self.add(source) for source in sources]
        return [item for item in added if item is not None]

    def remove(self, file_id: UUID) -> UploadFile:
        """
        Remove a pending or failed file.

        Removing a failed file and adding its source again is how an upload
        is retried. Uploading and completed files cannot be removed.
        """
        item = self._files[file_id]
        if item.status in (UploadStatus.UPLOADING, UploadStatus.COMPLETED):
            raise InvalidTransitionError(
                f"Only pending or failed files can be removed ({item.id} is {item.status.value})"
            )
        return self._files.pop(file_id)

    def pending(self) -> list[UploadFile]:
        """Pending files that have a usable title."""
        return [
            item for item in self._files.values()
            if item.status is UploadStatus.PENDING and item.title.strip()
        ]

    @property
    def overall_progress(self) -> int:
        """Mean of per-file percentages, 0 when the queue is empty."""
        if not self._files:
            return 0
        return round(sum(item.progress for item in self._files.values()) / len(self._files))

    def counts(self) -> dict[str, int]:
        result = {status.value: 0 for status in UploadStatus}
        for item in self._files.values():
            result[item.status.value] += 1
        return result

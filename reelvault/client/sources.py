"""
Byte sources for uploads.

The orchestrator reads files in ranges (one range per part), so sources
expose random access instead of a single stream.
"""

import asyncio
import mimetypes
from pathlib import Path
from typing import Optional, Union


class BytesSource:
    """In-memory source, mostly for tests and small generated files."""

    def __init__(self, name: str, data: bytes, content_type: str = "video/mp4") -> None:
        self.name = name
        self.content_type = content_type
        self._data = data
        self.size = len(data)

    async def read(self, start: int, end: int) -> bytes:
        return self._data[start:end]


class FileSource:
    """
    A file on disk.

    Reads run in a worker thread so a 5 MiB part read never blocks the
    event loop.
    """

    def __init__(self, path: Union[str, Path], content_type: Optional[str] = None) -> None:
        self._path = Path(path)
        self.name = self._path.name
        self.size = self._path.stat().st_size
        guessed, _ = mimetypes.guess_type(self.name)
        self.content_type = content_type or guessed or "application/octet-stream"

    def _read_range(self, start: int, end: int) -> bytes:
        with self._path.open("rb") as fh:
            fh.seek(start)
            return fh.read(end - start)

    async def read(self, start: int, end: int) -> bytes:
        return await asyncio.to_thread(self._read_range, start, end)

"""
Upload orchestration.

Drives each queued file through the gateway and straight to the object
store:

    simple path:    simple-upload -> PUT
    multipart path: initiate -> (get-part-url -> PUT) x N -> complete
                    any failure after initiate -> abort (best effort)

Bytes never pass through the gateway. It only hands out presigned URLs
and signs the few calls that cannot be presigned.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional, Union

import httpx

from ..core.errors import NetworkError, StoreError, StoreProtocolError, UpstreamHttpError
from ..core.retry import RetryPolicy
from ..core.uploads.models import MultipartSession, UploadFile, UploadStatus
from ..core.uploads.queue import UploadQueue
from .gateway_client import GatewayApi

logger = logging.getLogger(__name__)

MIB = 1024 * 1024

# Size of the blocks handed to the transport for a simple PUT. Progress is
# reported each time the transport pulls another block.
STREAM_BLOCK_SIZE = 64 * 1024

MetadataSink = Callable[[UploadFile], Awaitable[None]]


@dataclass
class UploadConfig:
    """Tunables for the orchestrator. Defaults match what R2 accepts."""
    simple_upload_threshold: int = 5 * MIB
    chunk_size: int = 5 * MIB
    file_concurrency: int = 2
    part_concurrency: int = 1
    abort_timeout: float = 10.0
    transfer_timeout: float = 120.0
    get_url_expiry: int = 3600
    accepted_type_prefix: str = "video/"

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.file_concurrency < 1 or self.part_concurrency < 1:
            raise ValueError("concurrency limits must be at least 1")

    def uses_multipart(self, size: int) -> bool:
        return size > self.simple_upload_threshold

    def part_count(self, size: int) -> int:
        return max(1, math.ceil(size / self.chunk_size))

    def part_range(self, part_number: int, size: int) -> tuple[int, int]:
        """Byte range [start, end) of a 1-based part. The last part may be shorter."""
        start = (part_number - 1) * self.chunk_size
        return start, min(start + self.chunk_size, size)


@dataclass
class BatchResult:
    completed: list[UploadFile] = field(default_factory=list)
    failed: list[UploadFile] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


class UploadOrchestrator:
    """
    Runs uploads for UploadFile entries.

    Each call to ``upload`` owns the MultipartSession it creates; no two
    flows ever share an upload id.
    """

    def __init__(
        self,
        gateway: GatewayApi,
        transfer_client: Optional[httpx.AsyncClient] = None,
        config: Optional[UploadConfig] = None,
        presign_retry: Optional[RetryPolicy] = None,
        metadata_sink: Optional[MetadataSink] = None,
    ) -> None:
        self._gateway = gateway
        self._config = config or UploadConfig()
        self._presign_retry = presign_retry or RetryPolicy()
        self._metadata_sink = metadata_sink
        self._owns_transfer = transfer_client is None
        self._transfer = transfer_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.transfer_timeout, connect=10.0)
        )

    @property
    def config(self) -> UploadConfig:
        return self._config

    async def aclose(self) -> None:
        if self._owns_transfer:
            await self._transfer.aclose()

    async def upload(self, item: UploadFile) -> UploadFile:
        """
        Upload one file and record the outcome on it.

        Failures never escape: the file ends up ``error`` with a message
        instead. Only a file that isn't pending raises, since starting it
        again would break its state machine.
        """
        item.start()
        source = item.source
        strategy = "multipart" if self._config.uses_multipart(source.size) else "simple"

        logger.info(
            "Starting upload",
            extra={
                "upload_id": str(item.id),
                "file_name": source.name,
                "size_bytes": source.size,
                "strategy": strategy,
            }
        )

        try:
            if strategy == "multipart":
                object_key, get_url = await self._upload_multipart(item)
            else:
                object_key, get_url = await self._upload_simple(item)

            item.object_key = object_key
            item.get_url = get_url
            if self._metadata_sink is not None:
                await self._metadata_sink(item)
        except Exception as e:
            logger.error(
                "Upload failed",
                extra={"upload_id": str(item.id), "file_name": source.name, "error": str(e)},
            )
            item.fail(str(e) or type(e).__name__)
            return item

        item.complete(object_key, get_url)
        logger.info(
            "Upload completed",
            extra={
                "upload_id": str(item.id),
                "object_key": object_key,
                "has_playback_url": get_url is not None,
            }
        )
        return item

    async def run_batch(self, files: Union[UploadQueue, Iterable[UploadFile]]) -> BatchResult:
        """
        Upload every pending file, at most ``file_concurrency`` at a time.

        A failing file never affects its siblings.
        """
        if isinstance(files, UploadQueue):
            items = files.pending()
        else:
            items = [item for item in files if item.status is UploadStatus.PENDING]

        semaphore = asyncio.Semaphore(self._config.file_concurrency)

        async def bounded(item: UploadFile) -> UploadFile:
            async with semaphore:
                return await self.upload(item)

        finished = await asyncio.gather(*(bounded(item) for item in items))

        result = BatchResult()
        for item in finished:
            if item.status is UploadStatus.COMPLETED:
                result.completed.append(item)
            else:
                result.failed.append(item)

        logger.info(
            "Batch finished",
            extra={"completed": len(result.completed), "failed": len(result.failed)},
        )
        return result

    # -- simple path ----------------------------------------------------------

    async def _upload_simple(self, item: UploadFile) -> tuple[str, Optional[str]]:
        source = item.source
        presigned = await self._gateway.simple_upload(
            source.name, source.content_type, source.size
        )
        data = await source.read(0, source.size)
        await self._put(
            presigned.put_url,
            self._stream_with_progress(item, data),
            {"Content-Type": source.content_type, "Content-Length": str(len(data))},
            "simple upload",
        )
        return presigned.object_key, presigned.get_url

    async def _stream_with_progress(self, item: UploadFile, data: bytes) -> AsyncIterator[bytes]:
        total = len(data)
        sent = 0
        for offset in range(0, total, STREAM_BLOCK_SIZE):
            block = data[offset:offset + STREAM_BLOCK_SIZE]
            yield block
            sent += len(block)
            # 100 is only reported once the store has acknowledged the PUT
            item.report_progress(min(99, sent * 100 / total))

    # -- multipart path -------------------------------------------------------

    async def _upload_multipart(self, item: UploadFile) -> tuple[str, Optional[str]]:
        source = item.source
        initiated = await self._gateway.initiate_multipart(
            source.name, source.content_type, source.size
        )
        session = MultipartSession(
            object_key=initiated.object_key,
            upload_id=initiated.upload_id,
            content_type=source.content_type,
            total_size=source.size,
            part_count=self._config.part_count(source.size),
        )

        try:
            await self._upload_parts(item, session)
            completed = await self._gateway.complete_multipart(
                session.object_key,
                session.upload_id,
                session.completed_parts(),
                session.content_type,
            )
        except Exception:
            await self._abort(session)
            raise

        get_url = completed.get_url
        if not get_url:
            get_url = await self._fallback_get_url(session.object_key, session.content_type)
        return session.object_key, get_url

    async def _upload_parts(self, item: UploadFile, session: MultipartSession) -> None:
        numbers = range(1, session.part_count + 1)

        if self._config.part_concurrency <= 1:
            for number in numbers:
                await self._upload_part(item, session, number)
            return

        semaphore = asyncio.Semaphore(self._config.part_concurrency)

        async def bounded(number: int) -> None:
            async with semaphore:
                await self._upload_part(item, session, number)

        tasks = [asyncio.create_task(bounded(number)) for number in numbers]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            unfinished = [task for task in tasks if not task.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                await asyncio.wait(unfinished)

        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()

    async def _upload_part(self, item: UploadFile, session: MultipartSession, number: int) -> None:
        start, end = self._config.part_range(number, session.total_size)
        part_url = await self._gateway.get_part_url(session.object_key, session.upload_id, number)
        data = await item.source.read(start, end)

        response = await self._put(part_url.put_url, data, {}, f"part {number}")
        etag = response.headers.get("etag")
        if not etag:
            raise StoreProtocolError(f"Part {number} upload response has no ETag")

        session.record_part(number, etag)
        item.report_progress(min(99, self._acknowledged_bytes(session) * 100 / session.total_size))

        logger.debug(
            "Uploaded part",
            extra={"object_key": session.object_key, "part_number": number, "size_bytes": end - start},
        )

    def _acknowledged_bytes(self, session: MultipartSession) -> int:
        total = 0
        for part in session.completed_parts():
            start, end = self._config.part_range(part.part_number, session.total_size)
            total += end - start
        return total

    async def _abort(self, session: MultipartSession) -> None:
        try:
            await asyncio.wait_for(
                self._gateway.abort_multipart(session.object_key, session.upload_id),
                timeout=self._config.abort_timeout,
            )
        except (StoreError, asyncio.TimeoutError) as e:
            logger.warning(
                "Abort multipart failed",
                extra={"object_key": session.object_key, "error": str(e) or type(e).__name__},
            )
        else:
            logger.info("Aborted multipart upload", extra={"object_key": session.object_key})

    async def _fallback_get_url(self, object_key: str, content_type: str) -> Optional[str]:
        """
        Ask for a playback URL separately when complete didn't return one.

        Runs under the presign retry policy. Running out of attempts is
        not an upload failure; the URL can be presigned later from the key.
        """
        try:
            response = await self._presign_retry.call(
                self._gateway.presign_get,
                object_key,
                content_type,
                self._config.get_url_expiry,
            )
        except StoreError as e:
            logger.warning(
                "No playback URL after upload; continuing without one",
                extra={"object_key": object_key, "error": str(e)},
            )
            return None
        return response.url

    # -- transport ------------------------------------------------------------

    async def _put(
        self,
        url: str,
        content: Union[bytes, AsyncIterator[bytes]],
        headers: dict[str, str],
        context: str,
    ) -> httpx.Response:
        try:
            response = await self._transfer.put(url, content=content, headers=headers)
        except httpx.HTTPError as e:
            raise NetworkError(f"{context}: {e}") from e

        if not response.is_success:
            raise UpstreamHttpError(
                response.status_code,
                response.text,
                message=f"{context} failed: HTTP {response.status_code}",
            )
        return response

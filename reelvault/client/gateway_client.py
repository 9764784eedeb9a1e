"""
Client for the storage gateway's RPC endpoint.

The orchestrator and the playback manager only depend on the GatewayApi
protocol, so tests can hand them an in-memory fake and production code
hands them a GatewayClient that speaks JSON over HTTP.
"""

import logging
from typing import Optional, Protocol, TypeVar

import httpx

from ..core.errors import NetworkError, StoreProtocolError, UpstreamHttpError
from ..core.uploads.models import CompletedPart
from ..infrastructure.storage.actions import (
    AbortMultipartRequest,
    AbortMultipartResponse,
    CompleteMultipartRequest,
    CompleteMultipartResponse,
    GetPartUrlRequest,
    InitiateMultipartRequest,
    InitiateMultipartResponse,
    PartTag,
    PartUrlResponse,
    PresignGetRequest,
    PresignGetResponse,
    SimpleUploadRequest,
    SimpleUploadResponse,
    WireModel,
)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=WireModel)


class GatewayApi(Protocol):
    """The six gateway actions, as seen from the client side."""

    async def simple_upload(
        self,
        file_name: str,
        file_type: str,
        file_size: int,
        object_key: Optional[str] = None,
    ) -> SimpleUploadResponse:
        ...

    async def initiate_multipart(
        self,
        file_name: str,
        file_type: str,
        file_size: int,
    ) -> InitiateMultipartResponse:
        ...

    async def get_part_url(
        self,
        object_key: str,
        upload_id: str,
        part_number: int,
    ) -> PartUrlResponse:
        ...

    async def complete_multipart(
        self,
        object_key: str,
        upload_id: str,
        parts: list[CompletedPart],
        file_type: Optional[str] = None,
    ) -> CompleteMultipartResponse:
        ...

    async def abort_multipart(self, object_key: str, upload_id: str) -> AbortMultipartResponse:
        ...

    async def presign_get(
        self,
        object_key: str,
        file_type: str = "video/mp4",
        expires_seconds: int = 3600,
    ) -> PresignGetResponse:
        ...


class GatewayClient:
    """
    GatewayApi over HTTP.

    Any non-2xx answer becomes UpstreamHttpError carrying the gateway's
    ``{"error": ...}`` text; transport failures become NetworkError.
    """

    def __init__(
        self,
        endpoint_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"X-API-Key": api_key} if api_key else {}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _call(self, request: WireModel, response_type: type[R]) -> R:
        action = getattr(request, "action", "unknown")
        try:
            response = await self._http.post(
                self._endpoint_url,
                json=request.to_wire(),
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"{action}: {e}") from e

        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = None
            detail = (body.get("error") if isinstance(body, dict) else None) or response.text
            logger.warning(
                "Gateway action failed",
                extra={"action": action, "status": response.status_code, "error": detail},
            )
            raise UpstreamHttpError(
                response.status_code,
                response.text,
                message=f"{action} failed: {detail}",
            )

        try:
            return response_type.model_validate(response.json())
        except ValueError as e:
            raise StoreProtocolError(f"Unexpected {action} response from gateway") from e

    async def simple_upload(
        self,
        file_name: str,
        file_type: str,
        file_size: int,
        object_key: Optional[str] = None,
    ) -> SimpleUploadResponse:
        return await self._call(
            SimpleUploadRequest(
                file_name=file_name,
                file_type=file_type,
                file_size=file_size,
                object_key=object_key,
            ),
            SimpleUploadResponse,
        )

    async def initiate_multipart(
        self,
        file_name: str,
        file_type: str,
        file_size: int,
    ) -> InitiateMultipartResponse:
        return await self._call(
            InitiateMultipartRequest(file_name=file_name, file_type=file_type, file_size=file_size),
            InitiateMultipartResponse,
        )

    async def get_part_url(
        self,
        object_key: str,
        upload_id: str,
        part_number: int,
    ) -> PartUrlResponse:
        return await self._call(
            GetPartUrlRequest(object_key=object_key, upload_id=upload_id, part_number=part_number),
            PartUrlResponse,
        )

    async def complete_multipart(
        self,
        object_key: str,
        upload_id: str,
        parts: list[CompletedPart],
        file_type: Optional[str] = None,
    ) -> CompleteMultipartResponse:
        return await self._call(
            CompleteMultipartRequest(
                object_key=object_key,
                upload_id=upload_id,
                parts=[PartTag(part_number=p.part_number, etag=p.etag) for p in parts],
                file_type=file_type,
            ),
            CompleteMultipartResponse,
        )

    async def abort_multipart(self, object_key: str, upload_id: str) -> AbortMultipartResponse:
        return await self._call(
            AbortMultipartRequest(object_key=object_key, upload_id=upload_id),
            AbortMultipartResponse,
        )

    async def presign_get(
        self,
        object_key: str,
        file_type: str = "video/mp4",
        expires_seconds: int = 3600,
    ) -> PresignGetResponse:
        return await self._call(
            PresignGetRequest(
                object_key=object_key,
                file_type=file_type,
                expires_seconds=expires_seconds,
            ),
            PresignGetResponse,
        )

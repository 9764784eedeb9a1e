"""
Store gateway for Cloudflare R2 (S3-compatible).

The gateway is the only component that ever sees the secret key. Clients
send it tagged action requests; it answers with presigned URLs or performs
the few calls that must be signed server-side (initiate, complete and abort
of multipart uploads).

We sign requests ourselves instead of pulling in boto3. The surface we
need is six calls, and keeping the signer in-house means the presigned
URLs we hand out are exactly the ones we test.

The gateway never retries. Only the caller knows whether a retry needs a
fresh presigned URL, so failures are surfaced as typed errors and the
orchestrator decides.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional
from xml.etree import ElementTree

import httpx

from ...core.errors import (
    ConfigurationError,
    InsufficientDataError,
    NetworkError,
    StoreError,
    StoreProtocolError,
    UpstreamHttpError,
)
from ...core.signing.sigv4 import Credentials, SignedRequest, SigningRequest, SigV4Signer
from .actions import (
    AbortMultipartRequest,
    AbortMultipartResponse,
    CompleteMultipartRequest,
    CompleteMultipartResponse,
    GatewayRequest,
    GatewayResponse,
    GetPartUrlRequest,
    InitiateMultipartRequest,
    InitiateMultipartResponse,
    PartTag,
    PartUrlResponse,
    PresignGetRequest,
    PresignGetResponse,
    SimpleUploadRequest,
    SimpleUploadResponse,
)

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class StoreConfig:
    """
    Connection settings for the object store.

    Built once from Settings at startup and passed in explicitly, so the
    gateway and signer never read the environment themselves.
    """
    account_id: str
    access_key_id: str
    secret_access_key: str = field(repr=False)
    bucket_name: str
    storage_domain: str = "r2.cloudflarestorage.com"
    put_url_expiry: int = 3600
    get_url_expiry: int = 3600
    request_timeout: float = 30.0

    def __post_init__(self) -> None:
        missing = [
            name for name in ("account_id", "access_key_id", "secret_access_key", "bucket_name")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Object store configuration incomplete: {', '.join(missing)}",
                missing=missing,
            )

    @property
    def host(self) -> str:
        """Virtual-hosted bucket host; signed verbatim, never rewritten."""
        return f"{self.bucket_name}.{self.account_id}.{self.storage_domain}"

    @property
    def credentials(self) -> Credentials:
        return Credentials(
            access_key_id=self.access_key_id,
            secret_access_key=self.secret_access_key,
            region="auto",
            service="s3",
        )


# ---------------------------------------------------------------------------
# Object keys and XML
# ---------------------------------------------------------------------------

def sanitize_file_name(file_name: str) -> str:
    cleaned = _UNSAFE_KEY_CHARS.sub("-", file_name).strip("-")
    return cleaned or "upload.bin"


def build_object_key(file_name: str, now_ms: Optional[int] = None) -> str:
    """Timestamp-prefixed key: ``<epoch-ms>-<sanitized name>``."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{stamp}-{sanitize_file_name(file_name)}"


def object_path(object_key: str) -> str:
    if not object_key or object_key.startswith("/"):
        raise InsufficientDataError(f"Invalid object key: {object_key!r}")
    return f"/{object_key}"


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _parse_xml(text: str, context: str) -> ElementTree.Element:
    try:
        return ElementTree.fromstring(text)
    except ElementTree.ParseError as e:
        raise StoreProtocolError(f"Unparsable XML in {context} response") from e


def parse_upload_id(xml_text: str) -> str:
    """Extract UploadId from an InitiateMultipartUploadResult document."""
    root = _parse_xml(xml_text, "initiate-multipart")
    node = root.find(".//{*}UploadId")
    if node is None or not (node.text or "").strip():
        raise StoreProtocolError("Failed to parse upload ID from multipart initiate response")
    return node.text.strip()


def ensure_not_error_document(xml_text: str, context: str) -> None:
    """
    S3 can answer CompleteMultipartUpload with 200 and an <Error> body
    when it fails after it has started streaming the response.
    """
    if "<Error>" not in xml_text:
        return
    root = _parse_xml(xml_text, context)
    if _local_name(root.tag) == "Error":
        code = root.findtext("{*}Code") or "Unknown"
        message = root.findtext("{*}Message") or ""
        raise StoreProtocolError(f"{context} failed inside a 200 response: {code} {message}".strip())


def order_parts(parts: list[PartTag]) -> list[PartTag]:
    """
    Sort parts ascending and check they form 1..N with no gaps.

    Caller order is never trusted: parts may have finished uploading in
    any order.
    """
    ordered = sorted(parts, key=lambda p: p.part_number)
    numbers = [p.part_number for p in ordered]
    if numbers != list(range(1, len(ordered) + 1)):
        raise InsufficientDataError(
            f"Parts must be numbered contiguously from 1, got {numbers}"
        )
    return ordered


def build_complete_body(parts: list[PartTag]) -> bytes:
    root = ElementTree.Element("CompleteMultipartUpload")
    for part in parts:
        node = ElementTree.SubElement(root, "Part")
        ElementTree.SubElement(node, "PartNumber").text = str(part.part_number)
        ElementTree.SubElement(node, "ETag").text = part.etag
    return ElementTree.tostring(root, encoding="utf-8")


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class StoreGateway:
    """
    Action dispatcher in front of the object store.

    Stateless apart from read-only config, so one instance can serve
    concurrent requests.
    """

    def __init__(
        self,
        config: StoreConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._signer = SigV4Signer(config.credentials, clock)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.request_timeout)
        self._handlers: dict[type, Callable[..., Awaitable[GatewayResponse]]] = {
            SimpleUploadRequest: self.simple_upload,
            InitiateMultipartRequest: self.initiate_multipart,
            GetPartUrlRequest: self.get_part_url,
            CompleteMultipartRequest: self.complete_multipart,
            AbortMultipartRequest: self.abort_multipart,
            PresignGetRequest: self.presign_get,
        }

        logger.debug(
            "Initialized store gateway",
            extra={"bucket": config.bucket_name, "host": config.host},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "StoreGateway":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def handle(self, request: GatewayRequest) -> GatewayResponse:
        """Run one action request and return its response model."""
        handler = self._handlers.get(type(request))
        if handler is None:
            raise InsufficientDataError("Invalid action")

        logger.info(
            "Gateway action",
            extra={
                "action": request.action,
                "object_key": getattr(request, "object_key", None),
            }
        )
        return await handler(request)

    # -- presigning helpers ---------------------------------------------------

    def _presign(
        self,
        method: str,
        object_key: str,
        expires_in: int,
        query: Optional[dict[str, str]] = None,
    ) -> str:
        signed = self._signer.presign(SigningRequest(
            method=method,
            host=self._config.host,
            path=object_path(object_key),
            query=query or {},
            expires_in=expires_in,
        ))
        return signed.url

    def _presign_get(self, object_key: str, content_type: str, expires_in: int) -> str:
        # Force the store to answer with a playable type regardless of
        # what was stored with the object
        return self._presign("GET", object_key, expires_in, {
            "response-content-type": content_type,
            "response-content-disposition": "inline",
        })

    async def _send(self, signed: SignedRequest, body: Optional[bytes], context: str) -> httpx.Response:
        try:
            response = await self._http.request(
                signed.method,
                signed.url,
                headers=signed.headers,
                content=body,
            )
        except httpx.HTTPError as e:
            logger.error(
                "Object store request failed",
                extra={"context": context, "error": str(e)}
            )
            raise NetworkError(f"{context}: {e}") from e

        if not response.is_success:
            logger.error(
                "Object store returned error",
                extra={
                    "context": context,
                    "status": response.status_code,
                    "body": response.text[:500],
                }
            )
            raise UpstreamHttpError(
                response.status_code,
                response.text,
                message=f"{context} failed: HTTP {response.status_code}",
            )
        return response

    # -- actions --------------------------------------------------------------

    async def simple_upload(self, request: SimpleUploadRequest) -> SimpleUploadResponse:
        """Presigned PUT for a single-request upload, plus a GET for playback."""
        object_key = request.object_key or build_object_key(request.file_name)
        put_url = self._presign("PUT", object_key, self._config.put_url_expiry)
        get_url = self._presign_get(object_key, request.file_type, self._config.get_url_expiry)

        logger.info(
            "Presigned simple upload",
            extra={"object_key": object_key, "size_bytes": request.file_size},
        )
        return SimpleUploadResponse(put_url=put_url, object_key=object_key, get_url=get_url)

    async def initiate_multipart(self, request: InitiateMultipartRequest) -> InitiateMultipartResponse:
        """POST ?uploads and return the store's upload id."""
        object_key = build_object_key(request.file_name)
        body = b""
        signed = self._signer.sign(SigningRequest(
            method="POST",
            host=self._config.host,
            path=object_path(object_key),
            query={"uploads": ""},
            headers={"content-type": request.file_type},
            payload=body,
        ))
        response = await self._send(signed, body, "initiate-multipart")
        upload_id = parse_upload_id(response.text)

        logger.info(
            "Initiated multipart upload",
            extra={"object_key": object_key, "size_bytes": request.file_size},
        )
        return InitiateMultipartResponse(upload_id=upload_id, object_key=object_key)

    async def get_part_url(self, request: GetPartUrlRequest) -> PartUrlResponse:
        """Presigned PUT for one part. The chunk is streamed, so never signed."""
        put_url = self._presign("PUT", request.object_key, self._config.put_url_expiry, {
            "partNumber": str(request.part_number),
            "uploadId": request.upload_id,
        })
        return PartUrlResponse(put_url=put_url)

    async def complete_multipart(self, request: CompleteMultipartRequest) -> CompleteMultipartResponse:
        """POST ?uploadId=ID with the part list, then hand back a playback URL."""
        parts = order_parts(request.parts)
        body = build_complete_body(parts)
        signed = self._signer.sign(SigningRequest(
            method="POST",
            host=self._config.host,
            path=object_path(request.object_key),
            query={"uploadId": request.upload_id},
            headers={"content-type": "application/xml"},
            payload=body,
        ))
        response = await self._send(signed, body, "complete-multipart")
        ensure_not_error_document(response.text, "complete-multipart")

        get_url = self._presign_get(
            request.object_key,
            request.file_type or "video/mp4",
            self._config.get_url_expiry,
        )

        logger.info(
            "Completed multipart upload",
            extra={"object_key": request.object_key, "parts": len(parts)},
        )
        return CompleteMultipartResponse(object_key=request.object_key, get_url=get_url)

    async def abort_multipart(self, request: AbortMultipartRequest) -> AbortMultipartResponse:
        """
        DELETE ?uploadId=ID.

        Abort runs after an upload already failed, so its own failure is
        logged and otherwise ignored.
        """
        signed = self._signer.sign(SigningRequest(
            method="DELETE",
            host=self._config.host,
            path=object_path(request.object_key),
            query={"uploadId": request.upload_id},
            payload=b"",
        ))
        try:
            await self._send(signed, b"", "abort-multipart")
        except StoreError as e:
            logger.warning(
                "Abort multipart failed; leaving upload for lifecycle cleanup",
                extra={"object_key": request.object_key, "error": str(e)},
            )
        else:
            logger.info("Aborted multipart upload", extra={"object_key": request.object_key})

        return AbortMultipartResponse(ok=True)

    async def presign_get(self, request: PresignGetRequest) -> PresignGetResponse:
        url = self._presign_get(request.object_key, request.file_type, request.expires_seconds)
        return PresignGetResponse(url=url, expires_in=request.expires_seconds)


def create_store_gateway(
    config: StoreConfig,
    http_client: Optional[httpx.AsyncClient] = None,
) -> StoreGateway:
    """Factory used by the API dependency layer."""
    return StoreGateway(config, http_client=http_client)

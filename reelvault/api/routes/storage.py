"""
Storage gateway endpoint.

One RPC-style endpoint, tagged by ``action``:

    {"action": "simple-upload", "fileName": "...", "fileType": "...", "fileSize": 123}
    {"action": "initiate-multipart", ...}
    {"action": "get-part-url", "objectKey": "...", "uploadId": "...", "partNumber": 1}
    {"action": "complete-multipart", "objectKey": "...", "uploadId": "...", "parts": [...]}
    {"action": "abort-multipart", "objectKey": "...", "uploadId": "..."}
    {"action": "presign-get", "objectKey": "...", "fileType": "video/mp4"}

Clients never see store credentials. They get presigned URLs back and
move the bytes themselves.
"""

import logging
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from ...core.errors import InsufficientDataError
from ...infrastructure.storage.actions import parse_gateway_request
from ..dependencies import AuthenticatedUser, StoreGatewayDep

logger = logging.getLogger(__name__)

router = APIRouter()

_ERROR_BODY: dict[str, Any] = {
    "content": {"application/json": {"example": {"error": "Invalid action"}}},
}


@router.post(
    "/presign",
    status_code=status.HTTP_200_OK,
    summary="Run a storage gateway action",
    description="Presign uploads and playback URLs, and drive multipart uploads.",
    responses={
        400: {"description": "Invalid action or missing fields", **_ERROR_BODY},
        403: {"description": "Missing or invalid API key", **_ERROR_BODY},
        500: {"description": "Store credentials not configured", **_ERROR_BODY},
        502: {"description": "Object store call failed", **_ERROR_BODY},
    },
)
async def presign(
    request: Request,
    _: AuthenticatedUser,
    gateway: StoreGatewayDep,
) -> JSONResponse:
    try:
        payload = await request.json()
    except ValueError as e:
        raise InsufficientDataError("Request body must be valid JSON") from e

    action_request = parse_gateway_request(payload)
    result = await gateway.handle(action_request)

    return JSONResponse(status_code=status.HTTP_200_OK, content=result.to_wire())

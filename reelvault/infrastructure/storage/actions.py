"""
Wire contract for the storage gateway.

One RPC endpoint, many behaviours: every request carries an ``action``
tag and pydantic picks the matching model. JSON uses camelCase
(``fileName``, ``uploadId``...) while Python code uses snake_case.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from ...core.errors import InsufficientDataError
from ...core.signing.sigv4 import MAX_PRESIGN_EXPIRY


class WireModel(BaseModel):
    """Base for all gateway payloads: camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PartTag(WireModel):
    """A (part number, ETag) pair, accepting S3's own spelling as well."""
    part_number: int = Field(
        ge=1,
        le=10000,
        validation_alias=AliasChoices("partNumber", "PartNumber", "part_number"),
        serialization_alias="partNumber",
    )
    etag: str = Field(
        min_length=1,
        validation_alias=AliasChoices("etag", "ETag"),
        serialization_alias="etag",
    )


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class SimpleUploadRequest(WireModel):
    action: Literal["simple-upload"] = "simple-upload"
    file_name: str = Field(min_length=1)
    file_type: str = "application/octet-stream"
    file_size: int = Field(default=0, ge=0)
    object_key: Optional[str] = None


class InitiateMultipartRequest(WireModel):
    action: Literal["initiate-multipart"] = "initiate-multipart"
    file_name: str = Field(min_length=1)
    file_type: str = "application/octet-stream"
    file_size: int = Field(default=0, ge=0)


class GetPartUrlRequest(WireModel):
    action: Literal["get-part-url"] = "get-part-url"
    object_key: str = Field(min_length=1)
    upload_id: str = Field(min_length=1)
    part_number: int = Field(ge=1, le=10000)


class CompleteMultipartRequest(WireModel):
    action: Literal["complete-multipart"] = "complete-multipart"
    object_key: str = Field(min_length=1)
    upload_id: str = Field(min_length=1)
    parts: list[PartTag] = Field(min_length=1)
    file_type: Optional[str] = None


class AbortMultipartRequest(WireModel):
    action: Literal["abort-multipart"] = "abort-multipart"
    object_key: str = Field(min_length=1)
    upload_id: str = Field(min_length=1)


class PresignGetRequest(WireModel):
    # "get-object" is the older name for the same action
    action: Literal["presign-get", "get-object"] = "presign-get"
    object_key: str = Field(min_length=1)
    file_type: str = "video/mp4"
    expires_seconds: int = Field(
        default=3600,
        ge=1,
        le=MAX_PRESIGN_EXPIRY,
        validation_alias=AliasChoices("expiresSeconds", "expires", "expiresIn", "expires_seconds"),
        serialization_alias="expiresSeconds",
    )


GatewayRequest = Annotated[
    Union[
        SimpleUploadRequest,
        InitiateMultipartRequest,
        GetPartUrlRequest,
        CompleteMultipartRequest,
        AbortMultipartRequest,
        PresignGetRequest,
    ],
    Field(discriminator="action"),
]

ACTIONS = frozenset({
    "simple-upload",
    "initiate-multipart",
    "get-part-url",
    "complete-multipart",
    "abort-multipart",
    "presign-get",
    "get-object",
})

_request_adapter: TypeAdapter = TypeAdapter(GatewayRequest)


def parse_gateway_request(payload: Any) -> GatewayRequest:
    """
    Validate a decoded JSON body into one of the request models.

    Raises InsufficientDataError for unknown actions or bad fields so
    the API layer can answer 400 without inspecting pydantic errors.
    """
    if not isinstance(payload, dict):
        raise InsufficientDataError("Request body must be a JSON object")

    action = payload.get("action")
    if not isinstance(action, str) or action not in ACTIONS:
        raise InsufficientDataError("Invalid action")

    try:
        return _request_adapter.validate_python(payload)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'body'}: {err['msg']}"
            for err in e.errors()
        )
        raise InsufficientDataError(f"Invalid {action} request: {problems}") from e


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class SimpleUploadResponse(WireModel):
    put_url: str
    object_key: str
    get_url: str


class InitiateMultipartResponse(WireModel):
    upload_id: str
    object_key: str


class PartUrlResponse(WireModel):
    put_url: str


class CompleteMultipartResponse(WireModel):
    object_key: str
    get_url: Optional[str] = None


class AbortMultipartResponse(WireModel):
    ok: bool = True


class PresignGetResponse(WireModel):
    url: str
    expires_in: Optional[int] = None


GatewayResponse = Union[
    SimpleUploadResponse,
    InitiateMultipartResponse,
    PartUrlResponse,
    CompleteMultipartResponse,
    AbortMultipartResponse,
    PresignGetResponse,
]

"""
AWS Signature Version 4 for S3-compatible object stores.

Two signing modes share one canonicalization pipeline:

- Header mode (``sign_request``): server-to-store calls. The signature
  travels in an ``Authorization`` header alongside ``x-amz-date`` and
  ``x-amz-content-sha256``.
- Query mode (``presign_url``): client-to-store calls. The signature and
  every credential field are embedded in the URL, so the holder needs no
  secret to use it until ``X-Amz-Expires`` elapses.

Everything here is pure computation. The caller supplies the clock value,
so identical inputs always produce byte-identical output. No retries,
no I/O, and no caching of derived keys across calls.
"""

import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from ..errors import SigningError

ALGORITHM = "AWS4-HMAC-SHA256"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
TERMINATOR = "aws4_request"

# AWS caps presigned URL lifetime at seven days
MAX_PRESIGN_EXPIRY = 7 * 24 * 3600

_UNRESERVED = frozenset(
    b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)

_PRESIGN_PARAMS = frozenset({
    "X-Amz-Algorithm",
    "X-Amz-Credential",
    "X-Amz-Date",
    "X-Amz-Expires",
    "X-Amz-SignedHeaders",
    "X-Amz-Signature",
})

_MANAGED_HEADERS = frozenset({"host", "x-amz-date", "x-amz-content-sha256", "authorization"})


@dataclass(frozen=True)
class Credentials:
    """
    Object store credentials plus the scope they sign for.

    R2 ignores regions, but SigV4 still needs one in the credential
    scope; "auto" is the value R2 documents.
    """
    access_key_id: str
    secret_access_key: str = field(repr=False)
    region: str = "auto"
    service: str = "s3"


@dataclass
class SigningRequest:
    """
    Description of a request to sign.

    ``path`` is the raw (unencoded) object path starting with "/".
    ``payload=None`` signs the body as UNSIGNED-PAYLOAD, which is what
    streamed uploads and every presigned URL use.
    """
    method: str
    host: str
    path: str = "/"
    query: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    payload: Optional[bytes] = None
    expires_in: int = 3600


@dataclass(frozen=True)
class SignedRequest:
    """Result of signing, including the intermediate strings."""
    method: str
    url: str
    headers: dict[str, str]
    canonical_request: str
    string_to_sign: str
    signature: str


# ---------------------------------------------------------------------------
# Canonicalization
# ---------------------------------------------------------------------------

def uri_encode(value: str, encode_slash: bool = True) -> str:
    """
    Percent-encode using the SigV4 rules.

    Unreserved characters (A-Z a-z 0-9 - _ . ~) pass through, every other
    UTF-8 byte becomes %XX with uppercase hex. Slashes are kept only when
    ``encode_slash`` is False (object paths).
    """
    out: list[str] = []
    for byte in value.encode("utf-8"):
        if byte in _UNRESERVED:
            out.append(chr(byte))
        elif byte == 0x2F and not encode_slash:
            out.append("/")
        else:
            out.append(f"%{byte:02X}")
    return "".join(out)


def canonical_uri(path: str) -> str:
    """S3 canonical URI: single-encoded, slashes preserved, no normalization."""
    return uri_encode(path or "/", encode_slash=False)


def canonical_query_string(query: dict[str, str]) -> str:
    """Encode every pair, then sort by encoded key (ties by encoded value)."""
    encoded = sorted((uri_encode(k), uri_encode(v)) for k, v in query.items())
    return "&".join(f"{k}={v}" for k, v in encoded)


def canonical_headers(headers: dict[str, str]) -> tuple[str, str]:
    """
    Build the canonical header block and the signed-headers list.

    Returns (block, signed) where block has one "name:value\\n" line per
    header and signed is the semicolon-joined sorted names.
    """
    normalized: dict[str, str] = {}
    for name, value in headers.items():
        lower = name.strip().lower()
        if lower in normalized:
            raise SigningError(f"Duplicate header: {lower}")
        normalized[lower] = " ".join(str(value).split())

    names = sorted(normalized)
    block = "".join(f"{name}:{normalized[name]}\n" for name in names)
    return block, ";".join(names)


def build_canonical_request(
    method: str,
    path: str,
    query: dict[str, str],
    headers: dict[str, str],
    payload_hash: str,
) -> tuple[str, str]:
    """Return (canonical_request, signed_headers)."""
    header_block, signed = canonical_headers(headers)
    canonical = "\n".join([
        method,
        canonical_uri(path),
        canonical_query_string(query),
        header_block,
        signed,
        payload_hash,
    ])
    return canonical, signed


def credential_scope(date_stamp: str, region: str, service: str) -> str:
    return f"{date_stamp}/{region}/{service}/{TERMINATOR}"


def build_string_to_sign(amz_date: str, scope: str, canonical_request: str) -> str:
    return "\n".join([
        ALGORITHM,
        amz_date,
        scope,
        hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
    ])


# ---------------------------------------------------------------------------
# Key derivation and signature
# ---------------------------------------------------------------------------

def _hmac_sha256(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(secret_access_key: str, date_stamp: str, region: str, service: str) -> bytes:
    """
    Derive the per-day signing key.

    The key is only valid for this date/region/service triple, so it is
    recomputed for every request rather than cached.
    """
    k_date = _hmac_sha256(("AWS4" + secret_access_key).encode("utf-8"), date_stamp)
    k_region = _hmac_sha256(k_date, region)
    k_service = _hmac_sha256(k_region, service)
    return _hmac_sha256(k_service, TERMINATOR)


def compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    return hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Signing modes
# ---------------------------------------------------------------------------

def _timestamps(now: datetime) -> tuple[str, str]:
    if now.tzinfo is None:
        raise SigningError("Signing clock must be timezone-aware")
    amz_date = now.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return amz_date, amz_date[:8]


def _validate(request: SigningRequest) -> None:
    if not request.method or not request.method.strip():
        raise SigningError("HTTP method is required")
    if not request.host or not request.host.strip():
        raise SigningError("Host is required")
    if not request.path.startswith("/"):
        raise SigningError(f"Path must start with '/': {request.path!r}")

    for name in request.headers:
        if name.strip().lower() in _MANAGED_HEADERS:
            raise SigningError(f"Header {name!r} is set by the signer")


def _url(host: str, path: str, query_string: str) -> str:
    url = f"https://{host}{canonical_uri(path)}"
    return f"{url}?{query_string}" if query_string else url


def sign_request(
    request: SigningRequest,
    credentials: Credentials,
    now: datetime,
) -> SignedRequest:
    """
    Sign a request in header mode.

    The returned headers must be sent as-is (host is implied by the URL).
    When ``request.payload`` is given its SHA-256 is signed, so the body
    sent must be exactly those bytes.
    """
    _validate(request)
    amz_date, date_stamp = _timestamps(now)

    if request.payload is None:
        payload_hash = UNSIGNED_PAYLOAD
    else:
        payload_hash = hashlib.sha256(request.payload).hexdigest()

    method = request.method.upper()
    headers = {
        "host": request.host,
        "x-amz-date": amz_date,
        "x-amz-content-sha256": payload_hash,
    }
    headers.update({name.strip().lower(): value for name, value in request.headers.items()})

    canonical, signed = build_canonical_request(
        method, request.path, request.query, headers, payload_hash
    )
    scope = credential_scope(date_stamp, credentials.region, credentials.service)
    string_to_sign = build_string_to_sign(amz_date, scope, canonical)
    signing_key = derive_signing_key(
        credentials.secret_access_key, date_stamp, credentials.region, credentials.service
    )
    signature = compute_signature(signing_key, string_to_sign)

    outgoing = {name: value for name, value in headers.items() if name != "host"}
    outgoing["authorization"] = (
        f"{ALGORITHM} Credential={credentials.access_key_id}/{scope}, "
        f"SignedHeaders={signed}, Signature={signature}"
    )

    return SignedRequest(
        method=method,
        url=_url(request.host, request.path, canonical_query_string(request.query)),
        headers=outgoing,
        canonical_request=canonical,
        string_to_sign=string_to_sign,
        signature=signature,
    )


def presign_url(
    request: SigningRequest,
    credentials: Credentials,
    now: datetime,
) -> SignedRequest:
    """
    Sign a request in query mode and return the presigned URL.

    The final URL reuses the exact canonical query string that was
    signed, with X-Amz-Signature appended, so encoding can never drift
    between what was signed and what is sent.
    """
    _validate(request)
    if request.payload is not None:
        raise SigningError("Presigned URLs always use an unsigned payload")
    if not 1 <= request.expires_in <= MAX_PRESIGN_EXPIRY:
        raise SigningError(
            f"expires_in must be between 1 and {MAX_PRESIGN_EXPIRY} seconds"
        )
    reserved = _PRESIGN_PARAMS.intersection(request.query)
    if reserved:
        raise SigningError(f"Query parameters reserved for signing: {sorted(reserved)}")

    amz_date, date_stamp = _timestamps(now)
    method = request.method.upper()

    headers = {"host": request.host}
    headers.update({name.strip().lower(): value for name, value in request.headers.items()})
    _, signed = canonical_headers(headers)

    scope = credential_scope(date_stamp, credentials.region, credentials.service)
    query = dict(request.query)
    query.update({
        "X-Amz-Algorithm": ALGORITHM,
        "X-Amz-Credential": f"{credentials.access_key_id}/{scope}",
        "X-Amz-Date": amz_date,
        "X-Amz-Expires": str(request.expires_in),
        "X-Amz-SignedHeaders": signed,
    })

    canonical, _ = build_canonical_request(
        method, request.path, query, headers, UNSIGNED_PAYLOAD
    )
    string_to_sign = build_string_to_sign(amz_date, scope, canonical)
    signing_key = derive_signing_key(
        credentials.secret_access_key, date_stamp, credentials.region, credentials.service
    )
    signature = compute_signature(signing_key, string_to_sign)

    query_string = f"{canonical_query_string(query)}&X-Amz-Signature={signature}"

    return SignedRequest(
        method=method,
        url=_url(request.host, request.path, query_string),
        headers={name: value for name, value in headers.items() if name != "host"},
        canonical_request=canonical,
        string_to_sign=string_to_sign,
        signature=signature,
    )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SigV4Signer:
    """
    Credentials plus a clock, bound together.

    The clock is read exactly once per call and the same instant feeds
    the canonical request, the string to sign and the credential scope.
    Tests inject a fixed clock to get deterministic signatures.
    """

    def __init__(
        self,
        credentials: Credentials,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._credentials = credentials
        self._clock = clock or utc_now

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    def sign(self, request: SigningRequest) -> SignedRequest:
        """Header-mode signing."""
        return sign_request(request, self._credentials, self._clock())

    def presign(self, request: SigningRequest) -> SignedRequest:
        """Query-mode signing."""
        return presign_url(request, self._credentials, self._clock())

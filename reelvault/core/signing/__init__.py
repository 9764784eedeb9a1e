"""
SigV4 request signing.

Pure functions, no SDK. Used only by the store gateway, which is the
sole holder of the secret key.
"""

from .sigv4 import (
    ALGORITHM,
    UNSIGNED_PAYLOAD,
    Credentials,
    SignedRequest,
    SigningRequest,
    SigV4Signer,
    canonical_query_string,
    derive_signing_key,
    presign_url,
    sign_request,
    uri_encode,
)

__all__ = [
    "ALGORITHM",
    "UNSIGNED_PAYLOAD",
    "Credentials",
    "SignedRequest",
    "SigningRequest",
    "SigV4Signer",
    "canonical_query_string",
    "derive_signing_key",
    "presign_url",
    "sign_request",
    "uri_encode",
]

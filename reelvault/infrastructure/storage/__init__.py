"""
Object storage integration (Cloudflare R2 via the S3-compatible API).

The gateway holds the store credentials and answers the tagged action
requests defined in ``actions``.
"""

from .actions import GatewayRequest, GatewayResponse, parse_gateway_request
from .gateway import StoreConfig, StoreGateway, create_store_gateway

__all__ = [
    "GatewayRequest",
    "GatewayResponse",
    "StoreConfig",
    "StoreGateway",
    "create_store_gateway",
    "parse_gateway_request",
]

"""
FastAPI dependency injection.

Dependencies provide instances of services, clients, and configuration
to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be overridden in tests
- Configuration is centralized

Each dependency is a function that FastAPI calls when needed.
"""

import logging
from typing import Annotated, AsyncGenerator

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..infrastructure.storage.gateway import StoreGateway, create_store_gateway

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate API key from request header.

    Keys are compared against the comma-separated API_KEYS setting, so
    a new key can be rolled out before the old one is removed.

    Raises 403 if key is invalid or missing.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in settings.api_keys_list:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:8]}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

async def get_store_gateway(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> AsyncGenerator[StoreGateway, None]:
    """
    Provide a StoreGateway for one request.

    Missing store credentials raise ConfigurationError here, so every
    request answers with the configuration error until it is fixed.

    The gateway reuses the application's shared HTTP client when the
    lifespan created one; otherwise it opens its own and closes it once
    the request is done.
    """
    config = settings.store_config()
    http_client = getattr(request.app.state, "store_http_client", None)

    gateway = create_store_gateway(config, http_client=http_client)
    try:
        yield gateway
    finally:
        await gateway.aclose()


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
StoreGatewayDep = Annotated[StoreGateway, Depends(get_store_gateway)]
SettingsDep = Annotated[Settings, Depends(get_settings)]

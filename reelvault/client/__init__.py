"""
Client-side half of the pipeline: upload orchestration and playback URLs.

Nothing here holds store credentials. Everything goes through the
gateway's RPC endpoint (see GatewayApi).
"""

from .gateway_client import GatewayApi, GatewayClient
from .orchestrator import BatchResult, UploadConfig, UploadOrchestrator
from .playback import (
    PlaybackConfig,
    PlaybackState,
    PlaybackUrlManager,
    compute_renewal_delay,
    resolve_object_key,
)
from .sources import BytesSource, FileSource

__all__ = [
    "BatchResult",
    "BytesSource",
    "FileSource",
    "GatewayApi",
    "GatewayClient",
    "PlaybackConfig",
    "PlaybackState",
    "PlaybackUrlManager",
    "UploadConfig",
    "UploadOrchestrator",
    "compute_renewal_delay",
    "resolve_object_key",
]

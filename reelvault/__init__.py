"""
ReelVault - video upload and playback pipeline over Cloudflare R2.

This package contains the complete application:
- core: Framework-agnostic logic (SigV4 signing, upload models, retry)
- infrastructure: The store gateway that talks to R2
- client: Upload orchestration and playback URL renewal
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"

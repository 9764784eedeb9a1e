"""
Infrastructure layer - external service integrations.

- storage: Cloudflare R2 through its S3-compatible API

These wrappers translate between external formats (S3 XML, HTTP status
codes) and our domain models and errors.
"""

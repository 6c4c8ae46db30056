"""
Object storage access layer for a media CDN.

This package contains:
- core: Framework-agnostic scheduling and storage rules (paths, quotas)
- infrastructure: S3 backends, the CDN facade and in-memory stores
- config: Application configuration
"""

__version__ = "0.1.0"

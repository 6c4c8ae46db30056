"""
Infrastructure layer - external service integrations.

- storage: Object storage (AWS S3, S3-compatible hosts, in-memory mock)
- memory: In-memory persistence for users, storage plans and rooms

These wrappers translate between external formats and our domain models.
"""

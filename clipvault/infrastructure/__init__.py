"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- storage: Object storage (S3-compatible)
- snowflake: Video record persistence
- video: FFmpeg frame extraction
- images: Pillow thumbnail generation

These wrappers translate between external formats and our domain models.
"""

"""
Serenity Providers — the content generation boundary.

ContentService defines the contract; OpenAIContentService implements it.
Swap providers by changing SERENITY_CONTENT_PROVIDER.
"""

from serenity.providers.base import (
    ContentService,
    ContentServiceError,
    GenerationFailed,
    MediaHandle,
    QuotaExceeded,
)
from serenity.providers.registry import get_content_service

__all__ = [
    "ContentService",
    "ContentServiceError",
    "GenerationFailed",
    "MediaHandle",
    "QuotaExceeded",
    "get_content_service",
]

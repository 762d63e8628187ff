"""
Provider Registry — pick the content service named in config.

Add a new provider? Add an elif.
"""

from __future__ import annotations

import serenity.core.config as config_module
from serenity.providers.base import ContentService


def get_content_service() -> ContentService:
    provider = config_module.config.content.provider.lower()
    if provider == "openai":
        from serenity.providers.openai_content import OpenAIContentService

        return OpenAIContentService()
    raise ValueError(f"Unknown content provider: {provider}")

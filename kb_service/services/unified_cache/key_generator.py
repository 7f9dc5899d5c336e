"""Cache key generation for the fast tier.

Keys are relative; the backend adds its own prefix (``freshdesk:`` by
default).

Key format: {namespace}:{version}:{...params}

Examples:
    article:v1:5000123
    search:v1:0f6d1c7e2b9a4c1d8e3f5a6b7c8d9e0f
"""

import hashlib
import json
from typing import Any, Dict, Optional


class CacheKeyGenerator:
    """Single source of cache keys for articles and search results."""

    VERSION = "v1"

    @classmethod
    def article(cls, article_id: str) -> str:
        return f"article:{cls.VERSION}:{article_id}"

    @classmethod
    def article_pattern(cls) -> str:
        """Glob matching every article key."""
        return f"article:{cls.VERSION}:*"

    @classmethod
    def search(
        cls,
        query: str,
        category: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Key for a search result set.

        The query is normalized (trimmed, lower-cased) so trivially
        different spellings share an entry.
        """
        key_parts = [query.strip().lower(), category or ""]
        if params:
            key_parts.append(json.dumps(params, sort_keys=True))

        content_hash = hashlib.md5("|".join(key_parts).encode("utf-8")).hexdigest()
        return f"search:{cls.VERSION}:{content_hash}"

    @classmethod
    def search_pattern(cls) -> str:
        return f"search:{cls.VERSION}:*"

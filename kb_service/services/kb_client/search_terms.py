"""Turn a free-form user question into knowledge base search queries."""

import re
from typing import List

STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
    "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
    "to", "was", "will", "with", "i", "you", "my", "me", "we", "us",
    "what", "when", "where", "why", "how", "can", "could", "would",
    "should", "do", "does", "did", "have", "had", "please", "help",
    "tell", "about", "get", "need", "want", "know", "find", "show",
})

# Business terms that are always worth searching for
IMPORTANT_TERMS = frozenset({
    "tubular", "polyester", "lanyards", "lanyard", "moq", "minimum", "order", "quantity",
    "shipping", "delivery", "payment", "price", "pricing", "cost", "material", "materials",
    "print", "printing", "custom", "design", "logo", "color", "colors", "size", "sizes",
    "bulk", "wholesale", "retail", "business", "corporate", "promotional", "marketing",
    "installation", "setup", "troubleshoot", "problem", "issue", "error", "support",
    "difference", "between", "compare", "comparison", "vs", "versus", "options",
    "fabric", "cotton", "nylon", "quality", "durability", "thickness", "width",
    "accessories", "hardware", "clips", "hooks", "attachments", "customization",
})

# Extra product terms kept by the narrow keyword query
KEYWORD_PRODUCT_TERMS = frozenset({
    "leather", "card", "holders", "holder", "colors", "colours", "available",
    "lanyards", "lanyard", "tubular", "polyester", "printing", "shipping",
    "moq", "minimum", "order", "quantity",
})

GENERIC_WORDS = frozenset({
    "what", "how", "when", "where", "why", "can", "could", "would", "should",
})

MAX_EXTRACTED_TERMS = 10
MAX_KEYWORD_TERMS = 6


def extract_search_terms(message: str) -> str:
    """Broad query: meaningful words of the message, stop words removed.

    Falls back to the first 100 characters of the message when nothing
    meaningful is left.
    """
    words = [w for w in re.split(r"\s+", re.sub(r"[^\w\s]", " ", message.lower())) if w]

    kept: List[str] = []
    for word in words:
        if word in IMPORTANT_TERMS:
            kept.append(word)
        elif len(word) > 2 and word not in STOP_WORDS:
            kept.append(word)

        if len(kept) >= MAX_EXTRACTED_TERMS and word not in IMPORTANT_TERMS:
            break

    return " ".join(kept) or message[:100]


def keyword_query(extracted_terms: str) -> str:
    """Narrow query: product terms and long non-generic words, at most six."""
    keywords = [
        word for word in extracted_terms.split()
        if word.lower() in KEYWORD_PRODUCT_TERMS
        or (len(word) > 3 and word.lower() not in GENERIC_WORDS)
    ]
    return " ".join(keywords[:MAX_KEYWORD_TERMS])

"""Parsers for the engine's semi-structured text responses."""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup  # type: ignore[import]

from kb_service.core.logging import get_logger
from kb_service.models.articles import ArticleRecord

logger = get_logger(__name__)

# Search responses are numbered markdown lists:
#
#   **Page 1 of 3** (10 articles on this page, 27 total)
#
#   1. **Lanyard colours**
#      🆔 Article ID: 5000123
#      📄 Our tubular lanyards come in ...
#      📅 Updated: 2024-01-01
_ENTRY_SPLIT = re.compile(r"\n\d+\.\s+\*\*")
_ENTRY_NUMBER = re.compile(r"\n(\d+)\.\s\*\*")
_PAGE_SUMMARY = re.compile(
    r"\*\*Page \d+ of \d+\*\* \((\d+) articles on this page, (\d+) total\)"
)
_TITLE = re.compile(r"^([^*\n]+)")
_ARTICLE_ID = re.compile(r"🆔 Article ID: (\d+)")
_EXCERPT = re.compile(r"📄\s+(.+?)(?=\n\s+📅|$)", re.S)
_TAG = re.compile(r"<[^>]*>")
_BLANK_LINES = re.compile(r"\n\s*\n")

IMAGE_SECTION_HEADER = "**Referenced Images in this article:**"
IMAGE_SECTION_NOTE = (
    "(Note: These images contain important visual information referenced "
    "in the article content)"
)


def parse_page_summary(text: str) -> Tuple[int, int]:
    """Return (articles on this page, reported total) from the page header."""
    match = _PAGE_SUMMARY.search(text or "")
    if not match:
        return 0, 0
    return int(match.group(1)), int(match.group(2))


def compute_total_results(text: str, reported_total: int) -> int:
    """Best estimate of the total number of matching articles.

    The engine's reported total is unreliable, so the highest entry number
    present in the response is used when it is larger. This assumes entries
    are numbered continuously across pages.
    """
    numbers = [int(n) for n in _ENTRY_NUMBER.findall("\n" + (text or ""))]
    if not numbers:
        return reported_total
    return max(reported_total, max(numbers))


def parse_search_response(
    text: str,
    url_template: str,
    source: str = "freshdesk_kb",
) -> List[ArticleRecord]:
    """Parse the numbered article list of a search response.

    Entries without an article id are skipped; the function never raises
    on unexpected shapes and returns whatever could be parsed.
    """
    articles: List[ArticleRecord] = []
    if not text or not isinstance(text, str):
        return articles

    # Leading newline so an entry on the very first line is also split off
    chunks = _ENTRY_SPLIT.split("\n" + text)

    for chunk in chunks[1:]:
        title_match = _TITLE.match(chunk)
        title = title_match.group(1).strip() if title_match else "Untitled"

        id_match = _ARTICLE_ID.search(chunk)
        if not id_match:
            logger.debug("Skipping search entry without article id: %r", chunk[:80])
            continue
        article_id = id_match.group(1)

        excerpt_match = _EXCERPT.search(chunk)
        excerpt = excerpt_match.group(1).strip() if excerpt_match else ""
        excerpt = _TAG.sub("", excerpt)
        excerpt = re.sub(r"\.\.\.$", "", excerpt).strip()

        articles.append(
            ArticleRecord(
                id=article_id,
                title=title or "Untitled",
                content=excerpt or f"Content for article {title}",
                url=url_template.format(id=article_id),
                source=source,
                full_content_available=False,
            )
        )

    return articles


def extract_image_urls(html: str) -> List[str]:
    """All ``<img src>`` values in document order."""
    soup = BeautifulSoup(html or "", "html.parser")
    return [img["src"] for img in soup.find_all("img", src=True) if img["src"]]


def html_to_text(html: str) -> str:
    """Strip tags, decode entities and collapse runs of blank lines."""
    soup = BeautifulSoup(html or "", "html.parser")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    text = soup.get_text()
    return _BLANK_LINES.sub("\n\n", text).strip()


def clean_article_content(html: str) -> str:
    """Plain text article body followed by a numbered list of its images.

    Images cannot be rendered by every consumer, so their URLs are kept as
    a labelled reference list after the text.
    """
    image_urls = extract_image_urls(html)
    content = html_to_text(html)

    if image_urls:
        lines = [content, "", IMAGE_SECTION_HEADER]
        lines.extend(f"{index}. {url}" for index, url in enumerate(image_urls, start=1))
        lines.extend(["", IMAGE_SECTION_NOTE])
        content = "\n".join(lines)

    return content


def first_heading(text: str) -> Optional[str]:
    """First non-empty line with markdown emphasis removed."""
    for line in (text or "").splitlines():
        line = line.strip().lstrip("#").strip().strip("*").strip()
        if line:
            return line
    return None

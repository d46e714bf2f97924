"""Link grammar for the mirrored documentation tree.

Documents inside the tree link to each other with hash routes (``#/path``),
root-relative paths (``/path``) or absolute URLs under the codex root. All of
them are normalized to absolute ``.md`` document URLs.
"""

import re
from typing import Dict, Iterable, List, Optional
from urllib.parse import urljoin, urlparse, urlunparse

from ..config import DEFAULT_CODEX_ROOT_URL

MARKDOWN_SUFFIX = ".md"

MARKDOWN_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")


def to_markdown_url(url: str) -> str:
    return url if url.endswith(MARKDOWN_SUFFIX) else f"{url}{MARKDOWN_SUFFIX}"


def to_human_readable_url(url: str) -> str:
    """Strip the markdown suffix from a document URL's path."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return url

    if parsed.path.endswith(MARKDOWN_SUFFIX):
        parsed = parsed._replace(path=parsed.path[:-len(MARKDOWN_SUFFIX)])

    return urlunparse(parsed)


def is_markdown_doc_url(url: str) -> bool:
    """Check whether an absolute URL points at a markdown document."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return False
    return parsed.path.lower().endswith(MARKDOWN_SUFFIX)


def normalize_link_to_markdown(raw_url: str, codex_root_url: str = DEFAULT_CODEX_ROOT_URL) -> Optional[str]:
    """Normalize an in-tree link to an absolute markdown document URL.

    Args:
        raw_url: Link target as written in the document
        codex_root_url: Root URL of the documentation tree

    Returns:
        Absolute ``.md`` URL, or None for links leaving the tree
    """
    trimmed = raw_url.strip()
    if not trimmed:
        return None

    if trimmed.startswith("#/"):
        return to_markdown_url(urljoin(codex_root_url, trimmed[2:]))

    if trimmed.startswith("/"):
        return to_markdown_url(urljoin(codex_root_url, trimmed[1:]))

    if re.match(r"^https?://", trimmed, re.IGNORECASE):
        if not trimmed.startswith(codex_root_url):
            return None
        return to_markdown_url(trimmed)

    return None


def extract_markdown_links(markdown: str, codex_root_url: str = DEFAULT_CODEX_ROOT_URL) -> List[str]:
    """Extract unique in-tree document URLs from markdown links, in order of appearance."""
    links: Dict[str, None] = {}

    for match in MARKDOWN_LINK_PATTERN.finditer(markdown):
        href = match.group(2).strip()
        if not href:
            continue

        normalized = normalize_link_to_markdown(href, codex_root_url)
        if normalized:
            links.setdefault(normalized, None)

    return list(links)


def rewrite_links_to_human_readable(content: str, codex_root_url: str = DEFAULT_CODEX_ROOT_URL) -> str:
    """Rewrite in-tree markdown links to absolute page URLs readers can open."""

    def replace(match: re.Match) -> str:
        normalized = normalize_link_to_markdown(match.group(2), codex_root_url)
        if not normalized:
            return match.group(0)
        return f"[{match.group(1)}]({to_human_readable_url(normalized)})"

    return MARKDOWN_LINK_PATTERN.sub(replace, content)


def collect_linked_urls_from_documents(documents: Dict[str, object], max_links: int,
                                       codex_root_url: str = DEFAULT_CODEX_ROOT_URL) -> List[str]:
    """Collect one-hop linked URLs that are not yet present in ``documents``.

    Args:
        documents: Mapping of URL to resolved ``DocumentEntry``
        max_links: Upper bound on returned URLs (at least 1)
        codex_root_url: Root URL of the documentation tree

    Returns:
        Linked document URLs in discovery order
    """
    links: Dict[str, None] = {}
    known_urls = set(documents)
    safe_max_links = max(1, max_links)

    for entry in documents.values():
        if entry is None or not entry.ok or not entry.content:
            continue

        for url in extract_markdown_links(entry.content, codex_root_url):
            if url not in known_urls:
                links.setdefault(url, None)

            if len(links) >= safe_max_links:
                return list(links)

    return list(links)


def dedupe_urls(urls: Iterable[str]) -> List[str]:
    """Drop repeated URLs, keeping the first occurrence of each."""
    return list(dict.fromkeys(urls))

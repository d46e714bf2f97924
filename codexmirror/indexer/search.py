"""Search over the mirrored documentation structure.

Every section, subsection and subsubsection becomes one ``SearchCandidate``
carrying its metadata plus the resolved content of the documents it links to.
Queries are ranked with the full-text index and normalized to a 0-100
confidence relative to the best match.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..pipelines.links import extract_markdown_links
from ..pipelines.resolver import DocumentEntry
from .fulltext import FullTextIndex
from .structure import StructureTree

SNIPPET_MAX_CHARS = 220

CANDIDATE_FIELD_BOOSTS = {
    "title": 4,
    "description": 3,
    "section_title": 2,
    "content": 1,
}


@dataclass
class SearchCandidate:
    id: str
    match_type: str  # "section", "subsection" or "subsubsection"
    title: str
    description: str
    section_title: str
    subsection_title: Optional[str]
    urls: List[str] = field(default_factory=list)
    content: str = ""

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "section_title": self.section_title,
            "content": self.content,
        }


@dataclass
class RankedMatch:
    candidate: SearchCandidate
    score: float
    confidence: int
    snippet: Optional[str]
    match_source: str  # "metadata" or "content"


def normalize_score(score: float, top_score: float) -> int:
    """Scale ``score`` to a 0-100 confidence relative to ``top_score``.

    Halves round up.
    """
    if score <= 0 or top_score <= 0:
        return 0
    return max(0, min(100, int(math.floor((score / top_score) * 100 + 0.5))))


def to_query_tokens(query: str) -> List[str]:
    return [token for token in query.lower().split() if token]


def has_token_hit(text: str, query_tokens: List[str]) -> bool:
    if not text:
        return False
    normalized = text.lower()
    return any(token in normalized for token in query_tokens)


def to_content_snippet(content: str, query_tokens: List[str]) -> Optional[str]:
    """First line of ``content`` containing a query token, trimmed and truncated."""
    if not content.strip():
        return None

    for line in content.split("\n"):
        if has_token_hit(line, query_tokens):
            return line.strip()[:SNIPPET_MAX_CHARS]
    return None


def _usable(entry: Optional[DocumentEntry]) -> bool:
    return entry is not None and entry.ok and bool(entry.content)


def collect_linked_content(urls: List[str], documents: Mapping[str, DocumentEntry]) -> str:
    """Concatenate resolved bodies of ``urls`` and of the documents they link to.

    Only one hop is followed and only documents already present in
    ``documents`` are used.
    """
    parts: List[str] = []
    seen = set()

    for url in urls:
        entry = documents.get(url)
        if not _usable(entry):
            continue

        parts.append(entry.content)
        seen.add(url)

        for linked_url in extract_markdown_links(entry.content):
            if linked_url in seen:
                continue
            linked_entry = documents.get(linked_url)
            if not _usable(linked_entry):
                continue
            parts.append(linked_entry.content)
            seen.add(linked_url)

    return "\n\n".join(parts)


def build_search_candidates(structure: StructureTree,
                            documents: Mapping[str, DocumentEntry]) -> List[SearchCandidate]:
    """One candidate per structure node, in document order."""
    candidates: List[SearchCandidate] = []

    for section in structure.sections:
        urls = [link.url for link in section.links]
        candidates.append(SearchCandidate(
            id=f"section:{section.title}",
            match_type="section",
            title=section.title,
            description=section.description,
            section_title=section.title,
            subsection_title=None,
            urls=urls,
            content=collect_linked_content(urls, documents),
        ))

        for subsection in section.subsections:
            urls = [link.url for link in subsection.links]
            candidates.append(SearchCandidate(
                id=f"subsection:{section.title}:{subsection.title}",
                match_type="subsection",
                title=subsection.title,
                description=subsection.description,
                section_title=section.title,
                subsection_title=subsection.title,
                urls=urls,
                content=collect_linked_content(urls, documents),
            ))

            for subsubsection in subsection.subsubsections:
                urls = [link.url for link in subsubsection.links]
                candidates.append(SearchCandidate(
                    id=f"subsubsection:{section.title}:{subsection.title}:{subsubsection.title}",
                    match_type="subsubsection",
                    title=subsubsection.title,
                    description=subsubsection.description,
                    section_title=section.title,
                    subsection_title=subsection.title,
                    urls=urls,
                    content=collect_linked_content(urls, documents),
                ))

    return candidates


def rank_matches_by_query(candidates: List[SearchCandidate], query: str, limit: int) -> List[RankedMatch]:
    """Rank candidates against a free-text query.

    Args:
        candidates: Output of ``build_search_candidates``
        query: Free-text query
        limit: Maximum number of matches (at least one is returned when any match)

    Returns:
        Matches by confidence descending, then title and section title ascending
    """
    if not query.strip() or not candidates:
        return []

    index = FullTextIndex(fields=list(CANDIDATE_FIELD_BOOSTS))
    # Candidate ids repeat when sibling nodes share a title, so index by position
    index.add_all(
        dict(candidate.to_record(), id=str(position))
        for position, candidate in enumerate(candidates)
    )

    results = index.search(query, boost=CANDIDATE_FIELD_BOOSTS, prefix=True, fuzzy=0.2)
    top_score = results[0].score if results else 0
    query_tokens = to_query_tokens(query)

    matches = []
    for result in results:
        candidate = candidates[int(result.id)]
        snippet = to_content_snippet(candidate.content, query_tokens)
        metadata_hit = (
            has_token_hit(candidate.title, query_tokens)
            or has_token_hit(candidate.description, query_tokens)
            or has_token_hit(candidate.section_title, query_tokens)
        )
        matches.append(RankedMatch(
            candidate=candidate,
            score=result.score,
            confidence=normalize_score(result.score, top_score),
            snippet=snippet,
            match_source="content" if not metadata_hit and snippet else "metadata",
        ))

    matches.sort(key=lambda match: (-match.confidence, match.candidate.title, match.candidate.section_title))
    return matches[:max(1, limit)]

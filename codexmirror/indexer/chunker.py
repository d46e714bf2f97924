from __future__ import annotations
from dataclasses import dataclass
from typing import List
import re

from .fulltext import FullTextIndex
from .search import SNIPPET_MAX_CHARS, has_token_hit, normalize_score, to_query_tokens

HEADING_PATTERN = re.compile(r'^##\s+')

CHUNK_FIELD_BOOSTS = {
    "heading": 2,
    "content": 1,
}


@dataclass
class DocumentChunk:
    heading: str
    start_line: int
    end_line: int
    content: str


@dataclass
class RankedChunkMatch:
    chunk: DocumentChunk
    score: float
    confidence: int
    snippet: str


def chunk_by_headings(text: str) -> List[DocumentChunk]:
    """Split markdown into chunks at level-2 headings.

    Text before the first heading becomes a "Document" chunk starting at
    line 1. Line numbers are 1-indexed and inclusive; chunks with blank
    content are dropped.
    """
    lines = text.split('\n')
    chunks: List[DocumentChunk] = []

    heading = 'Document'
    start_line = 1
    current: List[str] = []

    def flush(end_line: int):
        content = '\n'.join(current).strip()
        if content:
            chunks.append(DocumentChunk(heading, start_line, end_line, content))

    for line_number, line in enumerate(lines, start=1):
        if HEADING_PATTERN.match(line):
            flush(line_number - 1)
            heading = HEADING_PATTERN.sub('', line).strip() or 'Section'
            start_line = line_number
            current = [line]
            continue
        current.append(line)

    flush(len(lines))
    return chunks


def split_by_line_limit(chunks: List[DocumentChunk], max_lines: int) -> List[DocumentChunk]:
    """Split chunks longer than ``max_lines`` into numbered parts."""
    limit = max(1, max_lines)
    output: List[DocumentChunk] = []

    for chunk in chunks:
        lines = chunk.content.split('\n')
        if len(lines) <= limit:
            output.append(chunk)
            continue

        total = -(-len(lines) // limit)
        for offset in range(0, len(lines), limit):
            part_lines = lines[offset:offset + limit]
            start_line = chunk.start_line + offset
            output.append(DocumentChunk(
                heading=f"{chunk.heading} (part {offset // limit + 1}/{total})",
                start_line=start_line,
                end_line=start_line + len(part_lines) - 1,
                content='\n'.join(part_lines),
            ))

    return output


def _chunk_snippet(content: str, query_tokens: List[str]) -> str:
    line = next((line for line in content.split('\n') if has_token_hit(line, query_tokens)), content)
    return line.strip()[:SNIPPET_MAX_CHARS]


def search_chunks(chunks: List[DocumentChunk], query: str,
                  confidence_threshold: int = 80, top_k: int = 3) -> List[RankedChunkMatch]:
    """Rank chunks against ``query`` and keep the confident ones.

    Confidence is relative to the best chunk; matches below
    ``confidence_threshold`` are dropped. Ties are ordered by start line.
    """
    query = query.strip()
    if not query or not chunks:
        return []

    index = FullTextIndex(fields=list(CHUNK_FIELD_BOOSTS))
    index.add_all(
        {"id": str(position), "heading": chunk.heading, "content": chunk.content}
        for position, chunk in enumerate(chunks)
    )

    results = index.search(query, boost=CHUNK_FIELD_BOOSTS, prefix=True, fuzzy=0.2)
    top_score = results[0].score if results else 0
    query_tokens = to_query_tokens(query)

    matches = []
    for result in results:
        chunk = chunks[int(result.id)]
        confidence = normalize_score(result.score, top_score)
        if confidence < confidence_threshold:
            continue
        matches.append(RankedChunkMatch(
            chunk=chunk,
            score=result.score,
            confidence=confidence,
            snippet=_chunk_snippet(chunk.content, query_tokens),
        ))

    matches.sort(key=lambda match: (-match.confidence, match.chunk.start_line))
    return matches[:max(1, top_k)]


def slice_lines(text: str, start_line: int, end_line: int) -> str:
    """Lines ``start_line`` to ``end_line`` (1-indexed, inclusive) of ``text``."""
    lines = text.split('\n')
    start = max(1, start_line)
    end = max(start, end_line)
    return '\n'.join(lines[start - 1:end])

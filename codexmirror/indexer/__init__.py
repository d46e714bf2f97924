"""Indexer package for codexmirror.

Provides the structure tree types, search candidates and ranking, heading
chunking and markdown formatting.
"""

from .structure import Link, Subsubsection, Subsection, Section, StructureTree, collect_all_structure_urls
from .fulltext import FullTextIndex, SearchResult, tokenize
from .search import (
    SearchCandidate,
    RankedMatch,
    normalize_score,
    build_search_candidates,
    rank_matches_by_query
)
from .chunker import (
    DocumentChunk,
    RankedChunkMatch,
    chunk_by_headings,
    split_by_line_limit,
    search_chunks,
    slice_lines
)
from .formatting import (
    document_unavailable_message,
    resolve_linked_document,
    resolve_section_markdown,
    resolve_subsection_markdown,
    format_structure_markdown,
    build_query_output,
    collect_requested_section_urls,
    section_query_include_documents_default
)

__all__ = [
    # Structure
    'Link',
    'Subsubsection',
    'Subsection',
    'Section',
    'StructureTree',
    'collect_all_structure_urls',

    # Full-text index
    'FullTextIndex',
    'SearchResult',
    'tokenize',

    # Search
    'SearchCandidate',
    'RankedMatch',
    'normalize_score',
    'build_search_candidates',
    'rank_matches_by_query',

    # Chunker
    'DocumentChunk',
    'RankedChunkMatch',
    'chunk_by_headings',
    'split_by_line_limit',
    'search_chunks',
    'slice_lines',

    # Formatting
    'document_unavailable_message',
    'resolve_linked_document',
    'resolve_section_markdown',
    'resolve_subsection_markdown',
    'format_structure_markdown',
    'build_query_output',
    'collect_requested_section_urls',
    'section_query_include_documents_default'
]

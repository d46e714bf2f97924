"""codexmirror: mirror, cache and search a rendered documentation tree."""

__version__ = "0.1.0"

# pipelines must load before indexer; the indexer imports link and resolver types from it
from .pipelines import (
    DocumentEntry,
    DocumentResolver,
    RenderPoolRegistry,
    Snapshot,
    StructureFetchError,
    resolve_document,
    resolve_documents,
    build_snapshot,
    fetch_structure
)
from .indexer import (
    StructureTree,
    SearchCandidate,
    RankedMatch,
    DocumentChunk,
    RankedChunkMatch,
    build_search_candidates,
    rank_matches_by_query,
    chunk_by_headings,
    split_by_line_limit,
    search_chunks,
    slice_lines
)

__all__ = [
    'DocumentEntry',
    'DocumentResolver',
    'RenderPoolRegistry',
    'Snapshot',
    'StructureFetchError',
    'resolve_document',
    'resolve_documents',
    'build_snapshot',
    'fetch_structure',
    'StructureTree',
    'SearchCandidate',
    'RankedMatch',
    'DocumentChunk',
    'RankedChunkMatch',
    'build_search_candidates',
    'rank_matches_by_query',
    'chunk_by_headings',
    'split_by_line_limit',
    'search_chunks',
    'slice_lines'
]

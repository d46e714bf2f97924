"""Snapshots of the mirrored documentation.

A snapshot pairs the structure tree with every document it links to, plus
one hop of documents linked from those documents so search can index them.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import aiohttp

from ..indexer.structure import StructureTree, collect_all_structure_urls
from .links import collect_linked_urls_from_documents
from .resolver import DocumentEntry, DocumentResolver, get_document_resolver

logger = logging.getLogger(__name__)

STRUCTURE_CACHE_KEY = "codex:structure:v1"

StructureParser = Callable[[str], StructureTree]


class StructureFetchError(Exception):
    """Raised when the documentation index cannot be downloaded."""


@dataclass
class Snapshot:
    structure: StructureTree
    documents: Dict[str, DocumentEntry]
    source_url: str = "unknown"
    built_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )


async def build_snapshot(structure: StructureTree, source_url: str = "unknown",
                         resolver: Optional[DocumentResolver] = None,
                         expand_linked: bool = True) -> Snapshot:
    """Resolve every document of ``structure`` into a snapshot.

    Args:
        structure: Parsed structure tree
        source_url: Where the structure came from
        resolver: Resolver to use (defaults to the process-wide one)
        expand_linked: Also resolve one hop of documents linked from resolved bodies

    Returns:
        Snapshot with structure and documents
    """
    resolver = resolver or get_document_resolver()

    urls = collect_all_structure_urls(structure)
    documents = await resolver.resolve_many(urls)

    if expand_linked:
        linked_urls = collect_linked_urls_from_documents(
            documents,
            resolver.settings.max_linked_documents,
            resolver.settings.codex_root_url,
        )
        if linked_urls:
            logger.info(f"Resolving {len(linked_urls)} linked documents one hop from the structure")
            documents.update(await resolver.resolve_many(linked_urls))

    return Snapshot(structure=structure, documents=documents, source_url=source_url)


async def _download_structure(source_url: str, parse: StructureParser,
                              resolver: DocumentResolver) -> StructureTree:
    try:
        async with resolver.get_session().get(source_url) as response:
            if not 200 <= response.status < 300:
                raise StructureFetchError(
                    f"Failed to fetch llms markdown from {source_url} (status {response.status})"
                )
            markdown = await response.text()
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        raise StructureFetchError(
            f"Failed to fetch llms markdown from {source_url}: {str(e) or type(e).__name__}"
        ) from e

    structure = parse(markdown).prune()
    logger.info(f"Parsed structure from {source_url}: {len(structure.sections)} sections")
    return structure


async def fetch_structure(parse: StructureParser, source_url: Optional[str] = None,
                          resolver: Optional[DocumentResolver] = None) -> StructureTree:
    """Download and parse the documentation index, cached for the structure TTL.

    Raises:
        StructureFetchError: The index could not be downloaded
    """
    resolver = resolver or get_document_resolver()
    source_url = source_url or resolver.settings.llms_url

    cached_download = resolver.cache_store.memoize(
        _download_structure,
        key=lambda url, *_: f"{STRUCTURE_CACHE_KEY}:{url}",
        max_age=resolver.settings.structure_cache_ttl,
    )
    return await cached_download(source_url, parse, resolver)

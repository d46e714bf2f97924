"""Pipelines package for codexmirror.

Provides link handling, HTML conversion, browser rendering, document
resolution and snapshot building.
"""

from .links import (
    to_markdown_url,
    to_human_readable_url,
    is_markdown_doc_url,
    normalize_link_to_markdown,
    extract_markdown_links,
    rewrite_links_to_human_readable,
    collect_linked_urls_from_documents,
    dedupe_urls
)
from .html_convert import html_to_markdown, looks_like_html, replace_single_char_hugo_escapes
from .render_pool import (
    RenderConnectionError,
    RemoteBrowserConnector,
    RenderSlot,
    RenderPool,
    RenderPoolRegistry,
    create_render_pool_registry,
    extract_main_content_html,
    to_rendered_page_url
)
from .resolver import (
    DocumentEntry,
    DocumentResolver,
    map_with_concurrency,
    get_document_resolver,
    set_document_resolver,
    resolve_document,
    resolve_documents
)
from .snapshot import Snapshot, StructureFetchError, build_snapshot, fetch_structure

__all__ = [
    # Links
    'to_markdown_url',
    'to_human_readable_url',
    'is_markdown_doc_url',
    'normalize_link_to_markdown',
    'extract_markdown_links',
    'rewrite_links_to_human_readable',
    'collect_linked_urls_from_documents',
    'dedupe_urls',

    # Conversion
    'html_to_markdown',
    'looks_like_html',
    'replace_single_char_hugo_escapes',

    # Rendering
    'RenderConnectionError',
    'RemoteBrowserConnector',
    'RenderSlot',
    'RenderPool',
    'RenderPoolRegistry',
    'create_render_pool_registry',
    'extract_main_content_html',
    'to_rendered_page_url',

    # Resolver
    'DocumentEntry',
    'DocumentResolver',
    'map_with_concurrency',
    'get_document_resolver',
    'set_document_resolver',
    'resolve_document',
    'resolve_documents',

    # Snapshot
    'Snapshot',
    'StructureFetchError',
    'build_snapshot',
    'fetch_structure'
]

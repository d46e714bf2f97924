"""Markdown rendering of structure, documents and search results."""

from typing import TYPE_CHECKING, List, Mapping, Optional

from ..pipelines.links import rewrite_links_to_human_readable, to_human_readable_url
from ..pipelines.resolver import DocumentEntry
from .search import RankedMatch, SearchCandidate
from .structure import Link, Section, StructureTree

if TYPE_CHECKING:
    from ..pipelines.snapshot import Snapshot

DEFAULT_SEPARATOR = "\n\n"


def document_unavailable_message(entry: Optional[DocumentEntry], url: str) -> str:
    status_code = entry.status_code if entry and entry.status_code is not None else "N/A"
    status_text = (entry and (entry.status_text or entry.error)) or "Unavailable"
    return f"Documentation unavailable for {url}. Fetch returned {status_code} {status_text}."


def _document_content(entry: Optional[DocumentEntry], url: str) -> str:
    if entry is not None and entry.content:
        return entry.content
    return document_unavailable_message(entry, url)


def resolve_linked_document(entry: Optional[DocumentEntry], url: str) -> str:
    """Body of one document with codex links made human readable."""
    if entry is not None and entry.ok and entry.content:
        return rewrite_links_to_human_readable(entry.content)

    if entry is None:
        return f"Document not found in snapshot for {url}."

    return (
        f"Failed to fetch document content. Status: {entry.status_code or 'N/A'} "
        f"{entry.status_text or 'N/A'}. Error: {entry.error or 'N/A'}"
    )


def _concatenate(documents: Mapping[str, DocumentEntry], links: List[Link], separator: str) -> str:
    return separator.join(_document_content(documents.get(link.url), link.url) for link in links)


def resolve_section_markdown(snapshot: "Snapshot", section_title: str,
                             separator: str = DEFAULT_SEPARATOR) -> str:
    """Concatenated documents of a section and its subsections; empty if the section is unknown."""
    section = snapshot.structure.find_section(section_title)
    if section is None:
        return ""

    links = list(section.links)
    for subsection in section.subsections:
        links.extend(subsection.links)

    unique_links = []
    seen = set()
    for link in links:
        if link.url not in seen:
            seen.add(link.url)
            unique_links.append(link)

    return _concatenate(snapshot.documents, unique_links, separator)


def resolve_subsection_markdown(snapshot: "Snapshot", section_title: str, subsection_title: str,
                                separator: str = DEFAULT_SEPARATOR) -> str:
    section = snapshot.structure.find_section(section_title)
    if section is None:
        return ""

    subsection = section.find_subsection(subsection_title)
    if subsection is None:
        return ""

    return _concatenate(snapshot.documents, subsection.links, separator)


def _format_links(links: List[Link]) -> str:
    if not links:
        return ""
    return "\n".join(f"- [{link.title}]({to_human_readable_url(link.url)})" for link in links) + "\n\n"


def format_structure_markdown(structure: StructureTree) -> str:
    """Outline of the structure tree with human readable links."""
    output = f"# {structure.title}\n\n{structure.description}\n\n"

    for section in structure.sections:
        output += f"## {section.title}\n{section.description}\n\n"
        output += _format_links(section.links)

        for subsection in section.subsections:
            output += f"### {subsection.title}\n{subsection.description}\n\n"
            output += _format_links(subsection.links)

            for subsubsection in subsection.subsubsections:
                output += f"#### {subsubsection.title}\n{subsubsection.description}\n\n"
                output += _format_links(subsubsection.links)

    return output


def _candidate_label(candidate: SearchCandidate) -> str:
    if candidate.match_type == "subsubsection":
        return f"{candidate.section_title} > {candidate.subsection_title or 'Unknown'} > {candidate.title}"
    if candidate.match_type == "subsection":
        return f"{candidate.section_title} > {candidate.title}"
    return candidate.title


def build_query_output(query: str, matches: List[RankedMatch]) -> str:
    """Markdown report of ranked search matches."""
    output = f"# Query Codex\n\n- query: {query}\n\n"

    if not matches:
        return output + "No matching section/subsection documents found.\n"

    for match in matches:
        candidate = match.candidate
        output += f"## {_candidate_label(candidate)}\n"
        output += f"- confidence: {match.confidence}\n"
        output += f"- matchSource: {match.match_source}\n"
        output += f"- title: {candidate.title}\n"
        output += f"- description: {candidate.description or 'N/A'}\n"
        if match.snippet:
            output += f"- snippet: {match.snippet}\n"

        if not candidate.urls:
            output += "- urls: none\n\n"
            continue

        output += "- urls:\n"
        output += "\n".join(f"  - {to_human_readable_url(url)}" for url in candidate.urls) + "\n\n"

    return output


def collect_requested_section_urls(section: Section, subsections: Optional[List[str]] = None,
                                   include_section_documents: bool = True) -> List[str]:
    """URLs of a section, limited to the named subsections when any are given."""
    urls = {}

    if include_section_documents:
        for link in section.links:
            urls.setdefault(link.url, None)

    titles = subsections or [subsection.title for subsection in section.subsections]
    for title in titles:
        subsection = section.find_subsection(title)
        if subsection is None:
            continue

        for link in subsection.links:
            urls.setdefault(link.url, None)
        for subsubsection in subsection.subsubsections:
            for link in subsubsection.links:
                urls.setdefault(link.url, None)

    return list(urls)


def section_query_include_documents_default(subsections: Optional[List[str]] = None,
                                            include_section_documents: Optional[bool] = None) -> bool:
    """Section documents are included unless specific subsections were requested."""
    if include_section_documents is not None:
        return include_section_documents
    return not subsections

"""Structure tree of the mirrored documentation.

The tree is produced by an external parser from the llms index; these types
are what the resolver, search index and formatters consume.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List

from ..pipelines.links import is_markdown_doc_url


@dataclass
class Link:
    title: str
    url: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Link:
        return cls(title=data.get('title', ''), url=data['url'])


@dataclass
class Subsubsection:
    title: str
    description: str = ""
    links: List[Link] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Subsubsection:
        return cls(
            title=data['title'],
            description=data.get('description', ''),
            links=[Link.from_dict(link) for link in data.get('links', [])],
        )


@dataclass
class Subsection:
    title: str
    description: str = ""
    links: List[Link] = field(default_factory=list)
    subsubsections: List[Subsubsection] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Subsection:
        return cls(
            title=data['title'],
            description=data.get('description', ''),
            links=[Link.from_dict(link) for link in data.get('links', [])],
            subsubsections=[Subsubsection.from_dict(s) for s in data.get('subsubsections', [])],
        )


@dataclass
class Section:
    title: str
    description: str = ""
    links: List[Link] = field(default_factory=list)
    subsections: List[Subsection] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Section:
        return cls(
            title=data['title'],
            description=data.get('description', ''),
            links=[Link.from_dict(link) for link in data.get('links', [])],
            subsections=[Subsection.from_dict(s) for s in data.get('subsections', [])],
        )

    def find_subsection(self, title: str) -> Subsection | None:
        return next((s for s in self.subsections if s.title == title), None)


@dataclass
class StructureTree:
    """Parsed section/subsection/subsubsection hierarchy."""
    title: str = ""
    description: str = ""
    sections: List[Section] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> StructureTree:
        return cls(
            title=data.get('title', ''),
            description=data.get('description', ''),
            sections=[Section.from_dict(s) for s in data.get('sections', [])],
        )

    def find_section(self, title: str) -> Section | None:
        return next((s for s in self.sections if s.title == title), None)

    def prune(self) -> StructureTree:
        """Return a copy keeping only markdown document links and the nodes that still carry some."""
        def keep(links: List[Link]) -> List[Link]:
            return [link for link in links if is_markdown_doc_url(link.url)]

        sections = []

        for section in self.sections:
            subsections = []
            for subsection in section.subsections:
                subsubsections = [
                    Subsubsection(title=s.title, description=s.description, links=keep(s.links))
                    for s in subsection.subsubsections
                    if keep(s.links)
                ]
                links = keep(subsection.links)
                if links or subsubsections:
                    subsections.append(Subsection(
                        title=subsection.title,
                        description=subsection.description,
                        links=links,
                        subsubsections=subsubsections,
                    ))

            section_links = keep(section.links)
            if section_links or subsections:
                sections.append(Section(
                    title=section.title,
                    description=section.description,
                    links=section_links,
                    subsections=subsections,
                ))

        return StructureTree(title=self.title, description=self.description, sections=sections)

    def iter_links(self) -> Iterator[Link]:
        """Yield every link in document order."""
        for section in self.sections:
            yield from section.links
            for subsection in section.subsections:
                yield from subsection.links
                for subsubsection in subsection.subsubsections:
                    yield from subsubsection.links


def collect_all_structure_urls(structure: StructureTree) -> List[str]:
    """Unique link URLs of the whole tree, in document order."""
    return list(dict.fromkeys(link.url for link in structure.iter_links()))

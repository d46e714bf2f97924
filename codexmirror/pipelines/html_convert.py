"""HTML to markdown conversion for rendered and fetched documents."""

import logging
import re
from typing import List

from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction, Tag
from trafilatura import extract

logger = logging.getLogger(__name__)

HTML_MARKERS = [
    re.compile(r"<!doctype\s+html", re.IGNORECASE),
    re.compile(r"<html[\s>]", re.IGNORECASE),
    re.compile(r"<body[\s>]", re.IGNORECASE),
    re.compile(r"<head[\s>]", re.IGNORECASE),
    re.compile(r"<([a-z][a-z0-9-]*)(\s[^>]*)?>[\s\S]*</\1>", re.IGNORECASE),
]

# Markers of a complete page rather than a rendered content fragment
FULL_PAGE_MARKERS = HTML_MARKERS[:4]

HUGO_ESCAPE_PATTERN = re.compile(r"\{\{'([^'\n\r])'\}\}")

# Shorter extractions are treated as a failed trafilatura pass
MIN_EXTRACTED_CHARS = 40

SKIPPED_TAGS = {"script", "style", "noscript", "template", "svg", "head", "title", "meta", "link"}
BLOCK_TAGS = {
    "p", "div", "section", "article", "main", "header", "footer", "nav", "aside",
    "blockquote", "figure", "figcaption", "details", "summary", "dl", "dt", "dd", "body", "html",
}
HEADING_TAGS = {f"h{level}": level for level in range(1, 7)}

# Placeholders survive whitespace normalization and are restored at the end
_CODE_BLOCK = "\x00{}\x00"
_CODE_BLOCK_PATTERN = re.compile(r"\x00(\d+)\x00")
_INDENT = "\x01"


def looks_like_html(content: str) -> bool:
    """Detect whether content is HTML rather than markdown or plain text."""
    trimmed = content.strip()
    if not trimmed:
        return False
    return any(pattern.search(trimmed) for pattern in HTML_MARKERS)


def looks_like_full_page(content: str) -> bool:
    return any(pattern.search(content) for pattern in FULL_PAGE_MARKERS)


def replace_single_char_hugo_escapes(content: str) -> str:
    """Replace ``{{'c'}}`` escapes left by the site generator with the literal character."""
    return HUGO_ESCAPE_PATTERN.sub(r"\1", content)


class _MarkdownWriter:
    """Walks a parsed tree emitting markdown for headings, links, lists, tables and code."""

    def __init__(self):
        self.code_blocks: List[str] = []

    def render(self, node) -> str:
        if isinstance(node, (Comment, Declaration, Doctype, ProcessingInstruction)):
            return ""
        if isinstance(node, NavigableString):
            return re.sub(r"\s+", " ", str(node))
        if not isinstance(node, Tag):
            return ""

        name = node.name
        if name in SKIPPED_TAGS:
            return ""
        if name in HEADING_TAGS:
            text = self.children(node).strip()
            return f"\n\n{'#' * HEADING_TAGS[name]} {text}\n\n" if text else ""
        if name == "pre":
            return self.code_block(node)
        if name == "code":
            text = node.get_text()
            return f"`{text}`" if text.strip() else ""
        if name == "a":
            return self.link(node)
        if name in ("strong", "b"):
            return self.emphasis(node, "**")
        if name in ("em", "i"):
            return self.emphasis(node, "*")
        if name == "br":
            return "\n"
        if name == "hr":
            return "\n\n---\n\n"
        if name == "img":
            alt = (node.get("alt") or "").strip()
            return f"![{alt}]({node['src'].strip()})" if node.get("src") else alt
        if name in ("ul", "ol"):
            return f"\n\n{self.list_block(node, depth=0)}\n\n"
        if name == "table":
            return self.table(node)

        text = self.children(node)
        if name in BLOCK_TAGS:
            return f"\n\n{text.strip()}\n\n"
        return text

    def children(self, node: Tag) -> str:
        return "".join(self.render(child) for child in node.children)

    def link(self, node: Tag) -> str:
        text = self.children(node).strip()
        href = (node.get("href") or "").strip()
        if not text:
            return ""
        return f"[{text}]({href})" if href else text

    def emphasis(self, node: Tag, marker: str) -> str:
        text = self.children(node)
        if not text.strip():
            return text
        return f"{marker}{text.strip()}{marker}"

    def code_block(self, node: Tag) -> str:
        code = node.find("code")
        language = ""
        for class_name in (code or node).get("class") or []:
            if class_name.startswith("language-"):
                language = class_name[len("language-"):]
                break
        body = (code or node).get_text().strip("\n")
        self.code_blocks.append(f"```{language}\n{body}\n```")
        return "\n\n" + _CODE_BLOCK.format(len(self.code_blocks) - 1) + "\n\n"

    def list_block(self, node: Tag, depth: int) -> str:
        ordered = node.name == "ol"
        lines = []
        for position, item in enumerate(node.find_all("li", recursive=False), start=1):
            nested = []
            parts = []
            for child in item.children:
                if isinstance(child, Tag) and child.name in ("ul", "ol"):
                    nested.append(self.list_block(child, depth + 1))
                else:
                    parts.append(self.render(child))
            text = re.sub(r"\s*\n\s*", " ", "".join(parts)).strip()
            bullet = f"{position}." if ordered else "-"
            lines.append(f"{_INDENT * depth}{bullet} {text}")
            lines.extend(nested)
        return "\n".join(lines)

    def table(self, node: Tag) -> str:
        rows = []
        for row in node.find_all("tr"):
            cells = [
                re.sub(r"\s+", " ", self.children(cell)).strip().replace("|", "\\|")
                for cell in row.find_all(["th", "td"], recursive=False)
            ]
            if cells:
                rows.append("| " + " | ".join(cells) + " |")
        if not rows:
            return ""
        width = rows[0].count(" | ") + 1
        rows.insert(1, "| " + " | ".join(["---"] * width) + " |")
        return "\n\n" + "\n".join(rows) + "\n\n"

    def finish(self, text: str) -> str:
        lines = [line.strip() for line in text.split("\n")]
        text = re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()
        text = text.replace(_INDENT, "  ")
        return _CODE_BLOCK_PATTERN.sub(lambda match: self.code_blocks[int(match.group(1))], text)


def soup_to_markdown(html: str) -> str:
    """Convert an HTML fragment to markdown, keeping its document structure."""
    soup = BeautifulSoup(html, "html.parser")
    writer = _MarkdownWriter()
    return writer.finish(writer.children(soup))


def html_to_markdown(content: str) -> str:
    """Convert HTML to markdown.

    Non-HTML input passes through. Rendered content fragments are converted
    structurally so headings, links, lists and code survive. Complete pages
    go through trafilatura first to drop navigation boilerplate, falling back
    to the structural conversion when extraction comes back empty. If
    conversion fails the original content is returned unchanged.
    """
    if not looks_like_html(content):
        return replace_single_char_hugo_escapes(content)

    result = content
    try:
        markdown = None
        if looks_like_full_page(content):
            markdown = extract(
                content,
                output_format="markdown",
                include_links=True,
                include_tables=True,
                include_formatting=True,
            )
        if not markdown or len(markdown.strip()) < MIN_EXTRACTED_CHARS:
            markdown = soup_to_markdown(content)
        result = markdown or content
    except Exception as e:
        logger.warning(f"HTML to markdown conversion failed, keeping original content: {e}")
        result = content

    return replace_single_char_hugo_escapes(result)

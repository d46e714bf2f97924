"""Tests for search candidates, ranking and the full-text index."""

import pytest

from codexmirror.indexer.fulltext import FullTextIndex, levenshtein, tokenize
from codexmirror.indexer.search import (
    build_search_candidates,
    normalize_score,
    rank_matches_by_query,
    to_content_snippet,
)
from codexmirror.indexer.structure import Link, Section, StructureTree, Subsection, Subsubsection
from codexmirror.pipelines.resolver import DocumentEntry

ROOT = "https://cumulocity.com/codex/"
ICONS_URL = ROOT + "design/icons.md"
ALIASES_URL = ROOT + "design/icon-aliases.md"
COLORS_URL = ROOT + "design/colors.md"
CHARTS_URL = ROOT + "widgets/charts.md"

ICONS_BODY = """# Icons

Use the c8y-icon component to render an icon.

## Aliases

Semantic actions map to aliases, see [Icon aliases](#/design/icon-aliases)."""


def entry(content):
    return DocumentEntry(ok=True, content=content, status_code=200, status_text="OK",
                         fetched_at="2024-01-01T00:00:00Z")


@pytest.fixture
def structure():
    return StructureTree(title="Codex", sections=[
        Section(title="Design System", description="Visual language", subsections=[
            Subsection(title="Icons", description="Icon library", links=[Link("Icons", ICONS_URL)]),
            Subsection(title="Colors", description="Color palette", links=[Link("Colors", COLORS_URL)]),
        ]),
        Section(title="Widgets", description="Dashboard widgets", subsections=[
            Subsection(title="Charts", description="Charting widgets", links=[Link("Charts", CHARTS_URL)],
                       subsubsections=[Subsubsection(title="Line charts", description="Time series")]),
        ]),
    ])


@pytest.fixture
def documents():
    return {
        ICONS_URL: entry(ICONS_BODY),
        ALIASES_URL: entry("Alias names such as delete, edit and save."),
        COLORS_URL: entry("# Colors\n\nPrimary and secondary brand colors."),
        CHARTS_URL: DocumentEntry(ok=False, content=None, status_code=404, status_text="Not Found",
                                  fetched_at="2024-01-01T00:00:00Z"),
    }


class TestNormalizeScore:
    def test_reference_values(self):
        assert normalize_score(5, 5) == 100
        assert normalize_score(2.5, 5) == 50
        assert normalize_score(0, 5) == 0
        assert normalize_score(3, 0) == 0

    def test_half_rounds_up(self):
        assert normalize_score(0.125, 1) == 13
        assert normalize_score(1, 8) == 13

    def test_clamped(self):
        assert normalize_score(10, 5) == 100
        assert normalize_score(-1, 5) == 0


class TestBuildCandidates:
    """Test suite for candidate construction"""

    def test_one_candidate_per_node(self, structure, documents):
        candidates = build_search_candidates(structure, documents)

        assert [c.id for c in candidates] == [
            "section:Design System",
            "subsection:Design System:Icons",
            "subsection:Design System:Colors",
            "section:Widgets",
            "subsection:Widgets:Charts",
            "subsubsection:Widgets:Charts:Line charts",
        ]
        line_charts = candidates[-1]
        assert line_charts.match_type == "subsubsection"
        assert line_charts.section_title == "Widgets"
        assert line_charts.subsection_title == "Charts"

    def test_content_includes_one_hop_links(self, structure, documents):
        """Test that linked documents already resolved are appended"""
        icons = build_search_candidates(structure, documents)[1]

        assert icons.content == ICONS_BODY + "\n\n" + "Alias names such as delete, edit and save."
        assert icons.urls == [ICONS_URL]

    def test_failed_documents_skipped(self, structure, documents):
        charts = build_search_candidates(structure, documents)[4]

        assert charts.content == ""
        assert charts.urls == [CHARTS_URL]


class TestRankMatches:
    """Test suite for query ranking"""

    def test_title_query(self, structure, documents):
        candidates = build_search_candidates(structure, documents)

        matches = rank_matches_by_query(candidates, "icons", 5)

        assert matches[0].candidate.title == "Icons"
        assert matches[0].confidence == 100
        assert matches[0].match_source == "metadata"

    def test_content_only_query(self, structure, documents):
        """Test that terms found only in a body rank that body's node first"""
        candidates = build_search_candidates(structure, documents)

        matches = rank_matches_by_query(candidates, "aliases semantic actions", 5)

        assert matches[0].candidate.title == "Icons"
        assert matches[0].match_source == "content"
        assert matches[0].snippet == "## Aliases"

    def test_confidence_non_increasing(self, structure, documents):
        candidates = build_search_candidates(structure, documents)

        for query in ["icons", "color widgets", "chart", "design"]:
            confidences = [m.confidence for m in rank_matches_by_query(candidates, query, 10)]
            assert confidences == sorted(confidences, reverse=True)

    def test_limit(self, structure, documents):
        candidates = build_search_candidates(structure, documents)

        assert len(rank_matches_by_query(candidates, "design", 0)) == 1
        assert len(rank_matches_by_query(candidates, "design icons colors", 2)) == 2

    def test_equal_confidence_ordered_by_title(self):
        structure = StructureTree(title="Codex", sections=[
            Section(title="Zeta", description="shared term"),
            Section(title="Alpha", description="shared term"),
        ])

        matches = rank_matches_by_query(build_search_candidates(structure, {}), "shared", 5)

        assert [(m.candidate.title, m.confidence) for m in matches] == [("Alpha", 100), ("Zeta", 100)]

    def test_equal_titles_ordered_by_section_title(self):
        structure = StructureTree(title="Codex", sections=[
            Section(title="Zeta", subsections=[Subsection(title="Setup", description="install steps")]),
            Section(title="Alpha", subsections=[Subsection(title="Setup", description="install steps")]),
        ])

        matches = rank_matches_by_query(build_search_candidates(structure, {}), "install", 5)

        assert [(m.candidate.section_title, m.confidence) for m in matches] == [("Alpha", 100), ("Zeta", 100)]

    def test_sibling_nodes_with_same_title_stay_distinct(self):
        """Test that a match on the first of two identically titled nodes reports that node"""
        structure = StructureTree(title="Codex", sections=[
            Section(title="Widgets", subsections=[
                Subsection(title="Charts", subsubsections=[
                    Subsubsection(title="Overview", description="alpha widgets"),
                    Subsubsection(title="Overview", description="beta dashboards"),
                ]),
            ]),
        ])
        candidates = build_search_candidates(structure, {})

        assert candidates[2].id == candidates[3].id
        assert [m.candidate.description for m in rank_matches_by_query(candidates, "alpha", 5)] == ["alpha widgets"]
        assert [m.candidate.description for m in rank_matches_by_query(candidates, "beta", 5)] == ["beta dashboards"]

    def test_blank_query_or_no_candidates(self, structure, documents):
        assert rank_matches_by_query(build_search_candidates(structure, documents), "   ", 5) == []
        assert rank_matches_by_query([], "icons", 5) == []

    def test_snippet_truncated(self):
        line = "needle " + "x" * 400
        snippet = to_content_snippet(f"first\n  {line}\nlast", ["needle"])

        assert snippet == line[:220]
        assert to_content_snippet("nothing here", ["needle"]) is None
        assert to_content_snippet("   ", ["needle"]) is None


class TestFullTextIndex:
    """Test suite for the full-text index"""

    def test_tokenize(self):
        assert tokenize("The c8y-icon Component_name!") == ["the", "c8y", "icon", "component", "name"]

    def test_levenshtein(self):
        assert levenshtein("kitten", "sitting") == 3
        assert levenshtein("icons", "icons") == 0
        assert levenshtein("icons", "iconography", max_distance=1) is None

    def test_exact_match_ranks_first(self):
        index = FullTextIndex(fields=["title"])
        index.add_all([
            {"id": "prefix", "title": "iconography"},
            {"id": "exact", "title": "icon"},
            {"id": "fuzzy", "title": "ikon"},
        ])

        results = index.search("icon", prefix=True, fuzzy=0.2)

        assert [r.id for r in results] == ["exact", "fuzzy", "prefix"]

    def test_field_boost(self):
        index = FullTextIndex(fields=["title", "content"])
        index.add_all([
            {"id": "body", "title": "other", "content": "charts"},
            {"id": "title", "title": "charts", "content": "other"},
        ])

        results = index.search("charts", boost={"title": 4, "content": 1})

        assert results[0].id == "title"

    def test_or_combination_rewards_more_terms(self):
        index = FullTextIndex(fields=["content"])
        index.add_all([
            {"id": "one", "content": "alpha filler"},
            {"id": "both", "content": "alpha beta"},
        ])

        results = index.search("alpha beta", prefix=False, fuzzy=0)

        assert [r.id for r in results] == ["both", "one"]
        assert results[0].terms == ["alpha", "beta"]

    def test_no_match(self):
        index = FullTextIndex(fields=["content"])
        index.add({"id": "a", "content": "alpha"})

        assert index.search("zzz") == []

"""In-memory full-text index with BM25+ scoring.

Records are indexed per field. A query term matches index terms exactly, by
prefix and within a bounded edit distance; derived matches are down-weighted
and scores of all query terms are summed (OR semantics), then multiplied by
the number of distinct query terms that matched.
"""

from __future__ import annotations

import math
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

TOKEN_SPLIT_PATTERN = re.compile(r"[\W_]+", re.UNICODE)

# BM25+ parameters
BM25_K = 1.2
BM25_B = 0.7
BM25_D = 0.5

PREFIX_WEIGHT = 0.375
FUZZY_WEIGHT = 0.45
MAX_FUZZY_DISTANCE = 6


def tokenize(text: str) -> List[str]:
    """Lower-cased terms of ``text`` split on whitespace and punctuation."""
    return [token.lower() for token in TOKEN_SPLIT_PATTERN.split(text or "") if token]


def levenshtein(left: str, right: str, max_distance: Optional[int] = None) -> Optional[int]:
    """Edit distance between two strings.

    With ``max_distance`` set, returns None as soon as the distance is known
    to exceed it.
    """
    if max_distance is not None and abs(len(left) - len(right)) > max_distance:
        return None

    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        if max_distance is not None and min(current) > max_distance:
            return None
        previous = current

    distance = previous[-1]
    if max_distance is not None and distance > max_distance:
        return None
    return distance


def bm25_plus(term_freq: int, matching_count: int, total_count: int,
              field_length: int, avg_field_length: float) -> float:
    idf = math.log(1 + (total_count - matching_count + 0.5) / (matching_count + 0.5))
    length_ratio = field_length / avg_field_length if avg_field_length else 0.0
    return idf * (BM25_D + term_freq * (BM25_K + 1) / (term_freq + BM25_K * (1 - BM25_B + BM25_B * length_ratio)))


@dataclass
class SearchResult:
    id: str
    score: float
    terms: List[str] = field(default_factory=list)


class FullTextIndex:
    """Field-aware inverted index over dict records."""

    def __init__(self, fields: Sequence[str], id_field: str = "id"):
        if not fields:
            raise ValueError("FullTextIndex needs at least one field")

        self.fields = list(fields)
        self.id_field = id_field
        self.ids: List[str] = []
        # term -> field -> doc position -> term frequency
        self.postings: Dict[str, Dict[str, Dict[int, int]]] = defaultdict(lambda: defaultdict(dict))
        self.field_lengths: List[Dict[str, int]] = []
        self._length_totals: Dict[str, int] = defaultdict(int)
        self._length_counts: Dict[str, int] = defaultdict(int)

    @property
    def document_count(self) -> int:
        return len(self.ids)

    def add(self, record: Mapping[str, Any]):
        position = len(self.ids)
        self.ids.append(str(record[self.id_field]))
        lengths: Dict[str, int] = {}

        for field_name in self.fields:
            value = record.get(field_name)
            if value is None:
                continue

            terms = tokenize(str(value))
            lengths[field_name] = len(terms)
            self._length_totals[field_name] += len(terms)
            self._length_counts[field_name] += 1

            for term in terms:
                by_doc = self.postings[term][field_name]
                by_doc[position] = by_doc.get(position, 0) + 1

        self.field_lengths.append(lengths)

    def add_all(self, records: Iterable[Mapping[str, Any]]):
        for record in records:
            self.add(record)

    def _avg_field_length(self, field_name: str) -> float:
        count = self._length_counts.get(field_name, 0)
        return self._length_totals[field_name] / count if count else 0.0

    def _expand_term(self, query_term: str, prefix: bool, fuzzy: float) -> Dict[str, float]:
        """Index terms matched by ``query_term`` with their match weight."""
        weights: Dict[str, float] = {}
        if query_term in self.postings:
            weights[query_term] = 1.0

        max_distance = min(MAX_FUZZY_DISTANCE, int(math.floor(len(query_term) * fuzzy + 0.5))) if fuzzy else 0

        for term in self.postings:
            if term in weights:
                continue

            if prefix and term.startswith(query_term):
                distance = len(term) - len(query_term)
                weights[term] = PREFIX_WEIGHT * len(term) / (len(term) + 0.3 * distance)
                continue

            if max_distance:
                distance = levenshtein(query_term, term, max_distance)
                if distance:
                    weights[term] = FUZZY_WEIGHT * len(term) / (len(term) + distance)

        return weights

    def _score_term(self, query_term: str, boost: Mapping[str, float],
                    prefix: bool, fuzzy: float) -> Dict[int, float]:
        scores: Dict[int, float] = defaultdict(float)

        for term, weight in self._expand_term(query_term, prefix, fuzzy).items():
            for field_name, by_doc in self.postings[term].items():
                field_boost = boost.get(field_name, 1.0)
                if not field_boost:
                    continue

                avg_length = self._avg_field_length(field_name)
                for position, term_freq in by_doc.items():
                    raw = bm25_plus(
                        term_freq,
                        len(by_doc),
                        self.document_count,
                        self.field_lengths[position].get(field_name, 0),
                        avg_length,
                    )
                    scores[position] += weight * field_boost * raw

        return scores

    def search(self, query: str, boost: Optional[Mapping[str, float]] = None,
               prefix: bool = True, fuzzy: float = 0.2) -> List[SearchResult]:
        """Search the index, OR-combining query terms.

        Args:
            query: Free-text query
            boost: Per-field score multipliers (default 1)
            prefix: Match index terms starting with a query term
            fuzzy: Allowed edit distance as a fraction of the query term length

        Returns:
            Results by descending score; equal scores keep insertion order
        """
        boost = boost or {}
        totals: Dict[int, float] = defaultdict(float)
        matched_terms: Dict[int, List[str]] = defaultdict(list)

        for query_term in dict.fromkeys(tokenize(query)):
            for position, score in self._score_term(query_term, boost, prefix, fuzzy).items():
                totals[position] += score
                matched_terms[position].append(query_term)

        results = [
            SearchResult(
                id=self.ids[position],
                score=totals[position] * len(matched_terms[position]),
                terms=matched_terms[position],
            )
            for position in sorted(totals)
        ]
        results.sort(key=lambda result: -result.score)
        return results

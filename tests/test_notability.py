"""
tests/test_notability.py

Pytest unit tests for NotabilityAssessor and its helpers.

Coverage
--------
- Source classification by domain
- Query construction from name and location
- Heuristic assessment when the provider answers without JSON
- Provider verdicts parsed from fenced JSON
- No references, failing search, failing provider
- Every query is issued once, in order, through the timeout pool
- Top reference selection
"""

from __future__ import annotations

import json

import pytest

from app.providers.base import SearchResult
from app.providers.scoring import MockScoringProvider
from app.providers.search import MockSearchProvider
from cfp.errors import RetryableIOError
from cfp.notability import (
    NotabilityAssessor,
    SourceType,
    classify_source,
    clean_business_name,
    heuristic_reference,
    parse_assessment,
    select_top_references,
)

CRAWL_DATA = {"location": {"city": "Seattle", "state": "WA"}}
BUSINESS_URL = "https://harbor-bistro.com"


class _FailingSearch:
    def __init__(self) -> None:
        self.queries: list[str] = []

    def search(self, query: str):
        self.queries.append(query)
        raise RetryableIOError("search unavailable")


def _assessor(search=None, scoring=None, **kwargs) -> NotabilityAssessor:
    return NotabilityAssessor(
        search or MockSearchProvider(),
        scoring,
        assessment_model="model-a",
        search_timeout_seconds=None,
        scoring_timeout_seconds=None,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestClassifySource:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://www.seattle.gov/licenses", SourceType.GOVERNMENT),
            ("https://www.seattletimes.com/business", SourceType.NEWS),
            ("https://www.yelp.com/biz/harbor-bistro", SourceType.DIRECTORY),
            ("https://www.tripadvisor.com/x", SourceType.REVIEW),
            ("https://opencorporates.com/companies/us_wa/1", SourceType.DATABASE),
            ("https://cs.washington.edu/alumni", SourceType.ACADEMIC),
            ("https://harbor-bistro.com/about", SourceType.COMPANY),
            ("https://someblog.example/post", SourceType.OTHER),
        ],
    )
    def test_domains(self, url: str, expected: str) -> None:
        assert classify_source(url, BUSINESS_URL) == expected

    def test_own_site_is_not_independent(self) -> None:
        reference = heuristic_reference(SearchResult(url="https://www.harbor-bistro.com/", title="Home"), BUSINESS_URL)
        assert not reference.is_independent
        assert not reference.qualifies

    def test_clean_business_name_drops_trailing_id(self) -> None:
        assert clean_business_name("Harbor Bistro 1763324055284") == "Harbor Bistro"


class TestBuildQueries:
    def test_includes_location_and_gov_query(self) -> None:
        queries = _assessor().build_queries("Harbor Bistro", CRAWL_DATA)
        assert queries == [
            '"Harbor Bistro" Seattle WA',
            '"Harbor Bistro" site:*.gov OR site:*.edu',
        ]

    def test_legal_suffix_variant(self) -> None:
        queries = _assessor().build_queries("Harbor Bistro LLC", None)
        assert '"Harbor Bistro"' in queries


# ---------------------------------------------------------------------------
# Assessment
# ---------------------------------------------------------------------------


class TestAssess:
    def test_heuristic_with_three_serious_references(self) -> None:
        assessment = _assessor(scoring=MockScoringProvider()).assess(
            "Harbor Bistro", CRAWL_DATA, business_url=BUSINESS_URL
        )

        assert assessment.assessed_by == "heuristic"
        assert assessment.is_notable
        assert assessment.confidence == 0.7
        assert assessment.serious_reference_count == 3
        assert [reference.source_type for reference in assessment.top_references] == [
            SourceType.GOVERNMENT,
            SourceType.NEWS,
            SourceType.DIRECTORY,
        ]

    def test_heuristic_below_minimum(self) -> None:
        search = MockSearchProvider(
            [
                SearchResult(url="https://www.yelp.com/biz/harbor-bistro", title="Yelp"),
                SearchResult(url="https://harbor-bistro.com/menu", title="Menu"),
            ]
        )

        assessment = _assessor(search=search).assess("Harbor Bistro", CRAWL_DATA, business_url=BUSINESS_URL)

        assert not assessment.is_notable
        assert assessment.confidence == 0.4
        assert "found 1" in assessment.recommendation

    def test_no_references(self) -> None:
        assessment = _assessor(search=MockSearchProvider([])).assess("Harbor Bistro", CRAWL_DATA)

        assert not assessment.is_notable
        assert assessment.confidence == 0.0
        assert assessment.top_references == []

    def test_search_failures_are_tolerated(self) -> None:
        search = _FailingSearch()

        assessment = _assessor(search=search).assess("Harbor Bistro", CRAWL_DATA)

        assert not assessment.is_notable
        assert len(search.queries) == 2

    def test_each_query_reaches_search_under_timeout(self) -> None:
        search = MockSearchProvider()
        assessor = NotabilityAssessor(
            search,
            None,
            assessment_model="model-a",
            search_timeout_seconds=5.0,
            scoring_timeout_seconds=None,
        )

        assessor.gather_references("Harbor Bistro LLC", CRAWL_DATA)

        assert search.queries == assessor.build_queries("Harbor Bistro LLC", CRAWL_DATA)
        assert len(set(search.queries)) == 3

    def test_provider_verdict_is_used(self) -> None:
        verdict = {
            "meetsNotability": False,
            "confidence": 0.55,
            "references": [
                {"index": 0, "isSerious": True, "isPubliclyAvailable": True, "isIndependent": True, "sourceType": "news"},
                {"index": 1, "isSerious": False, "isPubliclyAvailable": True, "isIndependent": True, "sourceType": "government"},
                {"index": 2, "isSerious": False, "isPubliclyAvailable": True, "isIndependent": True, "sourceType": "directory"},
            ],
            "recommendations": ["Add a press mention."],
        }
        scoring = MockScoringProvider(responses={"model-a": "```json\n" + json.dumps(verdict) + "\n```"})

        assessment = _assessor(scoring=scoring).assess("Harbor Bistro", CRAWL_DATA, business_url=BUSINESS_URL)

        assert assessment.assessed_by == "llm"
        assert not assessment.is_notable
        assert assessment.confidence == 0.55
        assert assessment.recommendation.endswith("Add a press mention.")

    def test_provider_failure_falls_back_to_heuristic(self) -> None:
        scoring = MockScoringProvider(failures={"model-a": RetryableIOError("rate limited")})

        assessment = _assessor(scoring=scoring).assess("Harbor Bistro", CRAWL_DATA, business_url=BUSINESS_URL)

        assert assessment.assessed_by == "heuristic"
        assert assessment.is_notable

    def test_summary_shape(self) -> None:
        assessment = _assessor().assess("Harbor Bistro", CRAWL_DATA, business_url=BUSINESS_URL)
        assert set(assessment.summary()) == {"is_notable", "confidence", "recommendation"}


class TestParsing:
    def test_invalid_json(self) -> None:
        assert parse_assessment("I cannot help with that.") is None

    def test_out_of_range_confidence(self) -> None:
        assert parse_assessment('{"meetsNotability": true, "confidence": 3}') is None

    def test_top_references_limit(self) -> None:
        references = [
            heuristic_reference(SearchResult(url=f"https://news{index}.example.com/x", title="t"), BUSINESS_URL)
            for index in range(8)
        ]
        assert len(select_top_references(references, limit=5)) == 5

"""Unit tests for deepdive.normalizer."""

from __future__ import annotations

import json

import pytest

from deepdive.config import SourceSettings
from deepdive.models.analysis import ParsedAnalysis
from deepdive.normalizer import (
    FALLBACK_CHARS,
    MAX_ARGUMENTS,
    MAX_DEFINITIONS,
    MAX_RELATED_ARTICLES,
    SourcePolicy,
    fallback_result,
    is_valid_url,
    normalize_articles,
    normalize_payload,
    parse_model_response,
    strip_citations,
)


def _payload(**overrides: object) -> dict:
    payload: dict = {
        "definitions": [{"term": "Inflation", "definition": "A general rise in prices."}],
        "arguments": {"main": ["Rates worked."], "counter": ["Supply shocks faded."]},
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# parse_model_response: extraction tiers
# ---------------------------------------------------------------------------


class TestParseTiers:
    def test_labeled_fence_with_preamble(self) -> None:
        reply = (
            'Sure! ```json\n{"definitions":[],"arguments":{"main":["x"],"counter":[]}}\n```'
        )
        result = parse_model_response(reply)
        assert result.arguments.main == ["x"]
        assert result.arguments.counter == []
        assert result.definitions == []

    def test_unlabeled_fence(self) -> None:
        reply = "Here you go:\n```\n" + json.dumps(_payload()) + "\n```\nHope that helps."
        result = parse_model_response(reply)
        assert result.arguments.main == ["Rates worked."]
        assert result.definitions[0].term == "Inflation"

    def test_object_span_inside_prose(self) -> None:
        reply = "The analysis is " + json.dumps(_payload()) + " as requested."
        result = parse_model_response(reply)
        assert result.arguments.counter == ["Supply shocks faded."]

    def test_bare_json(self) -> None:
        result = parse_model_response(json.dumps(_payload()))
        assert len(result.definitions) == 1

    def test_labeled_fence_preferred_over_earlier_object(self) -> None:
        reply = (
            'Draft: {"arguments": {"main": ["draft"]}}\n'
            '```json\n{"arguments": {"main": ["final"]}}\n```'
        )
        assert parse_model_response(reply).arguments.main == ["final"]

    def test_broken_fence_falls_through_to_next_tier(self) -> None:
        # The fenced block is not JSON, but the whole reply still contains an object span
        reply = '```json\nnot json at all\n```\n{"arguments": {"main": ["recovered"]}}'
        assert parse_model_response(reply).arguments.main == ["recovered"]

    def test_non_object_json_falls_back(self) -> None:
        result = parse_model_response('["a", "b"]')
        assert result.arguments.main == ['["a", "b"]']

    def test_unparseable_text_falls_back(self) -> None:
        result = parse_model_response("I could not analyze this article.")
        assert result.arguments.main == ["I could not analyze this article."]
        assert result.arguments.counter == []
        assert result.definitions == []
        assert result.related_articles == []

    @pytest.mark.parametrize(
        "reply",
        [
            "",
            "{",
            "}{",
            "```json\n```",
            "[" * 5000,
            "{" + '"a":' * 3000 + "1" + "}" * 3000,
            '{"arguments": "not a dict", "definitions": {"term": 1}}',
            '{"relatedArticles": [null, 1, {"title": 2}], "arguments": {"main": [1, null]}}',
        ],
    )
    def test_never_raises(self, reply: str) -> None:
        result = parse_model_response(reply)
        assert isinstance(result, ParsedAnalysis)

    def test_none_input_is_empty_result(self) -> None:
        result = parse_model_response(None)  # type: ignore[arg-type]
        assert result.arguments.main == []


# ---------------------------------------------------------------------------
# fallback_result
# ---------------------------------------------------------------------------


class TestFallback:
    def test_truncates_long_text(self) -> None:
        result = fallback_result("a" * (FALLBACK_CHARS + 50))
        assert result.arguments.main == ["a" * FALLBACK_CHARS + "..."]

    def test_short_text_not_ellipsized(self) -> None:
        assert fallback_result("short").arguments.main == ["short"]

    def test_citations_stripped(self) -> None:
        result = fallback_result("Prices rose [3] sharply.")
        assert result.arguments.main == ["Prices rose sharply."]

    def test_empty_text_has_no_arguments(self) -> None:
        assert fallback_result("   ").arguments.main == []


# ---------------------------------------------------------------------------
# Validation and normalization
# ---------------------------------------------------------------------------


class TestNormalizePayload:
    def test_non_dict_rejected(self) -> None:
        assert normalize_payload(["x"]) is None
        assert normalize_payload("x") is None

    def test_strings_trimmed_and_empties_dropped(self) -> None:
        result = normalize_payload(
            {
                "definitions": [
                    {"term": "  GDP ", "definition": " Output. "},
                    {"term": "", "definition": "orphan"},
                    {"term": "missing definition"},
                    "not a dict",
                ],
                "arguments": {"main": ["  one ", "", "   ", 5, None], "counter": "nope"},
            }
        )
        assert result is not None
        assert [(d.term, d.definition) for d in result.definitions] == [("GDP", "Output.")]
        assert result.arguments.main == ["one"]
        assert result.arguments.counter == []

    def test_lists_capped(self) -> None:
        result = normalize_payload(
            {
                "definitions": [{"term": f"t{i}", "definition": "d"} for i in range(50)],
                "arguments": {"main": [f"m{i}" for i in range(50)], "counter": ["c"] * 50},
                "relatedArticles": [
                    {"title": f"a{i}", "url": f"https://news.org/{i}"} for i in range(50)
                ],
            }
        )
        assert result is not None
        assert len(result.definitions) == MAX_DEFINITIONS
        assert len(result.arguments.main) == MAX_ARGUMENTS
        assert len(result.arguments.counter) == MAX_ARGUMENTS
        assert len(result.related_articles) == MAX_RELATED_ARTICLES

    def test_citations_removed_everywhere(self) -> None:
        result = normalize_payload(
            {
                "definitions": [{"term": "Rate [1]", "definition": "The price [2][3] of money."}],
                "arguments": {"main": ["Hikes [12] worked [4]."], "counter": ["[5] Not really"]},
            }
        )
        assert result is not None
        assert result.definitions[0].term == "Rate"
        assert result.definitions[0].definition == "The price of money."
        assert result.arguments.main == ["Hikes worked ."]
        assert result.arguments.counter == ["Not really"]

    def test_citation_only_string_dropped(self) -> None:
        result = normalize_payload({"arguments": {"main": ["[1]", "kept"]}})
        assert result is not None
        assert result.arguments.main == ["kept"]

    def test_missing_sections_default_empty(self) -> None:
        result = normalize_payload({})
        assert result is not None
        assert result.definitions == []
        assert result.arguments.main == []


class TestStripCitations:
    def test_nested_structures(self) -> None:
        data = {"a": ["x [1] y", {"b": "z[22]"}], "n": 3, "flag": True}
        assert strip_citations(data) == {"a": ["x y", {"b": "z"}], "n": 3, "flag": True}

    def test_non_digit_brackets_kept(self) -> None:
        assert strip_citations("see [a] and [1a]") == "see [a] and [1a]"


# ---------------------------------------------------------------------------
# URLs and source policy
# ---------------------------------------------------------------------------


class TestUrls:
    @pytest.mark.parametrize(
        "url",
        ["https://news.org/a", "http://news.org", "https://sub.news.org:8443/path?q=1"],
    )
    def test_valid(self, url: str) -> None:
        assert is_valid_url(url) is True

    @pytest.mark.parametrize(
        "url",
        ["", "not a url", "/relative/path", "ftp://files.org/x", "https://", "https://host:abc/"],
    )
    def test_invalid(self, url: str) -> None:
        assert is_valid_url(url) is False

    def test_suspicious_domains_dropped(self) -> None:
        articles = normalize_articles(
            [
                {"title": "Real", "url": "https://reuters.com/a"},
                {"title": "Fake", "url": "https://example.com/article"},
                {"title": "Fake sub", "url": "https://www.placeholder.com/x"},
                {"title": "Broken", "url": "not a url"},
                {"title": "  ", "url": "https://reuters.com/b"},
            ]
        )
        assert [a.title for a in articles] == ["Real"]

    def test_lookalike_domain_not_suspicious(self) -> None:
        policy = SourcePolicy()
        assert policy.is_suspicious("https://notexample.com/a") is False
        assert policy.is_suspicious("https://EXAMPLE.com/a") is True

    def test_policy_from_settings(self) -> None:
        policy = SourcePolicy.from_settings(
            SourceSettings(suspicious_domains=["Fake.News"], redirect_markers=["/redirect/"])
        )
        assert policy.is_suspicious("https://www.fake.news/story") is True
        assert policy.is_suspicious("https://example.com/") is False
        assert policy.is_redirect("https://search.org/redirect/abc") is True

    def test_custom_policy_applied_to_payload(self) -> None:
        policy = SourcePolicy(suspicious_domains=frozenset({"blocked.org"}))
        result = normalize_payload(
            {
                "relatedArticles": [
                    {"title": "A", "url": "https://blocked.org/a"},
                    {"title": "B", "url": "https://example.com/b"},
                ]
            },
            policy,
        )
        assert result is not None
        assert [a.title for a in result.related_articles] == ["B"]

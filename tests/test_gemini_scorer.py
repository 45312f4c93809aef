# tests/test_gemini_scorer.py
import json
import logging

import pytest

from company_site_resolver.gemini_scorer import (
    NOT_SCORED_REASON,
    GeminiScorer,
    build_prompt,
    score_candidate_urls,
)
from company_site_resolver.heuristic_scorer import heuristic_score
from company_site_resolver.models import CompanyInfo, PageContent, ScoredUrl, ScoreResult


class DummyResponse:
    def __init__(self, text, usage_metadata=None):
        self.text = text
        self.usage_metadata = usage_metadata


class DummyUsage:
    prompt_token_count = 120
    candidates_token_count = 30
    total_token_count = 150


class DummyModel:
    def __init__(self, payload=None, raw_text=None, error=None, usage=None):
        self._payload = payload
        self._raw_text = raw_text
        self._error = error
        self._usage = usage
        self.calls = []

    # 将来の引数追加に備えて互換化
    async def generate_content_async(self, contents, *args, **kwargs):
        self.calls.append(contents)
        if self._error is not None:
            raise self._error
        if self._raw_text is not None:
            return DummyResponse(self._raw_text, self._usage)
        return DummyResponse(json.dumps(self._payload), self._usage)


ACME = CompanyInfo(name="Acme Corp", license_number="13-ユ-123456")


def _acme_pages():
    return [
        PageContent(
            title="Acme Corp - Official",
            url="https://www.acme.com",
            snippet="Official website for Acme Corp",
            content="Sample content mentioning Acme Corp and address 123 Street",
        ),
        PageContent(
            title="Acme Partners",
            url="https://partners.acme.com",
            snippet="Partners portal",
            content="Sample content mentioning Acme Corp and address 123 Street",
        ),
    ]


def _many_pages(n):
    return [
        PageContent(title=f"p{i}", url=f"https://site{i}.example/page", snippet=None, content="")
        for i in range(n)
    ]


@pytest.mark.asyncio
async def test_end_to_end_scores_and_address():
    payload = {
        "urls": [
            {"url": "https://www.acme.com", "score": 0.9, "reason": "Official domain"},
            {"url": "https://partners.acme.com", "score": 0.6, "reason": "Partner portal"},
        ],
        "headquarters_address": "123 HQ Street",
    }
    model = DummyModel(payload)
    result = await GeminiScorer(model=model).score_candidate_urls(ACME, _acme_pages())

    assert result == ScoreResult(
        urls=[
            ScoredUrl(url="https://www.acme.com/", score=0.9, reason="Official domain"),
            ScoredUrl(url="https://partners.acme.com/", score=0.6, reason="Partner portal"),
        ],
        headquarters_address="123 HQ Street",
    )
    assert len(model.calls) == 1
    contents = model.calls[0]
    assert contents[0]["role"] == "user"
    assert "Company name: Acme Corp" in contents[0]["parts"][0]["text"]


@pytest.mark.asyncio
async def test_empty_pages_do_not_call_model():
    model = DummyModel({"urls": []})
    result = await GeminiScorer(model=model).score_candidate_urls(ACME, [])
    assert result == ScoreResult(urls=[])
    assert model.calls == []


@pytest.mark.asyncio
async def test_malformed_json_falls_back_to_heuristic():
    pages = _acme_pages()
    model = DummyModel(raw_text="Sure, here you go: {not valid json")
    result = await GeminiScorer(model=model).score_candidate_urls(ACME, pages)
    assert result == heuristic_score(ACME, pages)
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_model_error_falls_back_once_without_retry():
    pages = _acme_pages()
    model = DummyModel(error=RuntimeError("429 rate limited"))
    result = await GeminiScorer(model=model).score_candidate_urls(ACME, pages)
    assert result == heuristic_score(ACME, pages)
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_missing_model_uses_heuristic():
    scorer = GeminiScorer(model=DummyModel({"urls": []}))
    scorer.model = None
    pages = _acme_pages()
    assert await scorer.score_candidate_urls(ACME, pages) == heuristic_score(ACME, pages)


@pytest.mark.asyncio
@pytest.mark.parametrize("returned", [0, 3, 6])
async def test_result_cardinality_tracks_input_pages(returned):
    pages = _many_pages(3)
    entries = [
        {"url": f"https://site{i % 3}.example/", "score": 0.5 + 0.1 * (i % 3), "reason": f"r{i}"}
        for i in range(returned)
    ]
    model = DummyModel({"urls": entries, "headquarters_address": None})
    result = await GeminiScorer(model=model).score_candidate_urls(ACME, pages)

    assert len(result.urls) == len(pages)
    assert [u.url for u in result.urls] == [f"https://site{i}.example/" for i in range(3)]
    if returned == 0:
        assert all(u.score == 0.0 and u.reason == NOT_SCORED_REASON for u in result.urls)
    else:
        # 重複は先勝ち
        assert [u.reason for u in result.urls] == ["r0", "r1", "r2"]


@pytest.mark.asyncio
async def test_result_order_follows_input_not_model_output():
    pages = _many_pages(3)
    entries = [
        {"url": "https://site2.example/x", "score": 0.2},
        {"url": "https://site0.example", "score": 0.8},
        {"url": "https://unrelated.example", "score": 1.0},
    ]
    model = DummyModel({"urls": entries})
    result = await GeminiScorer(model=model).score_candidate_urls(ACME, pages)
    assert [(u.url, u.score) for u in result.urls] == [
        ("https://site0.example/", 0.8),
        ("https://site1.example/", 0.0),
        ("https://site2.example/", 0.2),
    ]


@pytest.mark.asyncio
async def test_scores_from_model_are_clamped():
    pages = _many_pages(2)
    entries = [
        {"url": "https://site0.example", "score": -5},
        {"url": "https://site1.example", "score": 12},
    ]
    result = await GeminiScorer(model=DummyModel({"urls": entries})).score_candidate_urls(ACME, pages)
    assert [u.score for u in result.urls] == [0.0, 1.0]


@pytest.mark.asyncio
async def test_address_falls_back_to_page_text():
    pages = [
        PageContent(
            title="会社概要",
            url="https://example.co.jp/company",
            snippet=None,
            content="本社所在地 〒530-0001 大阪府大阪市北区梅田1-1-1",
        )
    ]
    model = DummyModel({"urls": [{"url": "https://example.co.jp", "score": 0.95}], "headquarters_address": ""})
    result = await GeminiScorer(model=model).score_candidate_urls(ACME, pages)
    assert result.urls[0].score == 0.95
    assert result.headquarters_address == "大阪府大阪市北区梅田1-1-1"


@pytest.mark.asyncio
async def test_token_usage_is_logged(caplog):
    caplog.set_level(logging.INFO, logger="company_site_resolver.gemini_scorer")
    model = DummyModel({"urls": []}, usage=DummyUsage())
    await GeminiScorer(model=model).score_candidate_urls(ACME, _acme_pages())
    assert "prompt: 120, candidates: 30, total: 150" in caplog.text


@pytest.mark.asyncio
async def test_module_level_score_candidate_urls_uses_given_model():
    model = DummyModel({"urls": [{"url": "https://www.acme.com/", "score": 0.7}]})
    result = await score_candidate_urls(ACME, _acme_pages(), model=model)
    assert [u.score for u in result.urls] == [0.7, 0.0]


def test_prompt_contains_company_fields_and_truncated_content():
    company = CompanyInfo(
        name="テスト株式会社",
        license_number="13-ユ-000001",
        license_address="東京都港区1-1",
    )
    pages = [
        PageContent(title="A", url="https://a.example", snippet=None, content="x" * 1500),
        PageContent(title="B", url="https://b.example", snippet="snip", content="short"),
    ]
    prompt = build_prompt(company, pages)
    assert "Company name: テスト株式会社" in prompt
    assert "license number: 13-ユ-000001" in prompt
    assert "License address: 東京都港区1-1" in prompt
    assert "Description: Not provided" in prompt
    assert "Snippet: N/A" in prompt
    assert "x" * 1000 + "\n---\n" in prompt
    assert "x" * 1001 not in prompt
    assert '"headquarters_address": string | null' in prompt
    assert "0.9-1.0: Almost certainly the official corporate website" in prompt
    assert "Always return scores for every provided URL" in prompt

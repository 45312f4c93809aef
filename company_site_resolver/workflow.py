from __future__ import annotations

import logging
import os
from typing import Optional, Protocol, Sequence

from .gemini_scorer import GeminiScorer
from .models import CompanyInfo, CompanySearchResult, PageContent, ScoreResult, SearchResultItem
from .page_fetcher import PageFetcher

log = logging.getLogger(__name__)

URL_SCORE_THRESHOLD = float(os.getenv("URL_SCORE_THRESHOLD", "0.5"))


class SearchProvider(Protocol):
    async def search_company_websites(self, company: CompanyInfo) -> list[SearchResultItem]: ...


class CandidateScorer(Protocol):
    async def score_candidate_urls(
        self, company: CompanyInfo, pages: Sequence[PageContent]
    ) -> ScoreResult: ...


async def search_candidates(
    company: CompanyInfo, providers: Sequence[SearchProvider]
) -> list[SearchResultItem]:
    """先頭のプロバイダから順に検索し、最初に結果が返ったものを採用する。"""
    for provider in providers:
        try:
            results = await provider.search_company_websites(company)
        except Exception as e:
            log.warning("search provider %s failed for %s: %s", type(provider).__name__, company.name, e)
            continue
        if results:
            log.info("%s: %d candidates from %s", company.name, len(results), type(provider).__name__)
            return list(results)
    return []


def pick_best(result: ScoreResult, threshold: float) -> Optional[CompanySearchResult]:
    if not result.urls:
        return None
    best = max(result.urls, key=lambda entry: entry.score)
    if best.score < threshold:
        return None
    return CompanySearchResult(
        url=best.url,
        score=best.score,
        reason=best.reason,
        headquarters_address=result.headquarters_address,
    )


async def find_best_company_url(
    company: CompanyInfo,
    providers: Sequence[SearchProvider],
    fetcher: Optional[PageFetcher] = None,
    scorer: Optional[CandidateScorer] = None,
    threshold: float = URL_SCORE_THRESHOLD,
) -> Optional[CompanySearchResult]:
    """
    search -> fetch -> score -> pick best。
    最高スコアが threshold 未満、または候補が無ければ None。
    """
    candidates = await search_candidates(company, providers)
    if not candidates:
        log.info("%s: no search results", company.name)
        return None

    fetcher = fetcher or PageFetcher()
    scorer = scorer or GeminiScorer()
    pages = await fetcher.fetch_pages(candidates)
    result = await scorer.score_candidate_urls(company, pages)

    best = pick_best(result, threshold)
    if best is None:
        log.info("%s: no candidate reached threshold %.2f", company.name, threshold)
    else:
        log.info("%s: best=%s score=%.2f", company.name, best.url, best.score)
    return best

from __future__ import annotations

import re
from typing import Sequence

from .address_extractor import extract_headquarters_address_from_pages
from .models import CompanyInfo, PageContent, ScoredUrl, ScoreResult
from .url_sanitizer import get_domain_url

HEURISTIC_REASON = "Heuristic fallback score due to parsing error."

BASE_SCORE = 0.2
DOMAIN_NAME_BONUS = 0.5
SNIPPET_NAME_BONUS = 0.2
LICENSE_ADDRESS_BONUS = 0.1
LICENSE_NUMBER_BONUS = 0.1

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def _domain_token(company_name: str) -> str:
    return _NON_ALNUM_RE.sub("", (company_name or "").lower())


def _score_page(company: CompanyInfo, page: PageContent, name_token: str) -> ScoredUrl:
    domain_url = get_domain_url(page.url)
    content = page.content or ""
    score = BASE_SCORE
    # 英数字が残らない社名（日本語社名など）は空文字になり、全 URL に一致する
    if name_token in domain_url.lower():
        score += DOMAIN_NAME_BONUS
    if page.snippet and company.name and company.name.lower() in page.snippet.lower():
        score += SNIPPET_NAME_BONUS
    if company.license_address and company.license_address.lower() in content.lower():
        score += LICENSE_ADDRESS_BONUS
    # 許可番号は記号で区別されるので大文字小文字もそのまま比較
    if company.license_number and company.license_number in content:
        score += LICENSE_NUMBER_BONUS
    return ScoredUrl(url=domain_url, score=min(1.0, score), reason=HEURISTIC_REASON)


def heuristic_score(company: CompanyInfo, pages: Sequence[PageContent]) -> ScoreResult:
    """
    Gemini を使わないルールベースの採点。ページ1件につき1件、入力順で返す。
    """
    name_token = _domain_token(company.name)
    urls = [_score_page(company, page, name_token) for page in pages]
    return ScoreResult(
        urls=urls,
        headquarters_address=extract_headquarters_address_from_pages(pages),
    )

import os
import logging
import time
from typing import Any, Optional, Sequence, Union

import google.generativeai as generativeai
from google.api_core.exceptions import GoogleAPIError
from dotenv import load_dotenv

from .address_extractor import extract_headquarters_address_from_pages
from .heuristic_scorer import heuristic_score
from .models import (
    CompanyInfo,
    PageContent,
    ParseFailure,
    ScoredUrl,
    ScoreResult,
    ScoringFailure,
)
from .response_parser import extract_text_from_response, parse_score_response
from .url_sanitizer import get_domain_url

# ---- .env -------------------------------------------------------
load_dotenv()


def _getenv_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    return (str(v).strip().lower() == "true") if v is not None else default


USE_AI: bool = _getenv_bool("USE_AI", True)
API_KEY: str = (os.getenv("GEMINI_API_KEY") or "").strip()
DEFAULT_MODEL: str = (os.getenv("GEMINI_MODEL") or "gemini-2.5-flash-lite").strip()
CONTENT_PREVIEW_CHARS = max(0, int(os.getenv("CONTENT_PREVIEW_CHARS", "1000")))

NOT_SCORED_REASON = "URL not scored by Gemini."

AI_ENABLED: bool = USE_AI and bool(API_KEY)
GEN_CONFIG_ERROR: Optional[Exception] = None
if AI_ENABLED:
    try:
        generativeai.configure(api_key=API_KEY)
    except Exception as e:
        AI_ENABLED = False
        GEN_CONFIG_ERROR = e

log = logging.getLogger(__name__)


def build_prompt(company: CompanyInfo, pages: Sequence[PageContent]) -> str:
    page_summaries = "\n---\n".join(
        f"URL: {page.url}\n"
        f"Title: {page.title}\n"
        f"Snippet: {page.snippet or 'N/A'}\n"
        f"Content Preview: {(page.content or '')[:CONTENT_PREVIEW_CHARS]}"
        for page in pages
    )
    license_address = (
        f"License address: {company.license_address}"
        if company.license_address
        else "License address: Not provided"
    )
    description = (
        f"Description: {company.description}"
        if company.description
        else "Description: Not provided"
    )
    return (
        "You are evaluating candidate company websites to identify the OFFICIAL CORPORATE WEBSITE "
        "and confirm the headquarters address. Return ONLY a raw JSON object "
        "(no markdown, no code blocks, no backticks, no explanations).\n\n"
        "The JSON must have the following properties:\n"
        '"urls": an array of objects shaped like {"url": string, "score": number between 0 and 1, "reason": string}\n'
        '"headquarters_address": string | null (the best headquarters/main office address you can find from the candidate pages)\n\n'
        f"Company name: {company.name}\n"
        f"Paid Employment Placement license number: {company.license_number}\n"
        f"{license_address}\n"
        f"{description}\n\n"
        f"Candidate pages:\n{page_summaries}\n\n"
        "SCORING CRITERIA (be strict):\n"
        "- 0.0-0.2: Clearly NOT the official website (social media, job boards, news articles, Wikipedia, review sites, etc.)\n"
        "- 0.3-0.5: Related to the company but likely not the official corporate site (press releases, third-party listings)\n"
        "- 0.6-0.8: Possibly the official website but with some uncertainty\n"
        "- 0.9-1.0: Almost certainly the official corporate website\n\n"
        "SITES TO SCORE LOW (0.0-0.3):\n"
        "- Social media: Twitter/X, Facebook, LinkedIn, Instagram, YouTube channels\n"
        "- Job boards: Indeed, Rikunabi, Wantedly, Green, recruitment portals\n"
        "- News/Media: news articles, press releases on news sites, blog posts about the company\n"
        "- Information aggregators: Wikipedia, company databases, review sites, rating sites\n"
        "- E-commerce platforms: Amazon, Rakuten, Yahoo Shopping stores\n\n"
        "OFFICIAL WEBSITE INDICATORS (score high):\n"
        "- Domain name closely matches company name\n"
        "- Contains company information matching the provided license number/address/description\n"
        "- Corporate structure (About Us, Services, Contact pages)\n"
        "- Self-hosted content, not on third-party platforms\n\n"
        "HEADQUARTERS ADDRESS: Prefer the official headquarters/main office address from the company's own site. "
        "If multiple addresses exist, choose the headquarters/head office. If none are found, return null.\n\n"
        "EVALUATE: Domain relevance, content ownership, site type, company info accuracy, "
        "and alignment with the provided license info. Always return scores for every provided URL. "
        "Return ONLY the JSON object, nothing else."
    )


def reconcile_scores(pages: Sequence[PageContent], scored: Sequence[ScoredUrl]) -> list[ScoredUrl]:
    """
    Gemini の結果を入力ページ順に並べ直す。欠けた URL は 0 点で補い、重複は先勝ち。
    """
    by_url: dict[str, ScoredUrl] = {}
    for entry in scored:
        by_url.setdefault(entry.url, entry)
    out: list[ScoredUrl] = []
    for page in pages:
        domain_url = get_domain_url(page.url)
        match = by_url.get(domain_url)
        out.append(match or ScoredUrl(url=domain_url, score=0.0, reason=NOT_SCORED_REASON))
    return out


def _log_usage(resp: Any) -> None:
    usage = getattr(resp, "usage_metadata", None)
    if usage is None and isinstance(resp, dict):
        usage = resp.get("usage_metadata") or resp.get("usageMetadata")
    if not usage:
        log.info("Gemini token usage metadata was not provided in the response.")
        return

    def _get(name: str) -> Any:
        if isinstance(usage, dict):
            return usage.get(name)
        return getattr(usage, name, None)

    log.info(
        "Gemini token usage - prompt: %s, candidates: %s, total: %s",
        _get("prompt_token_count"),
        _get("candidates_token_count"),
        _get("total_token_count"),
    )


class GeminiScorer:
    def __init__(self, model: Any = None):
        if model is not None:
            self.model = model
        elif AI_ENABLED:
            try:
                self.model = generativeai.GenerativeModel(DEFAULT_MODEL)
                log.info("GeminiScorer: Gemini model initialized (%s).", DEFAULT_MODEL)
            except Exception as e:
                log.error("GeminiScorer: Failed to init model: %s", e, exc_info=True)
                self.model = None
        else:
            self.model = None
            if GEN_CONFIG_ERROR:
                log.warning("GeminiScorer: AI disabled due to config error: %s", GEN_CONFIG_ERROR)

    async def _attempt(
        self, company: CompanyInfo, pages: Sequence[PageContent]
    ) -> Union[ScoreResult, ScoringFailure]:
        """
        Gemini による採点を1回だけ試す。失敗は例外ではなく ScoringFailure で返す。
        """
        contents = [{"role": "user", "parts": [{"text": build_prompt(company, pages)}]}]
        t0 = time.time()
        try:
            resp = await self.model.generate_content_async(contents)
        except GoogleAPIError as e:
            log.error("Google API error while scoring URLs for %s: %s", company.name, e)
            return ScoringFailure("google api error", e)
        except Exception as e:
            log.error("Failed to score URLs with Gemini for %s: %s", company.name, e, exc_info=True)
            return ScoringFailure("gemini call failed", e)
        log.info("Gemini API call ok: %s in %.2fs", company.name, time.time() - t0)

        _log_usage(resp)

        parsed = parse_score_response(extract_text_from_response(resp))
        if isinstance(parsed, ParseFailure):
            log.warning(
                "Gemini response could not be parsed for %s (%s). Falling back to heuristic scoring.",
                company.name,
                parsed.reason,
            )
            return ScoringFailure(parsed.reason)

        headquarters_address = parsed.headquarters_address or extract_headquarters_address_from_pages(pages)
        return ScoreResult(
            urls=reconcile_scores(pages, parsed.urls),
            headquarters_address=headquarters_address,
        )

    async def score_candidate_urls(
        self, company: CompanyInfo, pages: Sequence[PageContent]
    ) -> ScoreResult:
        if not pages:
            return ScoreResult(urls=[])
        if not self.model:
            log.info("Gemini model unavailable; heuristic scoring for %s", company.name)
            return heuristic_score(company, pages)

        outcome = await self._attempt(company, pages)
        if isinstance(outcome, ScoringFailure):
            return heuristic_score(company, pages)
        return outcome


async def score_candidate_urls(
    company: CompanyInfo, pages: Sequence[PageContent], model: Any = None
) -> ScoreResult:
    return await GeminiScorer(model=model).score_candidate_urls(company, pages)

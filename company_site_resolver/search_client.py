import asyncio
import logging
import os
from collections.abc import Mapping
from typing import Any, Iterable, Optional
from urllib.parse import parse_qs, unquote, urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from dotenv import load_dotenv

from .models import CompanyInfo, SearchResultItem
from .text_normalizer import sanitize_company_name_for_query, sanitize_license_number_for_query
from .url_sanitizer import get_domain_url

load_dotenv()

log = logging.getLogger(__name__)

SEARCH_CANDIDATE_LIMIT = max(1, int(os.getenv("SEARCH_CANDIDATE_LIMIT", "5")))
DDG_HTML_ENDPOINT = "https://html.duckduckgo.com/html"
SCRAPINGDOG_ENDPOINT = "https://api.scrapingdog.com/google"
GOOGLE_CSE_ENDPOINT = "https://www.googleapis.com/customsearch/v1"
BRAVE_ENDPOINT = "https://api.search.brave.com/res/v1/web/search"

SCRAPINGDOG_API_KEY = (os.getenv("SCRAPINGDOG_API_KEY") or "").strip()
GOOGLE_API_KEY = (os.getenv("GOOGLE_API_KEY") or "").strip()
GOOGLE_CSE_ID = (os.getenv("GOOGLE_CSE_ID") or "").strip()
BRAVE_API_KEY = (os.getenv("BRAVE_API_KEY") or "").strip()

_BINARY_EXTS = (".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".zip", ".jpg", ".jpeg", ".png", ".gif")
_RETRY_STATUSES = (429, 500, 502, 503, 504)
SEARCH_MAX_ATTEMPTS = 3


async def _backoff(attempt: int) -> None:
    await asyncio.sleep(0.8 * (2 ** attempt))


async def _retry_wait(attempt: int) -> None:
    # 最終試行の後は待たない
    if attempt + 1 < SEARCH_MAX_ATTEMPTS:
        await _backoff(attempt)


def build_search_query(company: CompanyInfo) -> str:
    name = sanitize_company_name_for_query(company.name).strip()
    license_number = sanitize_license_number_for_query(company.license_number or "")
    return f"{name} {license_number}".strip()


def decode_uddg(url: str) -> str:
    if not url:
        return url
    parsed = urlparse("https://duckduckgo.com" + url) if url.startswith("/l") else urlparse(url)
    if parsed.netloc.endswith("duckduckgo.com") and parsed.path.startswith("/l"):
        qs = parse_qs(parsed.query)
        if qs.get("uddg"):
            return unquote(qs["uddg"][0])
    return url


def clean_candidate_url(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    href = decode_uddg(raw.strip())
    if href.startswith("//"):
        href = "https:" + href
    elif href.startswith("/"):
        href = urljoin("https://duckduckgo.com", href)
    parsed = urlparse(href)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    if parsed.netloc.lower().endswith("duckduckgo.com"):
        return None
    if any(parsed.path.lower().endswith(ext) for ext in _BINARY_EXTS):
        return None
    return href


def is_ddg_challenge(html: str) -> bool:
    if not html:
        return False
    lowered = html.lower()
    return (
        "anomaly-modal__title" in lowered
        or "duckduckgo.com/anomaly.js" in lowered
        or "select all squares containing a duck" in lowered
        or "bots use duckduckgo too" in lowered
    )


def _collect_items(
    entries: Iterable[tuple[Optional[str], Any, Optional[str]]], limit: int
) -> list[SearchResultItem]:
    """(title, href, snippet) の列を URL 整理・ドメイン単位の重複除去をして limit 件まで。"""
    items: list[SearchResultItem] = []
    seen: set[str] = set()
    for title, href, snippet in entries:
        url = clean_candidate_url(href if isinstance(href, str) else None)
        if not url:
            continue
        domain = get_domain_url(url)
        if domain in seen:
            continue
        seen.add(domain)
        items.append(
            SearchResultItem(
                title=(title or "").strip() or url,
                url=url,
                snippet=(snippet or "").strip() or None,
            )
        )
        if len(items) >= limit:
            break
    return items


def parse_search_results(html: str, limit: int = SEARCH_CANDIDATE_LIMIT) -> list[SearchResultItem]:
    """DuckDuckGo HTML の検索結果を SearchResultItem に変換（ドメイン単位で重複除去）。"""
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")

    def _entries():
        for block in soup.select("div.result"):
            anchor = block.select_one("a.result__a")
            if anchor is None:
                continue
            snippet_node = block.select_one(".result__snippet")
            yield (
                anchor.get_text(" ", strip=True),
                anchor.get("href"),
                snippet_node.get_text(" ", strip=True) if snippet_node else None,
            )

    return _collect_items(_entries(), limit)


def parse_json_results(
    entries: Any,
    limit: int = SEARCH_CANDIDATE_LIMIT,
    url_key: str = "link",
    snippet_key: str = "snippet",
) -> list[SearchResultItem]:
    """検索 API の JSON 結果リストを SearchResultItem に変換。"""
    if not isinstance(entries, list):
        return []
    rows = (
        (
            e.get("title") if isinstance(e.get("title"), str) else None,
            e.get(url_key),
            e.get(snippet_key) if isinstance(e.get(snippet_key), str) else None,
        )
        for e in entries
        if isinstance(e, Mapping)
    )
    return _collect_items(rows, limit)


class _HttpSearch:
    """requests.Session を別スレッドで叩き、429/5xx はバックオフして再試行する共通部分。"""

    label = "search"

    def __init__(self, session: Optional[requests.Session] = None, limit: int = SEARCH_CANDIDATE_LIMIT):
        self.http_session = session if session is not None else requests.Session()
        self.limit = max(1, limit)

    def _session_get(self, url: str, **kwargs: Any):
        return self.http_session.get(url, **kwargs)

    def _needs_retry(self, resp: Any) -> bool:
        return False

    async def _get_with_retry(self, url: str, query: str, **kwargs: Any) -> Optional[Any]:
        for attempt in range(SEARCH_MAX_ATTEMPTS):
            try:
                resp = await asyncio.to_thread(self._session_get, url, timeout=(3, 10), **kwargs)
                if resp.status_code in _RETRY_STATUSES:
                    log.info("[%s] status=%s attempt=%d query=%s", self.label, resp.status_code, attempt + 1, query)
                    await _retry_wait(attempt)
                    continue
                resp.raise_for_status()
                if self._needs_retry(resp):
                    log.warning("[%s] bot challenge attempt=%d query=%s", self.label, attempt + 1, query)
                    await _retry_wait(attempt)
                    continue
                return resp
            except requests.RequestException as e:
                log.warning("[%s] request failed attempt=%d query=%s: %s", self.label, attempt + 1, query, e)
                await _retry_wait(attempt)
        return None


class DuckDuckGoSearch(_HttpSearch):
    label = "ddg"

    def _needs_retry(self, resp: Any) -> bool:
        return is_ddg_challenge(resp.text)

    async def _fetch_duckduckgo(self, query: str) -> str:
        headers = {
            "User-Agent": "Mozilla/5.0",
            "Accept-Language": "ja,en-US;q=0.9",
            "Referer": "https://duckduckgo.com/",
        }
        resp = await self._get_with_retry(
            DDG_HTML_ENDPOINT, query, params={"q": query, "kl": "jp-jp"}, headers=headers
        )
        return resp.text if resp is not None else ""

    async def search_company_websites(self, company: CompanyInfo) -> list[SearchResultItem]:
        query = build_search_query(company)
        if not query:
            return []
        html = await self._fetch_duckduckgo(query)
        results = parse_search_results(html, limit=self.limit)
        log.info("[%s] %d results for %s", self.label, len(results), query)
        return results


class _JsonApiSearch(_HttpSearch):
    """API キー付きの JSON 検索 API。キー未設定なら何もせず空リスト。"""

    endpoint = ""
    url_key = "link"
    snippet_key = "snippet"

    @property
    def configured(self) -> bool:
        return False

    def _request(self, query: str) -> dict[str, Any]:
        raise NotImplementedError

    def _entries(self, data: Any) -> Any:
        raise NotImplementedError

    async def search_company_websites(self, company: CompanyInfo) -> list[SearchResultItem]:
        if not self.configured:
            return []
        query = build_search_query(company)
        if not query:
            return []
        resp = await self._get_with_retry(self.endpoint, query, **self._request(query))
        if resp is None:
            return []
        try:
            data = resp.json()
        except ValueError as e:
            log.warning("[%s] invalid JSON for %s: %s", self.label, query, e)
            return []
        entries = self._entries(data) if isinstance(data, Mapping) else None
        results = parse_json_results(entries, self.limit, self.url_key, self.snippet_key)
        log.info("[%s] %d results for %s", self.label, len(results), query)
        return results


class ScrapingdogSearch(_JsonApiSearch):
    label = "scrapingdog"
    endpoint = SCRAPINGDOG_ENDPOINT

    def __init__(self, api_key: Optional[str] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_key = SCRAPINGDOG_API_KEY if api_key is None else api_key

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _request(self, query: str) -> dict[str, Any]:
        return {
            "params": {
                "api_key": self.api_key,
                "query": query,
                "results": self.limit,
                "country": "jp",
            }
        }

    def _entries(self, data: Any) -> Any:
        return data.get("organic_results") or data.get("organic_data")


class GoogleCseSearch(_JsonApiSearch):
    label = "google"
    endpoint = GOOGLE_CSE_ENDPOINT

    def __init__(self, api_key: Optional[str] = None, cse_id: Optional[str] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_key = GOOGLE_API_KEY if api_key is None else api_key
        self.cse_id = GOOGLE_CSE_ID if cse_id is None else cse_id

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.cse_id)

    def _request(self, query: str) -> dict[str, Any]:
        # CSE の num は 1..10
        return {
            "params": {
                "key": self.api_key,
                "cx": self.cse_id,
                "q": query,
                "num": min(10, self.limit),
                "gl": "jp",
            }
        }

    def _entries(self, data: Any) -> Any:
        return data.get("items")


class BraveSearch(_JsonApiSearch):
    label = "brave"
    endpoint = BRAVE_ENDPOINT
    url_key = "url"
    snippet_key = "description"

    def __init__(self, api_key: Optional[str] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_key = BRAVE_API_KEY if api_key is None else api_key

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _request(self, query: str) -> dict[str, Any]:
        return {
            "params": {"q": query, "count": min(20, self.limit)},
            "headers": {"Accept": "application/json", "X-Subscription-Token": self.api_key},
        }

    def _entries(self, data: Any) -> Any:
        web = data.get("web")
        return web.get("results") if isinstance(web, Mapping) else None


def build_search_providers(session: Optional[requests.Session] = None, limit: int = SEARCH_CANDIDATE_LIMIT) -> list:
    """
    キーが設定された API プロバイダを Scrapingdog → Google CSE → Brave の順に並べ、
    最後にキー不要の DuckDuckGo を置く。
    """
    session = session if session is not None else requests.Session()
    api_providers = [
        ScrapingdogSearch(session=session, limit=limit),
        GoogleCseSearch(session=session, limit=limit),
        BraveSearch(session=session, limit=limit),
    ]
    providers: list = [p for p in api_providers if p.configured]
    providers.append(DuckDuckGoSearch(session=session, limit=limit))
    log.info("search providers: %s", ", ".join(p.label for p in providers))
    return providers

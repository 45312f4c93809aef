import asyncio
import logging
import os
import re
import time
import unicodedata
from typing import Any, Optional, Sequence

import requests
from bs4 import BeautifulSoup

from .models import PageContent, SearchResultItem

log = logging.getLogger(__name__)

HTTP_TIMEOUT_MS = int(os.getenv("HTTP_TIMEOUT_MS", "5000"))
PAGE_CONTENT_MAX_CHARS = max(1, int(os.getenv("PAGE_CONTENT_MAX_CHARS", "20000")))
FETCH_CONCURRENCY = max(1, int(os.getenv("FETCH_CONCURRENCY", "3")))

_DROP_TAGS = ["script", "style", "nav", "noscript", "svg", "canvas", "iframe", "form", "button"]
_CHARSET_RE = re.compile(br'charset=["\']?([\w-]+)', re.I)
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def detect_html_encoding(resp: requests.Response, raw: bytes) -> str:
    """
    レスポンスヘッダが ISO-8859-1 固定で返ってくるサイト対策。
    - meta charset を優先
    - それが無ければ apparent_encoding（chardet）を利用
    - 最後に UTF-8
    """
    if raw:
        m = _CHARSET_RE.search(raw[:10240])
        if m:
            return m.group(1).decode("ascii", "ignore") or "utf-8"
    if resp.apparent_encoding:
        return resp.apparent_encoding
    return "utf-8"


def html_to_text(html: str) -> str:
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(_DROP_TAGS):
        tag.decompose()
    base = soup.body or soup
    text = base.get_text(separator="\n", strip=True)
    text = unicodedata.normalize("NFKC", text)
    return _BLANK_LINES_RE.sub("\n", text).strip()


class PageFetcher:
    """候補URLの本文を requests で軽量取得する。失敗時は content="" のページを返す。"""

    def __init__(self, session: Optional[requests.Session] = None, concurrency: int = FETCH_CONCURRENCY):
        self.http_session = session if session is not None else requests.Session()
        self.http_timeout_ms = HTTP_TIMEOUT_MS
        self.max_chars = PAGE_CONTENT_MAX_CHARS
        self.concurrency = max(1, concurrency)

    def _session_get(self, url: str, **kwargs: Any):
        return self.http_session.get(url, **kwargs)

    def _decode(self, resp: requests.Response) -> str:
        raw = resp.content or b""
        if not raw:
            return ""
        encoding = detect_html_encoding(resp, raw)
        try:
            return raw.decode(encoding, errors="replace")
        except LookupError:
            return raw.decode("utf-8", errors="replace")

    async def fetch_page(self, item: SearchResultItem) -> PageContent:
        timeout_sec = max(2, self.http_timeout_ms / 1000)
        started = time.monotonic()
        content = ""
        try:
            resp = await asyncio.to_thread(
                self._session_get,
                item.url,
                timeout=(timeout_sec, timeout_sec),
                headers={"User-Agent": "Mozilla/5.0"},
            )
            resp.raise_for_status()
            content = html_to_text(self._decode(resp))[: self.max_chars]
            log.info("[http] fetched %s (%d chars, %.0f ms)", item.url, len(content), (time.monotonic() - started) * 1000)
        except requests.RequestException as e:
            log.warning("[http] fetch failed %s: %s", item.url, e)
        return PageContent(title=item.title, url=item.url, snippet=item.snippet, content=content)

    async def fetch_pages(self, items: Sequence[SearchResultItem]) -> list[PageContent]:
        sem = asyncio.Semaphore(self.concurrency)

        async def _one(item: SearchResultItem) -> PageContent:
            async with sem:
                return await self.fetch_page(item)

        return list(await asyncio.gather(*(_one(item) for item in items)))

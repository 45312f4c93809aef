import pytest
import requests

from company_site_resolver.models import SearchResultItem
from company_site_resolver.page_fetcher import PageFetcher, html_to_text


class _FakeResp:
    def __init__(self, url: str, content: bytes, status_code: int = 200, apparent_encoding: str = "utf-8"):
        self.url = url
        self.content = content
        self.status_code = status_code
        self.headers = {"Content-Type": "text/html"}
        self.apparent_encoding = apparent_encoding

    def raise_for_status(self):
        if int(self.status_code) >= 400:
            raise requests.HTTPError(f"status={self.status_code}")


HTML = """
<html><head><title>ACME</title><style>.x{color:red}</style></head>
<body>
<nav>Home | About</nav>
<script>window.dataLayer = [];</script>
<h1>ＡＣＭＥ株式会社</h1>
<p>本社: 〒100-0001 東京都千代田区1-1-1</p>
<footer>© ACME</footer>
</body></html>
"""


def test_html_to_text_drops_scripts_and_normalizes():
    text = html_to_text(HTML)
    assert "dataLayer" not in text
    assert "color:red" not in text
    assert "Home | About" not in text
    assert "ACME株式会社" in text
    assert "本社: 〒100-0001 東京都千代田区1-1-1" in text
    assert html_to_text("") == ""


@pytest.mark.asyncio
async def test_fetch_page_returns_text_content(monkeypatch):
    fetcher = PageFetcher()
    calls = []

    def fake_get(url, **kwargs):
        calls.append((url, kwargs))
        return _FakeResp(url, HTML.encode("utf-8"))

    monkeypatch.setattr(fetcher, "_session_get", fake_get)
    item = SearchResultItem(title="ACME", url="https://acme.example/", snippet="snip")
    page = await fetcher.fetch_page(item)

    assert page.url == item.url
    assert page.title == "ACME"
    assert page.snippet == "snip"
    assert "東京都千代田区1-1-1" in page.content
    assert calls[0][1]["headers"]["User-Agent"]


@pytest.mark.asyncio
async def test_fetch_page_decodes_meta_charset(monkeypatch):
    fetcher = PageFetcher()
    body = '<html><head><meta charset="shift_jis"></head><body>大阪府大阪市北区梅田1-1</body></html>'.encode("shift_jis")

    monkeypatch.setattr(fetcher, "_session_get", lambda url, **kw: _FakeResp(url, body, apparent_encoding="ISO-8859-1"))
    page = await fetcher.fetch_page(SearchResultItem(title="t", url="https://sjis.example/"))
    assert "大阪府大阪市北区梅田1-1" in page.content


@pytest.mark.asyncio
async def test_fetch_page_failure_gives_empty_content(monkeypatch):
    fetcher = PageFetcher()

    def fake_get(url, **kwargs):
        if "down" in url:
            raise requests.exceptions.ConnectionError("boom")
        return _FakeResp(url, b"", status_code=503)

    monkeypatch.setattr(fetcher, "_session_get", fake_get)
    pages = await fetcher.fetch_pages([
        SearchResultItem(title="a", url="https://down.example/"),
        SearchResultItem(title="b", url="https://busy.example/"),
    ])
    assert [p.url for p in pages] == ["https://down.example/", "https://busy.example/"]
    assert [p.content for p in pages] == ["", ""]


@pytest.mark.asyncio
async def test_fetch_page_truncates_content(monkeypatch):
    fetcher = PageFetcher()
    fetcher.max_chars = 10
    monkeypatch.setattr(
        fetcher, "_session_get", lambda url, **kw: _FakeResp(url, b"<body>" + b"a" * 50 + b"</body>")
    )
    page = await fetcher.fetch_page(SearchResultItem(title="t", url="https://long.example/"))
    assert page.content == "a" * 10

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class CompanyInfo:
    name: str
    license_number: str
    license_address: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class SearchResultItem:
    title: str
    url: str
    snippet: Optional[str] = None


@dataclass(frozen=True)
class PageContent(SearchResultItem):
    content: str = ""


@dataclass(frozen=True)
class ScoredUrl:
    url: str
    score: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class ScoreResult:
    """
    候補ページ1件につき ScoredUrl を1件、入力順で保持する。
    headquarters_address は郵便番号を除いた本社住所（見つからなければ None）。
    """
    urls: list[ScoredUrl] = field(default_factory=list)
    headquarters_address: Optional[str] = None


@dataclass(frozen=True)
class ParsedScore:
    urls: list[ScoredUrl]
    headquarters_address: Optional[str] = None


@dataclass(frozen=True)
class ParseFailure:
    reason: str


@dataclass(frozen=True)
class ScoringFailure:
    reason: str
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class CompanySearchResult:
    url: str
    score: float
    reason: Optional[str] = None
    headquarters_address: Optional[str] = None

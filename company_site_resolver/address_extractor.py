from __future__ import annotations

import re
from typing import Iterable, Optional

from .models import PageContent

PREFECTURES: tuple[str, ...] = (
    "北海道",
    "青森県",
    "岩手県",
    "宮城県",
    "秋田県",
    "山形県",
    "福島県",
    "茨城県",
    "栃木県",
    "群馬県",
    "埼玉県",
    "千葉県",
    "東京都",
    "神奈川県",
    "新潟県",
    "富山県",
    "石川県",
    "福井県",
    "山梨県",
    "長野県",
    "岐阜県",
    "静岡県",
    "愛知県",
    "三重県",
    "滋賀県",
    "京都府",
    "大阪府",
    "兵庫県",
    "奈良県",
    "和歌山県",
    "鳥取県",
    "島根県",
    "岡山県",
    "広島県",
    "山口県",
    "徳島県",
    "香川県",
    "愛媛県",
    "高知県",
    "福岡県",
    "佐賀県",
    "長崎県",
    "熊本県",
    "大分県",
    "宮崎県",
    "鹿児島県",
    "沖縄県",
)

_POSTAL_PREFIX = r"〒?\s*\d{3}[-‐－]\d{4}\s*"
_LEADING_POSTAL_RE = re.compile(rf"^\s*{_POSTAL_PREFIX}")
_ADDRESS_RE = re.compile(
    rf"(?:{_POSTAL_PREFIX})?(?:{'|'.join(re.escape(p) for p in PREFECTURES)})[^\n]{{5,80}}"
)
_SPACE_RE = re.compile(r"\s+")


def strip_postal_code(text: str) -> str:
    return _LEADING_POSTAL_RE.sub("", text or "").strip()


def normalize_address(candidate: Optional[str]) -> Optional[str]:
    if not isinstance(candidate, str):
        return None
    trimmed = candidate.strip()
    if not trimmed:
        return None
    return strip_postal_code(trimmed) or None


def _scan_text(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    m = _ADDRESS_RE.search(text)
    if not m:
        return None
    found = _SPACE_RE.sub(" ", m.group(0)).strip()
    return strip_postal_code(found) or None


def extract_headquarters_address_from_pages(pages: Iterable[PageContent]) -> Optional[str]:
    """
    候補ページ本文（無ければスニペット）から「都道府県名 + 5〜80文字」の最初の一致を返す。
    Gemini が住所を返さなかった時のフォールバック用なので網羅性より先頭一致を優先する。
    """
    for page in pages:
        found = _scan_text(page.content) or _scan_text(page.snippet)
        if found:
            return found
    return None

from __future__ import annotations

import re

_FULL_WIDTH_ALNUM_RE = re.compile(r"[Ａ-Ｚａ-ｚ０-９]")
_FULL_WIDTH_SPACE = "　"
_FULL_WIDTH_DASH_RE = re.compile(r"[－ー−–―]")
_SPACE_RE = re.compile(r"\s+")

# 全角英数字 -> 半角英数字のコードポイント差
_FULL_WIDTH_OFFSET = 0xFEE0


def _to_half_width(match: re.Match[str]) -> str:
    return chr(ord(match.group(0)) - _FULL_WIDTH_OFFSET)


def sanitize_company_name_for_query(name: str) -> str:
    """
    Normalize a company name for use as search-query input.
    - full-width space -> space
    - full-width Latin letters/digits -> ASCII
    """
    text = (name or "").replace(_FULL_WIDTH_SPACE, " ")
    return _FULL_WIDTH_ALNUM_RE.sub(_to_half_width, text)


def sanitize_license_number_for_query(license_number: str) -> str:
    """
    Same as sanitize_company_name_for_query, plus
    - dash variants (－ ー − – ―) -> "-"
    - compress whitespaces, strip
    """
    text = sanitize_company_name_for_query(license_number)
    text = _FULL_WIDTH_DASH_RE.sub("-", text)
    return _SPACE_RE.sub(" ", text).strip()

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any, Callable, Iterable, Optional, Union

from .address_extractor import normalize_address
from .models import ParsedScore, ParseFailure, ScoredUrl
from .url_sanitizer import get_domain_url

log = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```$", re.IGNORECASE)

_CANDIDATE_GROUP_PATHS: tuple[tuple[str, ...], ...] = (
    ("candidates",),
    ("response", "candidates"),
    ("output", "candidates"),
    ("result", "candidates"),
)
_TEXT_FIELD_PATHS: tuple[tuple[str, ...], ...] = (
    ("response", "text"),
    ("response", "output_text"),
    ("output_text",),
    ("text",),
)


# ---- generic tree access -----------------------------------------
def _field(obj: Any, name: str) -> Any:
    """dict でも SDK のオブジェクトでも同じように属性を引く。取れなければ None。"""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    try:
        return getattr(obj, name, None)
    except Exception:
        # SDK の .text はブロック応答などで例外を投げる
        return None


def _path(obj: Any, path: Iterable[str]) -> Any:
    for name in path:
        obj = _field(obj, name)
        if obj is None:
            return None
    return obj


def _as_list(value: Any) -> list[Any]:
    if value is None or isinstance(value, (str, bytes, Mapping)):
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    try:
        # proto の repeated field など
        return list(value)
    except TypeError:
        return []


def _as_text(value: Any) -> Optional[str]:
    if callable(value):
        try:
            value = value()
        except Exception:
            return None
    if isinstance(value, str) and value.strip():
        return value
    return None


# ---- probing strategies ------------------------------------------
def _texts_from_parts(parts: Any) -> list[str]:
    out: list[str] = []
    for part in _as_list(parts):
        text = part if isinstance(part, str) else _field(part, "text")
        if isinstance(text, str) and text.strip():
            out.append(text)
    return out


def _texts_from_item(item: Any) -> list[str]:
    out = _texts_from_parts(_path(item, ("content", "parts")))
    out += _texts_from_parts(_field(item, "parts"))
    output_text = _as_text(_field(item, "output_text"))
    if output_text:
        out.append(output_text)
    return out


def _from_candidate_groups(response: Any) -> list[str]:
    out: list[str] = []
    for path in _CANDIDATE_GROUP_PATHS:
        for cand in _as_list(_path(response, path)):
            if cand is None or isinstance(cand, (str, bytes)):
                continue
            out += _texts_from_item(cand)
    return out


def _from_output_array(response: Any) -> list[str]:
    out: list[str] = []
    for item in _as_list(_field(response, "output")):
        if item is None or isinstance(item, (str, bytes)):
            continue
        out += _texts_from_item(item)
    return out


def _from_text_fields(response: Any) -> list[str]:
    out: list[str] = []
    for path in _TEXT_FIELD_PATHS:
        text = _as_text(_path(response, path))
        if text:
            out.append(text)
    return out


_TEXT_STRATEGIES: tuple[Callable[[Any], list[str]], ...] = (
    _from_candidate_groups,
    _from_output_array,
    _from_text_fields,
)


def extract_text_from_response(response: Any) -> str:
    """
    Gemini 応答から本文テキストを取り出す。
    SDK/バージョンで形が変わるため、既知の経路を全部たどって重複を除き改行で連結する。
    何も取れなければ空文字（例外は投げない）。
    """
    if not response:
        return ""
    collected: list[str] = []
    for strategy in _TEXT_STRATEGIES:
        try:
            collected += strategy(response)
        except Exception as e:
            log.debug("text probe %s failed: %s", strategy.__name__, e)
    unique: list[str] = []
    for text in collected:
        t = text.strip()
        if t and t not in unique:
            unique.append(t)
    return "\n".join(unique)


# ---- JSON parsing ------------------------------------------------
_ADDRESS_ACCESSORS: tuple[Callable[[Mapping[str, Any]], Any], ...] = (
    lambda data: data.get("headquartersAddress"),
    lambda data: data.get("headquarters_address"),
)


def _resolve_address(data: Mapping[str, Any]) -> Optional[str]:
    for accessor in _ADDRESS_ACCESSORS:
        addr = normalize_address(accessor(data))
        if addr:
            return addr
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _clamp_score(value: Union[int, float]) -> float:
    # 巨大な int は float 変換で OverflowError になるので先に丸める
    return float(min(1, max(0, value)))


def _unwrap_code_fence(text: str) -> str:
    m = _CODE_FENCE_RE.match(text)
    if m:
        return m.group(1).strip()
    return text


def parse_score_response(raw: str) -> Union[ParsedScore, ParseFailure]:
    try:
        cleaned = _unwrap_code_fence((raw or "").strip())
        if not cleaned:
            return ParseFailure("empty response text")
        data = json.loads(cleaned)
        if not isinstance(data, Mapping) or not isinstance(data.get("urls"), list):
            return ParseFailure("response JSON has no urls array")

        urls: list[ScoredUrl] = []
        for entry in data["urls"]:
            if not isinstance(entry, Mapping):
                continue
            url = entry.get("url")
            score = entry.get("score")
            if not isinstance(url, str) or not _is_number(score):
                continue
            reason = entry.get("reason")
            urls.append(
                ScoredUrl(
                    url=get_domain_url(url),
                    score=_clamp_score(score),
                    reason=reason if isinstance(reason, str) else None,
                )
            )
        return ParsedScore(urls=urls, headquarters_address=_resolve_address(data))
    except Exception as e:
        log.warning("Unable to parse Gemini response as JSON: %s / raw[:200]=%r", e, (raw or "")[:200])
        return ParseFailure(f"{type(e).__name__}: {e}")

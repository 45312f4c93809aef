from __future__ import annotations

import urllib.parse

_DEFAULT_PORTS = {"http": 80, "https": 443}


def get_domain_url(url: str) -> str:
    """
    URL を「ドメインURL」（scheme://host/）に正規化する。
    入力ページ側と Gemini 側の URL を突き合わせるキーなので、両側で必ずこれを通す。
    host が取れない文字列は trim だけして返す。
    """
    raw = (url or "").strip()
    if not raw:
        return ""
    candidate = raw
    if candidate.startswith("//"):
        candidate = "https:" + candidate
    elif "://" not in candidate:
        candidate = "https://" + candidate
    try:
        parsed = urllib.parse.urlsplit(candidate)
        host = (parsed.hostname or "").lower()
        port = parsed.port
    except ValueError:
        return raw
    if not host:
        return raw
    scheme = (parsed.scheme or "https").lower()
    netloc = host
    if port and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"
    return f"{scheme}://{netloc}/"

# server/url_utils.py
from __future__ import annotations

import ipaddress
from urllib.parse import urlsplit, urlunsplit


class InvalidUrl(ValueError):
    """입력 URL이 형식상 잘못됐거나 사설/로컬 호스트를 가리킬 때."""


def host_of(url: str) -> str:
    try:
        sp = urlsplit(url)
        return (sp.hostname or "").lower()
    except ValueError:
        return ""


def normalize_url(url: str) -> str:
    """
    - scheme 없으면 https 부여
    - fragment 제거
    - host는 소문자
    - path가 비면 '/'로
    """
    url = (url or "").strip()
    if not url:
        return ""

    if "://" not in url:
        url = "https://" + url

    sp = urlsplit(url)
    scheme = (sp.scheme or "https").lower()

    # username/password/hostname/port로 분해된 것을 재조합
    username = sp.username or ""
    password = sp.password or ""
    host = (sp.hostname or "").lower()
    port = sp.port

    userinfo = ""
    if username:
        userinfo = username
        if password:
            userinfo += f":{password}"
        userinfo += "@"

    if ":" in host:
        host = f"[{host}]"
    netloc = userinfo + host
    if port:
        netloc += f":{port}"

    path = sp.path or "/"
    query = sp.query or ""

    return urlunsplit((scheme, netloc, path, query, ""))


def is_local_or_private_host(url: str) -> bool:
    h = host_of(url)
    if not h:
        return True
    if h == "localhost" or h.endswith(".localhost") or h.endswith(".local"):
        return True
    try:
        ip = ipaddress.ip_address(h)
    except ValueError:
        return False
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_unspecified
        or ip.is_multicast
    )


def validate_target_url(raw: str) -> str:
    """
    Normalize a user-supplied URL and make sure it is safe to probe.
    Returns the normalized URL or raises InvalidUrl.
    """
    raw = (raw or "").strip() if isinstance(raw, str) else ""
    if len(raw) < 3:
        raise InvalidUrl("Invalid URL format")

    try:
        url = normalize_url(raw)
        sp = urlsplit(url)
        _ = sp.port  # 잘못된 포트면 여기서 ValueError
    except ValueError as e:
        raise InvalidUrl(f"Invalid URL format: {e}") from e

    if sp.scheme not in ("http", "https"):
        raise InvalidUrl(f"Invalid URL scheme: {sp.scheme} (must be http or https)")
    if not sp.hostname:
        raise InvalidUrl("Invalid URL format: missing domain")
    if is_local_or_private_host(url):
        raise InvalidUrl("Private and localhost URLs are not allowed")

    return url

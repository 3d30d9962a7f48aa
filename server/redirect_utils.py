# server/redirect_utils.py
from __future__ import annotations

import os
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol
from urllib.parse import urlsplit

import requests
from requests.structures import CaseInsensitiveDict

from logger import get_logger

log = get_logger(__name__)

DEFAULT_MAX_HOPS = 10
DEFAULT_PROBE_TIMEOUT_MS = 10_000
DEFAULT_USER_AGENT = os.getenv(
    "PROBE_USER_AGENT",
    "Mozilla/5.0 (compatible; RedirectChecker/1.0; +https://example.com/redirect-checker)",
)


class ProbeError(Exception):
    """Network-level failure of a single probe (timeout, DNS, refused, TLS)."""


class RedirectKind(str, Enum):
    PERMANENT_301 = "Permanent301"
    TEMPORARY_302 = "Temporary302"
    SEE_OTHER_303 = "SeeOther303"
    TEMPORARY_307 = "Temporary307"
    PERMANENT_308 = "Permanent308"
    OTHER_REDIRECT = "OtherRedirect"
    FINAL_DESTINATION = "FinalDestination"

    def label(self, status_code: int) -> str:
        if self is RedirectKind.OTHER_REDIRECT:
            return f"Redirect ({status_code})"
        return _KIND_LABELS[self]


_KIND_LABELS = {
    RedirectKind.PERMANENT_301: "Permanent (301)",
    RedirectKind.TEMPORARY_302: "Temporary (302)",
    RedirectKind.SEE_OTHER_303: "See Other (303)",
    RedirectKind.TEMPORARY_307: "Temporary Redirect (307)",
    RedirectKind.PERMANENT_308: "Permanent Redirect (308)",
    RedirectKind.FINAL_DESTINATION: "Final Destination",
}

_KIND_BY_STATUS = {
    301: RedirectKind.PERMANENT_301,
    302: RedirectKind.TEMPORARY_302,
    303: RedirectKind.SEE_OTHER_303,
    307: RedirectKind.TEMPORARY_307,
    308: RedirectKind.PERMANENT_308,
}


class Terminal(str, Enum):
    COMPLETED = "Completed"
    LOOP_DETECTED = "LoopDetected"
    TOO_MANY_REDIRECTS = "TooManyRedirects"
    PROBE_FAILED = "ProbeFailed"


@dataclass
class ProbeResponse:
    status_code: int
    status_text: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    timed_out: bool = False

    def __post_init__(self):
        self.headers = CaseInsensitiveDict(self.headers or {})

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name)


class HttpProbe(Protocol):
    def head(self, url: str, timeout_ms: int) -> ProbeResponse:
        ...


@dataclass(frozen=True)
class RedirectStep:
    url: str
    status_code: int
    status_text: str
    redirect_kind: RedirectKind
    location: Optional[str]
    response_time_ms: float
    server: Optional[str] = None
    content_type: Optional[str] = None
    timestamp: str = ""

    @property
    def is_redirect(self) -> bool:
        return self.redirect_kind is not RedirectKind.FINAL_DESTINATION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "statusCode": self.status_code,
            "statusText": self.status_text,
            "redirectType": self.redirect_kind.label(self.status_code),
            "location": self.location,
            "responseTime": self.response_time_ms,
            "headers": {
                "location": self.location,
                "server": self.server,
                "content-type": self.content_type,
            },
            "timestamp": self.timestamp,
        }


@dataclass
class RedirectResult:
    original_url: str
    chain: List[RedirectStep] = field(default_factory=list)
    final_url: Optional[str] = None
    final_status_code: Optional[int] = None
    hop_count: int = 0
    terminal: Terminal = Terminal.COMPLETED
    total_time_ms: float = 0.0
    error_message: Optional[str] = None

    @property
    def has_loop(self) -> bool:
        return self.terminal is Terminal.LOOP_DETECTED

    @property
    def has_too_many_redirects(self) -> bool:
        return self.terminal is Terminal.TOO_MANY_REDIRECTS

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "originalUrl": self.original_url,
            "redirectChain": [s.to_dict() for s in self.chain],
            "finalUrl": self.final_url,
            "finalStatusCode": self.final_status_code,
            "redirectCount": self.hop_count,
            "hasLoop": self.has_loop,
            "hasTooManyRedirects": self.has_too_many_redirects,
            "totalTime": self.total_time_ms,
            "terminal": self.terminal.value,
        }
        if self.error_message is not None:
            out["error"] = self.error_message
        return out


def classify(status_code: int, location: Optional[str]) -> RedirectKind:
    """Map a status code (and whether a Location header came back) to a redirect kind."""
    if not (300 <= status_code < 400) or not location:
        return RedirectKind.FINAL_DESTINATION
    return _KIND_BY_STATUS.get(status_code, RedirectKind.OTHER_REDIRECT)


_ABSOLUTE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")


def _origin(sp) -> str:
    # hostname is lowercased by urlsplit; keep the explicit port only.
    host = sp.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    if sp.port:
        host += f":{sp.port}"
    return f"{sp.scheme}://{host}"


def resolve_location(current: str, location: str) -> str:
    """
    Location 헤더를 현재 URL 기준으로 절대 URL로 만든다.
    - "scheme://" 로 시작하면(절대 URL) 그대로
    - "//host/x" 는 현재 scheme을 붙임
    - "/x" 는 scheme+host(+port)
    - 그 외는 현재 경로의 디렉터리 기준 상대 경로
    """
    if _ABSOLUTE_RE.match(location):
        return location

    sp = urlsplit(current)
    if location.startswith("//"):
        return f"{sp.scheme}:{location}"
    if location.startswith("/"):
        return _origin(sp) + location

    directory = "/".join((sp.path or "").split("/")[:-1]) or ""
    return f"{_origin(sp)}{directory}/{location}"


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


def _check_contract(start_url: str, max_hops: int, probe_timeout_ms: int) -> None:
    sp = urlsplit(start_url or "")
    if sp.scheme not in ("http", "https") or not sp.hostname:
        raise ValueError(f"start_url must be an absolute http(s) URL: {start_url!r}")
    if int(max_hops) < 1:
        raise ValueError("max_hops must be >= 1")
    if int(probe_timeout_ms) <= 0:
        raise ValueError("probe_timeout_ms must be > 0")


class RequestsProbe:
    """HttpProbe backed by requests. Never follows redirects and never reads the body."""

    def __init__(self, session: Optional[requests.Session] = None, user_agent: str = DEFAULT_USER_AGENT):
        self.session = session or requests.Session()
        self.headers = {"User-Agent": user_agent, "Accept": "*/*"}

    def _request(self, method: str, url: str, timeout_ms: int) -> requests.Response:
        timeout = float(timeout_ms) / 1000.0
        # Separate connect/read timeouts to fail fast.
        req_timeout = (min(3.0, timeout), timeout)
        return self.session.request(
            method,
            url,
            allow_redirects=False,
            timeout=req_timeout,
            headers=self.headers,
            stream=True,
        )

    def head(self, url: str, timeout_ms: int) -> ProbeResponse:
        try:
            r = self._request("HEAD", url, timeout_ms)
            # Some servers reject HEAD outright; GET with stream=True still skips the body.
            if r.status_code in (405, 501):
                r.close()
                r = self._request("GET", url, timeout_ms)
        except requests.Timeout as e:
            raise ProbeError("HTTP request timeout") from e
        except requests.RequestException as e:
            raise ProbeError(f"HTTP request failed: {e}") from e

        try:
            return ProbeResponse(
                status_code=r.status_code,
                status_text=r.reason or "",
                headers=r.headers,
            )
        finally:
            r.close()


_DEFAULT_PROBE: Optional[RequestsProbe] = None


def default_probe() -> RequestsProbe:
    global _DEFAULT_PROBE
    if _DEFAULT_PROBE is None:
        _DEFAULT_PROBE = RequestsProbe()
    return _DEFAULT_PROBE


def walk(
    start_url: str,
    max_hops: int = DEFAULT_MAX_HOPS,
    probe_timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS,
    probe: Optional[HttpProbe] = None,
    allow_url: Optional[Callable[[str], bool]] = None,
) -> RedirectResult:
    """
    Follow the redirect chain starting at `start_url`, one probe per hop.

    Network failures, loops and overlong chains are reported on the returned
    RedirectResult; only a malformed `start_url` or bad limits raise ValueError.
    `max_hops` bounds the number of redirects followed, not the number of probes.
    `allow_url`, when given, is checked before every probe; a rejected URL ends
    the walk as PROBE_FAILED without being requested.
    """
    _check_contract(start_url, max_hops, probe_timeout_ms)
    probe = probe or default_probe()

    started = time.perf_counter()
    result = RedirectResult(original_url=start_url)
    visited = set()
    current = start_url
    hops = 0

    while hops < max_hops:
        # Literal string comparison: "/a" and "/a/" are different URLs here.
        if current in visited:
            result.terminal = Terminal.LOOP_DETECTED
            result.final_url = current
            result.final_status_code = None
            result.hop_count = hops
            log.info("redirect loop: %s revisits %s after %d hops", start_url, current, hops)
            break
        visited.add(current)

        if allow_url is not None and not allow_url(current):
            result.terminal = Terminal.PROBE_FAILED
            result.error_message = f"Redirect target not allowed: {current}"
            result.final_url = current
            result.hop_count = hops
            log.warning("blocked redirect target %s (hop %d) from %s", current, hops, start_url)
            break

        step_started = time.perf_counter()
        try:
            resp = probe.head(current, probe_timeout_ms)
            if resp.timed_out:
                raise ProbeError("HTTP request timeout")
        except ProbeError as e:
            result.terminal = Terminal.PROBE_FAILED
            result.error_message = str(e) or "Failed to follow redirects"
            result.final_url = current
            result.hop_count = hops
            log.warning("probe failed for %s (hop %d): %s", current, hops, result.error_message)
            break

        location = resp.header("location")
        kind = classify(resp.status_code, location)
        step = RedirectStep(
            url=current,
            status_code=resp.status_code,
            status_text=resp.status_text,
            redirect_kind=kind,
            location=location if kind is not RedirectKind.FINAL_DESTINATION else None,
            response_time_ms=_elapsed_ms(step_started),
            server=resp.header("server"),
            content_type=resp.header("content-type"),
            timestamp=_now_iso(),
        )
        result.chain.append(step)

        if not step.is_redirect:
            result.terminal = Terminal.COMPLETED
            result.final_url = current
            result.final_status_code = step.status_code
            result.hop_count = hops
            break

        try:
            nxt = resolve_location(current, location)
        except ValueError as e:
            # e.g. an out-of-range port on the URL we are resolving against
            result.terminal = Terminal.PROBE_FAILED
            result.error_message = f"Invalid redirect location {location!r}: {e}"
            result.final_url = current
            result.hop_count = hops
            log.warning("cannot resolve Location %r from %s: %s", location, current, e)
            break
        current = nxt
        hops += 1
    else:
        result.terminal = Terminal.TOO_MANY_REDIRECTS
        result.final_url = current
        result.hop_count = hops
        log.info("too many redirects: %s stopped at %s after %d hops", start_url, current, hops)

    result.total_time_ms = _elapsed_ms(started)
    if result.terminal is Terminal.COMPLETED:
        log.info(
            "redirect chain done: %s -> %s (%s, %d hops)",
            start_url, result.final_url, result.final_status_code, result.hop_count,
        )
    return result


def walk_many(
    urls: Iterable[str],
    max_workers: int = 4,
    **walk_kwargs: Any,
) -> List[RedirectResult]:
    """
    Walk every URL independently on a bounded thread pool.
    Results come back in input order; one URL blowing up does not affect the others.
    """
    urls = list(urls)
    if not urls:
        return []

    def _one(url: str) -> RedirectResult:
        try:
            return walk(url, **walk_kwargs)
        except Exception as e:
            log.exception("redirect walk crashed for %s", url)
            return RedirectResult(
                original_url=url,
                final_url=url,
                terminal=Terminal.PROBE_FAILED,
                error_message=str(e) or "Failed to check redirects",
            )

    workers = max(1, min(int(max_workers), len(urls)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(_one, urls))

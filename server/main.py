# server/main.py
from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

# server/.env 로드 (이미 설정된 환경변수가 우선)
load_dotenv(dotenv_path=Path(__file__).with_name(".env"))

from db import consume_check, connect, get_usage, init_db, plan_for_session
from logger import get_logger
from pricing import DAY_PASS, FREE, check_payment_requirement, limits_for
from redirect_utils import HttpProbe, default_probe, walk_many
from url_utils import InvalidUrl, is_local_or_private_host, validate_target_url

DB_PATH = os.getenv("DB_PATH", "./redirect_checker.db").strip()
CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "*").strip()

REDIRECT_MAX_HOPS = int(os.getenv("REDIRECT_MAX_HOPS", "10"))
REDIRECT_PROBE_TIMEOUT_MS = int(os.getenv("REDIRECT_PROBE_TIMEOUT_MS", "10000"))
REDIRECT_MAX_WORKERS = int(os.getenv("REDIRECT_MAX_WORKERS", "4"))
# 리다이렉트 중간 hop도 사설/로컬 호스트면 요청하지 않음
BLOCK_PRIVATE_REDIRECTS = os.getenv("BLOCK_PRIVATE_REDIRECTS", "true").lower() == "true"

log = get_logger("redirect_checker")
log.info(
    "[BOOT] DB_PATH=%s max_hops=%d probe_timeout_ms=%d workers=%d",
    DB_PATH, REDIRECT_MAX_HOPS, REDIRECT_PROBE_TIMEOUT_MS, REDIRECT_MAX_WORKERS,
)

_con: Optional[sqlite3.Connection] = None


def get_db() -> sqlite3.Connection:
    global _con
    if _con is None:
        _con = connect(DB_PATH)
        init_db(_con)
    return _con


def get_probe() -> HttpProbe:
    return default_probe()


def public_hosts_only(url: str) -> bool:
    return not is_local_or_private_host(url)


app = FastAPI(title="Redirect Checker API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[CORS_ALLOW_ORIGINS] if CORS_ALLOW_ORIGINS != "*" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class RedirectCheckRequest(BaseModel):
    url: Optional[str] = None
    urls: List[str] = Field(default_factory=list)
    sessionId: Optional[str] = None


def _error(status_code: int, error: str, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message, **extra})


def _client_key(request: Request, session_id: Optional[str]) -> str:
    if session_id:
        return f"session:{session_id}"
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


@app.get("/")
def root():
    return {"ok": True, "hint": "Use POST /redirect-checker or GET /docs"}


@app.post("/redirect-checker")
def redirect_checker(
    payload: RedirectCheckRequest,
    request: Request,
    con: sqlite3.Connection = Depends(get_db),
    probe: HttpProbe = Depends(get_probe),
):
    all_urls = payload.urls if payload.urls else ([payload.url] if payload.url else [])
    if not all_urls:
        return _error(400, "Invalid URL", "Please provide at least one valid URL")

    valid_urls: List[str] = []
    for raw in all_urls:
        try:
            valid_urls.append(validate_target_url(raw))
        except InvalidUrl as e:
            return _error(400, "Invalid URL", f"Please provide a valid URL for {raw}. Error: {e}")

    try:
        plan = plan_for_session(con, payload.sessionId)
        # 무료 배치 초과는 아래 402 게이트 담당, 여기는 유료 한도 기준 상한
        hard_cap = limits_for(DAY_PASS)["max_items_per_job"]
        if len(valid_urls) > hard_cap:
            return _error(
                400,
                "Too many URLs",
                f"At most {hard_cap} URLs can be checked in one request.",
            )

        client_key = _client_key(request, payload.sessionId)
        requirement = check_payment_requirement(
            item_count=len(valid_urls),
            plan=plan,
            checks_today=get_usage(con, client_key),
        )
        if requirement.requires_payment:
            if requirement.reason == "batch":
                message = (
                    f"Batch processing ({len(valid_urls)} URLs) requires a Processing Pass. "
                    f"Free tier allows up to {requirement.max_free_batch} URLs at a time."
                )
            else:
                message = "Daily rate limit exceeded. A Processing Pass is required for unlimited redirect checks."
            log.info("payment required for %s: %s", client_key, requirement.reason)
            return _error(
                402,
                "Payment required",
                message,
                paymentRequired=True,
                reason=requirement.reason,
                urlCount=len(valid_urls),
                requirement=requirement.to_dict(),
            )

        # 한도 확인과 증가를 한 문장으로 (한도 초과면 None)
        limit = requirement.max_free_per_day if plan == FREE else None
        if consume_check(con, client_key, limit=limit) is None:
            log.info("payment required for %s: rate_limit (concurrent)", client_key)
            return _error(
                402,
                "Payment required",
                "Daily rate limit exceeded. A Processing Pass is required for unlimited redirect checks.",
                paymentRequired=True,
                reason="rate_limit",
                urlCount=len(valid_urls),
                requirement=requirement.to_dict(),
            )

        walked = walk_many(
            valid_urls,
            max_workers=REDIRECT_MAX_WORKERS,
            max_hops=REDIRECT_MAX_HOPS,
            probe_timeout_ms=REDIRECT_PROBE_TIMEOUT_MS,
            probe=probe,
            allow_url=public_hosts_only if BLOCK_PRIVATE_REDIRECTS else None,
        )
    except Exception as e:
        log.exception("redirect checker error")
        return _error(500, "Redirect check failed", str(e) or "Failed to check redirects. Please try again.")

    now = datetime.now(tz=timezone.utc).isoformat()
    results: List[Dict[str, Any]] = [{**r.to_dict(), "timestamp": now} for r in walked]

    return {
        "success": True,
        "results": results,
        "count": len(results),
        "message": f"Redirect check completed for {len(results)} URL(s)",
    }

# services/fortune/fortune_routes.py
import logging
import platform
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse
from services.fortune.ai_fortune import (
    AIFortuneService,
    EmptyFortuneError,
    ai_fortune_service,
    is_valid_local_date,
    normalize_lang,
    normalize_lines,
    normalize_theme,
)
from services.fortune.classic import DEFAULT_TZ, select_fortune
from services.fortune.identity import client_ip, get_or_create_user_id, set_user_cookie
from services.fortune.models import (
    AIFortuneErrorResponse,
    AIFortuneRequest,
    AIFortuneResponse,
    ClassicFortuneResponse,
    DiagnosticsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

LOCAL_DATE_REQUIRED = "localDate (YYYY-MM-DD) is required"
EMPTY_AI_RESULT = "Empty AI result"

_started_at = time.monotonic()


def get_ai_fortune_service() -> AIFortuneService:
    """Dependency to get the AI fortune service"""
    return ai_fortune_service


def get_now() -> datetime:
    """Dependency for the current time"""
    return datetime.now(timezone.utc)


@router.get("/api/fortune", response_model=ClassicFortuneResponse)
async def get_classic_fortune(
    request: Request,
    tz: Optional[str] = Query(DEFAULT_TZ, description="IANA timezone of the visitor"),
    now: datetime = Depends(get_now),
):
    """
    Today's deterministic fortune for this visitor (same day + IP + user agent
    gives the same fortune), with the seconds left until a new one is available.
    """
    result = select_fortune(
        tz=tz or DEFAULT_TZ,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent", ""),
        now=now,
    )

    return ClassicFortuneResponse(
        fortune=result.fortune,
        secondsUntilNext=result.seconds_until_next,
        source=result.source,
    )


@router.post(
    "/api/fortune-ai",
    response_model=AIFortuneResponse,
    response_model_exclude_none=True,
    responses={400: {"model": AIFortuneErrorResponse}, 502: {"model": AIFortuneErrorResponse}},
)
async def get_ai_fortune(
    request: Request,
    payload: Any = Body(None),
    service: AIFortuneService = Depends(get_ai_fortune_service),
):
    """
    A short AI-written relationship fortune, cached per visitor, language, theme,
    line count and local day. Provider failures are answered with fallback text.
    """
    body = AIFortuneRequest.model_validate(payload if isinstance(payload, dict) else {})
    lang = normalize_lang(body.lang)
    user_id = None
    is_new_user = False

    try:
        theme = normalize_theme(body.theme)
        lines = normalize_lines(body.lines)

        if not is_valid_local_date(body.local_date):
            logger.warning("⚠️ FORTUNE_AI: 400 missing/invalid localDate")
            return JSONResponse(status_code=400, content={"error": LOCAL_DATE_REQUIRED})

        user_id, is_new_user = get_or_create_user_id(request.cookies)

        result = await service.get_fortune(
            user_id=user_id,
            lang=lang,
            theme=theme,
            lines=lines,
            local_date=body.local_date,
        )

        content = AIFortuneResponse(
            fortune=result.fortune,
            source=result.source,
            cached=True if result.cached else None,
        ).model_dump(exclude_none=True)
        return _with_user_cookie(JSONResponse(content=content), user_id, is_new_user)

    except EmptyFortuneError:
        return _with_user_cookie(
            JSONResponse(status_code=502, content={"error": EMPTY_AI_RESULT}),
            user_id,
            is_new_user,
        )
    except Exception as e:
        fallback = service.record_fallback(e, lang, user_id)
        content = AIFortuneResponse(fortune=fallback, source="fallback").model_dump(
            exclude_none=True
        )
        return _with_user_cookie(JSONResponse(content=content), user_id, is_new_user)


def _with_user_cookie(
    response: JSONResponse, user_id: Optional[str], is_new_user: bool
) -> JSONResponse:
    if user_id and is_new_user:
        set_user_cookie(response, user_id)
    return response


@router.get("/api/diag", response_model=DiagnosticsResponse)
async def get_diagnostics(service: AIFortuneService = Depends(get_ai_fortune_service)):
    """Provider configuration and process health for operators"""
    return DiagnosticsResponse(
        hasKey=service.llm.has_key,
        python=platform.python_version(),
        httpxPkg=getattr(httpx, "__version__", None),
        uptimeSec=round(time.monotonic() - _started_at),
        cacheEntries=len(service.cache),
        fallbackCount=service.fallback_stats.count,
    )

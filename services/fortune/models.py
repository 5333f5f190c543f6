# services/fortune/models.py
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


# Classic Fortune Models
class ClassicFortuneResponse(BaseModel):
    fortune: str
    secondsUntilNext: int = Field(..., ge=0, lt=86400)
    source: Literal["classic"] = "classic"


# AI Fortune Models
class AIFortuneRequest(BaseModel):
    # Fields stay loosely typed: bad values are normalized, never rejected
    lang: Any = "en"
    theme: Any = "relationship"
    lines: Any = 2
    local_date: Optional[Any] = Field(None, alias="localDate")


class AIFortuneResponse(BaseModel):
    fortune: str
    source: Literal["openai", "cache", "fallback"]
    cached: Optional[bool] = None


class AIFortuneErrorResponse(BaseModel):
    error: str


# Diagnostics
class DiagnosticsResponse(BaseModel):
    hasKey: bool
    python: str
    httpxPkg: Optional[str] = None
    uptimeSec: int
    cacheEntries: int
    fallbackCount: int

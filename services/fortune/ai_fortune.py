# services/fortune/ai_fortune.py
"""
AI fortune generation with a per-user daily cache.

Requests are normalized, looked up in the cache and, on a miss, generated through
the LLM client, formatted to at most two short lines and cached.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

from services.fortune import config
from services.fortune.ai_cache import HOUR_MS, DailyFortuneCache, build_cache_key

from shared.llm_client import LLMClient, llm_client

logger = logging.getLogger(__name__)

SUPPORTED_LANGS = ("en", "tr")
DEFAULT_LANG = "en"
DEFAULT_THEME = "relationship"
MIN_LINES = 1
MAX_LINES = 2
MAX_CHARS_PER_LINE = 140
ELLIPSIS = "…"

LOCAL_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

GENERATION_PARAMETERS = {"temperature": 0.8, "max_tokens": 80}

FALLBACK_FORTUNES = {
    "en": "Speak plainly today; repair begins there.",
    "tr": "Bugün açık konuşmak bağınızı onarabilir.",
}


class EmptyFortuneError(Exception):
    """The provider answered, but nothing usable was left after formatting"""


@dataclass(frozen=True)
class AIFortuneResult:
    fortune: str
    source: str
    cached: bool = False


# Request normalization


def normalize_lang(value: Any) -> str:
    return value if isinstance(value, str) and value in SUPPORTED_LANGS else DEFAULT_LANG


def normalize_theme(value: Any) -> str:
    if value is None or value == "":
        return DEFAULT_THEME
    return str(value)


def _parse_leading_int(value: Any) -> int:
    """Parse an integer prefix the way browsers' parseInt does; 0 when there is none."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value and abs(value) != float("inf") else 0

    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else 0


def normalize_lines(value: Any) -> int:
    lines = _parse_leading_int(value) or MIN_LINES
    return min(max(lines, MIN_LINES), MAX_LINES)


def is_valid_local_date(value: Any) -> bool:
    return isinstance(value, str) and LOCAL_DATE_PATTERN.fullmatch(value) is not None


# Prompt + formatting


def build_prompt(lang: str, lines: int) -> str:
    """Build the provider prompt for a short relationship fortune"""
    if lang == "tr":
        return (
            "İlişki odaklı KISA bir fal yaz. 1-2 satır. "
            "Konular: yakınlaşma, iletişim, onarma, ayrılık sonrası iyileşme.\n"
            "Sıcak, modern, net. Emoji ve klişe yok."
        )

    return (
        f"Write a SHORT, relationship-focused fortune in {lines} line(s).\n"
        "Themes: closeness, communication, repair, healing after breakups.\n"
        "Warm, modern, clear. No emojis. No clichés."
    )


def format_fortune(
    text: Optional[str], lines: int = MAX_LINES, max_per_line: int = MAX_CHARS_PER_LINE
) -> str:
    """
    Clean up raw provider output.

    Drops carriage returns and blank lines, keeps the first `lines` lines and
    truncates each line to `max_per_line` characters with a trailing ellipsis.
    """
    cleaned = str(text or "").replace("\r", "").strip()
    if not cleaned:
        return ""

    kept = [line.strip() for line in cleaned.split("\n") if line.strip()][:lines]
    return "\n".join(
        line[: max_per_line - 1] + ELLIPSIS if len(line) > max_per_line else line for line in kept
    )


def fallback_fortune(lang: Any) -> str:
    return FALLBACK_FORTUNES[normalize_lang(lang)]


class FallbackStats:
    """Counts generation failures that were answered with fallback text"""

    def __init__(self):
        self.count = 0
        self.last_error_type: Optional[str] = None
        self.last_failure_at: Optional[float] = None

    def record(self, error: BaseException, lang: str, user_id: Optional[str]) -> None:
        self.count += 1
        self.last_error_type = type(error).__name__
        self.last_failure_at = time.time()

        logger.error(
            f"❌ FORTUNE_AI: fallback served error_type={self.last_error_type} "
            f"lang={lang} user={(user_id or '-')[:8]} total_fallbacks={self.count}: {error}"
        )


class AIFortuneService:
    """Cache-first AI fortune generation"""

    def __init__(self, cache: DailyFortuneCache, llm: LLMClient):
        self.cache = cache
        self.llm = llm
        self.fallback_stats = FallbackStats()

    async def get_fortune(
        self, user_id: str, lang: str, theme: str, lines: int, local_date: str
    ) -> AIFortuneResult:
        """
        Return today's fortune for the user, generating it on a cache miss.

        Raises:
            EmptyFortuneError: The provider returned nothing usable
            LLMError: The provider call failed
        """
        start_time = time.time()
        key = build_cache_key(user_id, lang, theme, lines, local_date)

        cached = await self.cache.get(key)
        if cached:
            logger.info(f"🔮 FORTUNE_AI: cache hit user={user_id[:8]} lang={lang} day={local_date}")
            return AIFortuneResult(fortune=cached.fortune, source="cache", cached=True)

        raw, _ = await self.llm.generate_completion(
            prompt=build_prompt(lang, lines),
            parameters=GENERATION_PARAMETERS,
            user_tag=user_id[:8],
        )

        fortune = format_fortune(raw, lines)
        if not fortune:
            logger.error(f"❌ FORTUNE_AI: Empty result from provider user={user_id[:8]}")
            raise EmptyFortuneError("Empty AI result")

        await self.cache.set(key, fortune)

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"✨ FORTUNE_AI: generated user={user_id[:8]} lang={lang} day={local_date} "
            f"in {duration_ms}ms"
        )
        return AIFortuneResult(fortune=fortune, source="openai")

    def record_fallback(self, error: BaseException, lang: str, user_id: Optional[str]) -> str:
        """Log a masked failure and return the fallback text for lang"""
        self.fallback_stats.record(error, lang, user_id)
        return fallback_fortune(lang)


def create_ai_fortune_service() -> AIFortuneService:
    cache = DailyFortuneCache(
        ttl_ms=int(config.AI_CACHE_TTL_HOURS * HOUR_MS),
        max_entries=config.AI_CACHE_MAX_ENTRIES,
    )
    return AIFortuneService(cache=cache, llm=llm_client)


# Global instance
ai_fortune_service = create_ai_fortune_service()

# services/fortune/classic.py
"""
Deterministic "classic" fortune selection.

A visitor gets one fortune per local calendar day: the fortune index is a hash of
the local date, the client IP and the user agent, so reloading the page returns the
same text until local midnight.
"""

import logging
import struct
from datetime import datetime, timezone
from typing import NamedTuple, Optional, Sequence
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

FORTUNES = (
    "A small step today becomes a milestone tomorrow.",
    "Your curiosity is your superpower.",
    "Luck favors the prepared mind.",
    "A door closes; a better one slides open.",
)

DEFAULT_TZ = "UTC"
SECONDS_PER_DAY = 86_400


class ClassicFortune(NamedTuple):
    fortune: str
    seconds_until_next: int
    source: str = "classic"


def hash_string(s: str) -> int:
    """
    32-bit rolling hash (h = h * 31 + unit) over the UTF-16 code units of s.

    Matches the hash browsers compute with charCodeAt, so a seed hashes the same
    way on the client and the server.
    """
    h = 0
    for (unit,) in struct.iter_unpack("<H", s.encode("utf-16-le")):
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def _resolve_zone(tz: Optional[str]) -> Optional[ZoneInfo]:
    """Return the zone for tz, or None when it cannot be resolved."""
    try:
        return ZoneInfo(tz or DEFAULT_TZ)
    except Exception as e:
        logger.warning(f"⚠️ CLASSIC: Invalid timezone {tz!r}, using system default: {e}")
        return None


def _localize(now: Optional[datetime], zone: Optional[ZoneInfo]) -> datetime:
    now = now or datetime.now(timezone.utc)
    # astimezone() without an argument converts to the system default zone
    return now.astimezone(zone) if zone else now.astimezone()


def local_date_string(tz: Optional[str], now: Optional[datetime] = None) -> str:
    """Local calendar date as YYYY-MM-DD in tz (system default zone if tz is invalid)."""
    return _localize(now, _resolve_zone(tz)).strftime("%Y-%m-%d")


def seconds_until_midnight(tz: Optional[str], now: Optional[datetime] = None) -> int:
    """Wall-clock seconds until the next local midnight, in [0, 86399]."""
    return _seconds_until_midnight(_localize(now, _resolve_zone(tz)))


def _seconds_until_midnight(local: datetime) -> int:
    # Whole seconds, the current fraction of a second is not counted
    seconds_since_midnight = (local.hour * 60 + local.minute) * 60 + local.second
    remaining = SECONDS_PER_DAY - seconds_since_midnight
    return max(0, min(remaining, SECONDS_PER_DAY - 1))


def build_seed(local_date: str, ip: str, user_agent: str) -> str:
    return f"{local_date}|{ip}|{user_agent}"


def select_fortune(
    tz: Optional[str],
    ip: str,
    user_agent: str,
    now: Optional[datetime] = None,
    catalog: Sequence[str] = FORTUNES,
) -> ClassicFortune:
    """
    Pick today's fortune for a visitor.

    Args:
        tz: IANA timezone of the visitor, defaults to UTC
        ip: Client IP address
        user_agent: User-Agent header value
        now: Current time (aware datetime), defaults to the wall clock
        catalog: Fortune texts to choose from

    Returns:
        ClassicFortune with the text and the seconds until a new one is available
    """
    if not catalog:
        raise ValueError("Fortune catalog is empty")

    local = _localize(now, _resolve_zone(tz))
    seed = build_seed(local.strftime("%Y-%m-%d"), ip or "", user_agent or "")
    index = hash_string(seed) % len(catalog)

    return ClassicFortune(
        fortune=catalog[index],
        seconds_until_next=_seconds_until_midnight(local),
    )

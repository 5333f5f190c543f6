# services/fortune/identity.py
"""Anonymous visitor id and client address helpers"""

import secrets
from typing import Mapping, Optional

from fastapi import Request, Response
from services.fortune import config


def new_user_id() -> str:
    """128 random bits, hex encoded"""
    return secrets.token_hex(16)


def get_or_create_user_id(cookies: Mapping[str, str]) -> tuple[str, bool]:
    """Return (user_id, is_new). An existing id is reused as-is."""
    existing = cookies.get(config.USER_COOKIE_NAME)
    if existing:
        return existing, False
    return new_user_id(), True


def set_user_cookie(response: Response, user_id: str) -> None:
    response.set_cookie(
        key=config.USER_COOKIE_NAME,
        value=user_id,
        httponly=True,
        secure=config.ENVIRONMENT == "production",
        samesite="lax",
        max_age=config.USER_COOKIE_MAX_AGE,
    )


def client_ip(request: Request, trusted_hops: Optional[int] = None) -> str:
    """
    Client address as seen through `trusted_hops` reverse proxies.

    Each trusted proxy appends the address it received the request from to
    X-Forwarded-For, so the client is `trusted_hops` entries from the right of
    [*X-Forwarded-For, peer].
    """
    hops = config.TRUST_PROXY_HOPS if trusted_hops is None else trusted_hops
    peer = request.client.host if request.client else ""

    forwarded = request.headers.get("x-forwarded-for")
    if hops <= 0 or not forwarded:
        return peer

    chain = [addr.strip() for addr in forwarded.split(",") if addr.strip()]
    chain.append(peer)
    index = max(len(chain) - 1 - hops, 0)
    return chain[index]

from typing import Any, Optional

import httpx
import pytest
from services.fortune.classic import FORTUNES, hash_string

from tests.fakes import FakeLLMClient

AI_URL = "/api/fortune-ai"


async def post_ai(
    client: httpx.AsyncClient, payload: Any, user_id: Optional[str] = None
) -> httpx.Response:
    """POST to the AI endpoint as a visitor with (or without) an existing id cookie."""
    client.cookies.clear()
    headers = {"Cookie": f"fcid={user_id}"} if user_id else {}
    return await client.post(AI_URL, json=payload, headers=headers)


# Classic fortune


@pytest.mark.api
@pytest.mark.asyncio
async def test_classic_fortune_for_fixed_date(http_client: httpx.AsyncClient, visitor: dict):
    """Fixed clock at 2024-01-01 12:00 UTC gives a fixed entry and a 12h countdown."""
    response = await http_client.get(
        "/api/fortune",
        params={"tz": "UTC"},
        headers={"User-Agent": visitor["user_agent"], "X-Forwarded-For": visitor["ip"]},
    )

    assert response.status_code == 200
    data = response.json()
    seed = f"2024-01-01|{visitor['ip']}|{visitor['user_agent']}"
    assert data == {
        "fortune": FORTUNES[hash_string(seed) % len(FORTUNES)],
        "secondsUntilNext": 86400 - 12 * 3600,
        "source": "classic",
    }


@pytest.mark.api
@pytest.mark.asyncio
async def test_classic_fortune_is_stable_for_a_visitor(http_client: httpx.AsyncClient, visitor):
    headers = {"User-Agent": visitor["user_agent"], "X-Forwarded-For": visitor["ip"]}

    first = await http_client.get("/api/fortune", headers=headers)
    second = await http_client.get("/api/fortune", headers=headers)

    assert first.json()["fortune"] == second.json()["fortune"]


@pytest.mark.api
@pytest.mark.asyncio
async def test_classic_fortune_defaults_to_utc(http_client: httpx.AsyncClient, visitor):
    headers = {"User-Agent": visitor["user_agent"], "X-Forwarded-For": visitor["ip"]}

    default = await http_client.get("/api/fortune", headers=headers)
    explicit = await http_client.get("/api/fortune", params={"tz": "UTC"}, headers=headers)

    assert default.json() == explicit.json()


@pytest.mark.api
@pytest.mark.asyncio
async def test_classic_fortune_uses_local_timezone(http_client: httpx.AsyncClient):
    response = await http_client.get("/api/fortune", params={"tz": "Asia/Tokyo"})

    assert response.status_code == 200
    assert response.json()["secondsUntilNext"] == 3 * 3600


@pytest.mark.api
@pytest.mark.asyncio
async def test_classic_fortune_survives_invalid_timezone(http_client: httpx.AsyncClient):
    response = await http_client.get("/api/fortune", params={"tz": "Not/AZone"})

    assert response.status_code == 200
    data = response.json()
    assert data["fortune"] in FORTUNES
    assert 0 <= data["secondsUntilNext"] < 86400
    assert data["source"] == "classic"


@pytest.mark.api
@pytest.mark.asyncio
async def test_classic_fortune_trusts_one_proxy_hop(http_client: httpx.AsyncClient):
    """The client is the last X-Forwarded-For entry appended by the trusted proxy."""
    spoofed = await http_client.get(
        "/api/fortune",
        headers={"User-Agent": "ua", "X-Forwarded-For": "1.2.3.4, 203.0.113.50"},
    )
    direct = await http_client.get(
        "/api/fortune", headers={"User-Agent": "ua", "X-Forwarded-For": "203.0.113.50"}
    )

    seed = "2024-01-01|203.0.113.50|ua"
    assert spoofed.json()["fortune"] == FORTUNES[hash_string(seed) % len(FORTUNES)]
    assert spoofed.json() == direct.json()


@pytest.mark.api
@pytest.mark.asyncio
async def test_api_responses_are_not_cacheable(http_client: httpx.AsyncClient):
    response = await http_client.get("/api/fortune")

    assert "no-store" in response.headers["cache-control"]
    assert response.headers["x-content-type-options"] == "nosniff"


# AI fortune


@pytest.mark.api
@pytest.mark.asyncio
async def test_ai_fortune_generated_then_cached(http_client: httpx.AsyncClient, fake_llm):
    payload = {"localDate": "2024-01-01", "lang": "en"}

    first = await post_ai(http_client, payload)
    assert first.status_code == 200
    assert first.json() == {"fortune": "Speak warmly.\nTrust grows slowly.", "source": "openai"}

    user_id = first.cookies.get("fcid")
    assert user_id and len(user_id) == 32
    int(user_id, 16)

    second = await post_ai(http_client, payload, user_id=user_id)
    assert second.status_code == 200
    assert second.json() == {
        "fortune": "Speak warmly.\nTrust grows slowly.",
        "cached": True,
        "source": "cache",
    }
    assert "set-cookie" not in second.headers
    assert len(fake_llm.calls) == 1


@pytest.mark.api
@pytest.mark.asyncio
async def test_ai_fortune_sets_long_lived_http_only_cookie(http_client: httpx.AsyncClient):
    response = await post_ai(http_client, {"localDate": "2024-01-01"})

    cookie = response.headers["set-cookie"]
    assert cookie.startswith("fcid=")
    assert "HttpOnly" in cookie
    assert "Max-Age=31536000" in cookie
    assert "samesite=lax" in cookie.lower()
    assert "Secure" not in cookie


@pytest.mark.api
@pytest.mark.asyncio
async def test_ai_fortune_reuses_presented_id_as_is(http_client: httpx.AsyncClient, ai_service):
    response = await post_ai(http_client, {"localDate": "2024-01-01"}, user_id="not-even-hex")

    assert response.status_code == 200
    assert "set-cookie" not in response.headers
    assert await ai_service.cache.get("not-even-hex:en:relationship:2:2024-01-01") is not None


@pytest.mark.api
@pytest.mark.asyncio
async def test_ai_fortune_cache_is_per_visitor(http_client: httpx.AsyncClient, fake_llm):
    payload = {"localDate": "2024-01-01"}

    await post_ai(http_client, payload, user_id="a" * 32)
    other = await post_ai(http_client, payload, user_id="b" * 32)

    assert other.json()["source"] == "openai"
    assert len(fake_llm.calls) == 2


@pytest.mark.api
@pytest.mark.asyncio
async def test_ai_fortune_regenerates_after_ttl(
    http_client: httpx.AsyncClient, fake_llm: FakeLLMClient, clock
):
    fake_llm.replies = ["Yesterday's words.", "Fresh words."]
    payload = {"localDate": "2024-01-01"}

    first = await post_ai(http_client, payload, user_id="c" * 32)
    clock.advance_hours(26)
    second = await post_ai(http_client, payload, user_id="c" * 32)

    assert first.json()["fortune"] == "Yesterday's words."
    assert second.json() == {"fortune": "Fresh words.", "source": "openai"}


@pytest.mark.api
@pytest.mark.asyncio
async def test_ai_fortune_normalizes_lines_and_lang(
    http_client: httpx.AsyncClient, fake_llm: FakeLLMClient, ai_service
):
    fake_llm.replies = ["one\ntwo\nthree"]

    response = await post_ai(
        http_client, {"localDate": "2024-01-01", "lang": "de", "lines": 9}, user_id="d" * 32
    )

    assert response.json()["fortune"] == "one\ntwo"
    assert await ai_service.cache.get(f"{'d' * 32}:en:relationship:2:2024-01-01") is not None


@pytest.mark.api
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"localDate": "2024/01/01"},
        {"localDate": "abc"},
        {"localDate": ""},
        {"localDate": 20240101},
        {"local_date": "2024-01-01"},
        {"lang": "en"},
        {},
        None,
        ["2024-01-01"],
    ],
)
async def test_ai_fortune_rejects_bad_local_date(
    http_client: httpx.AsyncClient, fake_llm: FakeLLMClient, ai_service, payload
):
    response = await post_ai(http_client, payload)

    assert response.status_code == 400
    assert response.json() == {"error": "localDate (YYYY-MM-DD) is required"}
    assert "set-cookie" not in response.headers
    assert fake_llm.calls == []
    assert len(ai_service.cache) == 0


@pytest.mark.api
@pytest.mark.asyncio
async def test_ai_fortune_empty_provider_output_is_502(
    http_client: httpx.AsyncClient, fake_llm: FakeLLMClient, ai_service
):
    fake_llm.replies = ["  \r\n\n  "]

    response = await post_ai(http_client, {"localDate": "2024-01-01"}, user_id="e" * 32)

    assert response.status_code == 502
    assert response.json() == {"error": "Empty AI result"}
    assert len(ai_service.cache) == 0


@pytest.mark.api
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "lang,expected",
    [
        ("en", "Speak plainly today; repair begins there."),
        ("tr", "Bugün açık konuşmak bağınızı onarabilir."),
    ],
)
async def test_ai_fortune_provider_failure_falls_back(
    http_client: httpx.AsyncClient, fake_llm: FakeLLMClient, ai_service, lang, expected
):
    fake_llm.error = RuntimeError("connection reset by peer")

    response = await post_ai(http_client, {"localDate": "2024-01-01", "lang": lang})

    assert response.status_code == 200
    assert response.json() == {"fortune": expected, "source": "fallback"}
    assert response.cookies.get("fcid")
    assert ai_service.fallback_stats.count == 1
    assert len(ai_service.cache) == 0


# Operations


@pytest.mark.api
@pytest.mark.asyncio
async def test_diagnostics_report_provider_and_cache(
    http_client: httpx.AsyncClient, fake_llm: FakeLLMClient
):
    await post_ai(http_client, {"localDate": "2024-01-01"}, user_id="f" * 32)
    fake_llm.error = RuntimeError("boom")
    await post_ai(http_client, {"localDate": "2024-01-02"}, user_id="f" * 32)

    response = await http_client.get("/api/diag")

    assert response.status_code == 200
    data = response.json()
    assert data["hasKey"] is True
    assert data["python"].count(".") == 2
    assert data["uptimeSec"] >= 0
    assert data["cacheEntries"] == 1
    assert data["fallbackCount"] == 1


@pytest.mark.api
@pytest.mark.asyncio
async def test_health(http_client: httpx.AsyncClient):
    response = await http_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "fortune"}


@pytest.mark.api
@pytest.mark.asyncio
async def test_index_page_is_served(http_client: httpx.AsyncClient):
    response = await http_client.get("/")

    assert response.status_code == 200
    assert "Fortune Cookie" in response.text


@pytest.mark.api
@pytest.mark.asyncio
async def test_unknown_path_uses_standard_error_envelope(http_client: httpx.AsyncClient):
    response = await http_client.get("/api/does-not-exist")

    assert response.status_code == 404
    data = response.json()
    assert data["error"] is True
    assert data["status_code"] == 404

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import httpx
import pytest
from faker import Faker

# Set test environment before the app modules read it
os.environ["ENVIRONMENT"] = "test"
os.environ["AI_CACHE_SWEEP_SECONDS"] = "0"
os.environ.pop("OPENAI_API_KEY", None)

from services.fortune.ai_cache import HOUR_MS, DailyFortuneCache  # noqa: E402
from services.fortune.ai_fortune import AIFortuneService  # noqa: E402
from services.fortune.fortune_routes import get_ai_fortune_service, get_now  # noqa: E402
from services.fortune.main import app as fortune_app  # noqa: E402

from shared.llm_client import LLMError  # noqa: E402
from tests.fakes import FakeClock, FakeLLMClient  # noqa: E402

fake = Faker()

FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient(replies=["Speak warmly.\nTrust grows slowly."])


@pytest.fixture
def failing_llm() -> FakeLLMClient:
    return FakeLLMClient(error=LLMError("OpenAI API error 503: overloaded", status_code=503))


@pytest.fixture
def cache(clock: FakeClock) -> DailyFortuneCache:
    return DailyFortuneCache(ttl_ms=26 * HOUR_MS, max_entries=100, clock=clock)


@pytest.fixture
def ai_service(cache: DailyFortuneCache, fake_llm: FakeLLMClient) -> AIFortuneService:
    return AIFortuneService(cache=cache, llm=fake_llm)


@pytest.fixture
def app(ai_service: AIFortuneService):
    """The fortune app wired to the fake provider, fake cache clock and a fixed date."""
    fortune_app.dependency_overrides[get_ai_fortune_service] = lambda: ai_service
    fortune_app.dependency_overrides[get_now] = lambda: FIXED_NOW
    yield fortune_app
    fortune_app.dependency_overrides.clear()


@pytest.fixture
async def http_client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client talking to the app in-process."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def visitor() -> dict[str, str]:
    """A realistic visitor: forwarded client IP and browser user agent."""
    return {"ip": fake.ipv4_public(), "user_agent": fake.user_agent()}

"""Shared fixtures: settings, a recorded sleep, a fake clock and a Gemini mock."""

import pytest
import respx
from fastapi.testclient import TestClient

from fusion.app.core.config import Settings
from fusion.app.main import create_app
from fusion.app.providers.gemini import GeminiProvider
from fusion.app.providers.retry import BackoffClient, RetryPolicy
from fusion.app.services.fusion import FusionService
from fusion.app.services.rate_limit import RateLimiter

GEMINI_HOST = "generativelanguage.googleapis.com"
TEXT_PATH = "/v1beta/models/gemini-test:generateContent"
IMAGE_PATH = "/v1beta/models/imagen-test:predict"
TEXT_URL = f"https://{GEMINI_HOST}{TEXT_PATH}"


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def text_response(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def image_response(data: str = "aW1hZ2U=") -> dict:
    return {"predictions": [{"bytesBase64Encoded": data}]}


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        gemini_api_key="test-key",
        gemini_text_model="gemini-test",
        gemini_image_model="imagen-test",
        fusion_count_file=str(tmp_path / "data" / "fusion-count.json"),
        rate_limit_sweep_interval_seconds=0,
        retry_base_delay=0.001,
    )


@pytest.fixture
def gemini_mock():
    """respx router for the provider; unmatched requests fail loudly."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def backoff(sleep_recorder) -> BackoffClient:
    return BackoffClient(policy=RetryPolicy(), sleep=sleep_recorder)


@pytest.fixture
def provider(test_settings, backoff) -> GeminiProvider:
    return GeminiProvider(
        base_url=test_settings.gemini_base_url,
        api_key=test_settings.gemini_api_key,
        text_model=test_settings.gemini_text_model,
        image_model=test_settings.gemini_image_model,
        backoff=backoff,
    )


@pytest.fixture
def rate_limiter(test_settings, fake_clock) -> RateLimiter:
    return RateLimiter.from_settings(test_settings, clock=fake_clock)


@pytest.fixture
def fusion_service(provider, rate_limiter, test_settings) -> FusionService:
    return FusionService(provider, rate_limiter, test_settings)


@pytest.fixture
def client(test_settings, gemini_mock):
    app = create_app(test_settings)
    with TestClient(app) as test_client:
        yield test_client

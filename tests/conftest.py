import pytest
import httpx
from typer.testing import CliRunner

from skyfi_mcp.infrastructure.cli.display import ConsoleDisplay
from skyfi_mcp.infrastructure.config import settings
from skyfi_mcp.infrastructure.resilience.rate_limiter import RateLimiter
from skyfi_mcp.infrastructure.skyfi.client import SkyFiClient

TEST_API_KEY = "test-key-0123456789"
TEST_BASE_URL = "https://api.skyfi.test/platform-api"

@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()

@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Dummy API key and a clean configuration store for every test."""
    monkeypatch.setenv("SKYFI_API_KEY", TEST_API_KEY)
    monkeypatch.delenv("SKYFI_BASE_URL", raising=False)
    settings.reset_configuration()
    settings.clear_test_config()
    yield
    settings.reset_configuration()
    settings.clear_test_config()

@pytest.fixture
def fast_limiter():
    """A rate limiter that never makes tests wait."""
    return RateLimiter(capacity=1000, refill_per_second=1000.0)

@pytest.fixture
def make_client(fast_limiter):
    """Factory building a SkyFiClient backed by an httpx.MockTransport handler."""
    def _make(handler, **kwargs) -> SkyFiClient:
        options = {
            "api_key": TEST_API_KEY,
            "base_url": TEST_BASE_URL,
            "rate_limiter": fast_limiter,
            "initial_backoff_s": 0,
        }
        options.update(kwargs)
        return SkyFiClient(transport=httpx.MockTransport(handler), **options)
    return _make

@pytest.fixture
def mock_console_display(mocker):
    """Mocks the ConsoleDisplay where main.py instantiates it."""
    mock = mocker.MagicMock(spec=ConsoleDisplay)
    mocker.patch('skyfi_mcp.main.ConsoleDisplay', return_value=mock)
    return mock

def make_orders(start: int, count: int, status: str = "completed"):
    """Upstream-shaped order payloads with sequential ids."""
    return [
        {"id": f"order-{i}", "status": status, "createdAt": "2024-01-01T00:00:00Z", "price": 100.0 + i, "currency": "USD"}
        for i in range(start, start + count)
    ]

@pytest.fixture
def orders_factory():
    return make_orders

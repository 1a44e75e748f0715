import pytest
from unittest.mock import AsyncMock, MagicMock

from skyfi_mcp.core.services.diagnostics_service import (
    CheckResult, DiagnosticsReport, DiagnosticsService
)
from skyfi_mcp.domain.models.errors import SkyFiAuthError, SkyFiConnectionError
from skyfi_mcp.infrastructure.skyfi.client import SkyFiClient

@pytest.fixture
def mock_client():
    client = MagicMock(spec=SkyFiClient)
    client.base_url = "https://api.skyfi.test/platform-api"
    client.ping = AsyncMock(return_value={"message": "pong"})
    client.health_check = AsyncMock(return_value={"status": "ok"})
    client.whoami = AsyncMock(return_value={"email": "analyst@example.com", "id": "u1"})
    return client

@pytest.mark.asyncio
async def test_all_checks_pass(mock_client: MagicMock):
    report = await DiagnosticsService(mock_client).run()

    assert report.ok is True
    assert report.base_url == "https://api.skyfi.test/platform-api"
    assert [check.name for check in report.checks] == ["ping", "health_check", "whoami"]
    assert [check.detail for check in report.checks] == [
        "message: pong", "status: ok", "email: analyst@example.com"
    ]
    assert all(check.latency_ms >= 0 for check in report.checks)

@pytest.mark.asyncio
async def test_failed_check_is_recorded_and_others_still_run(mock_client: MagicMock):
    mock_client.whoami.side_effect = SkyFiAuthError("Invalid API key")

    report = await DiagnosticsService(mock_client).run()

    assert report.ok is False
    failed = report.checks[2]
    assert failed.ok is False
    assert failed.error_kind == "auth"
    assert failed.detail == "Invalid API key"
    assert report.checks[0].ok and report.checks[1].ok

@pytest.mark.asyncio
async def test_connection_failure_on_every_check(mock_client: MagicMock):
    for call in (mock_client.ping, mock_client.health_check, mock_client.whoami):
        call.side_effect = SkyFiConnectionError("refused")

    report = await DiagnosticsService(mock_client).run()

    assert [check.error_kind for check in report.checks] == ["connection_failure"] * 3

@pytest.mark.asyncio
async def test_plain_text_and_empty_payloads(mock_client: MagicMock):
    mock_client.ping.return_value = "pong"
    mock_client.health_check.return_value = None

    report = await DiagnosticsService(mock_client).run()

    assert report.checks[0].detail == "pong"
    assert report.checks[1].detail == "empty response"

def test_empty_report_is_ok():
    assert DiagnosticsReport(base_url="x").ok is True
    assert DiagnosticsReport(base_url="x", checks=[CheckResult("ping", False, 1.0)]).ok is False

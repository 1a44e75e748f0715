"""Connectivity diagnostics for the SkyFi platform API.

Runs a fixed set of cheap calls (ping, health check, whoami) and records the
outcome of each. Failures are captured in the report rather than raised so a
single broken endpoint does not hide the state of the others.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from skyfi_mcp.domain.models.errors import SkyFiError
from skyfi_mcp.infrastructure.skyfi.client import SkyFiClient

logger = logging.getLogger(__name__)

@dataclass
class CheckResult:
    name: str
    ok: bool
    latency_ms: float
    detail: str = ""
    error_kind: Optional[str] = None

@dataclass
class DiagnosticsReport:
    base_url: str
    checks: List[CheckResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(check.ok for check in self.checks)

def _describe(payload: Any) -> str:
    if isinstance(payload, dict):
        for key in ("email", "username", "status", "message"):
            if payload.get(key):
                return f"{key}: {payload[key]}"
        return ", ".join(sorted(payload)) or "empty response"
    if payload is None:
        return "empty response"
    return str(payload)[:80]

class DiagnosticsService:
    """Checks that the configured API key and base URL actually work."""

    def __init__(self, client: SkyFiClient):
        self.client = client

    async def _run_check(self, name: str, call: Callable[[], Awaitable[Any]]) -> CheckResult:
        start_time = time.perf_counter()
        try:
            payload = await call()
        except SkyFiError as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.warning(f"Diagnostic check '{name}' failed ({e.kind.value}): {e}")
            return CheckResult(name=name, ok=False, latency_ms=latency_ms, detail=str(e), error_kind=e.kind.value)
        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(f"Diagnostic check '{name}' passed in {latency_ms:.2f}ms")
        return CheckResult(name=name, ok=True, latency_ms=latency_ms, detail=_describe(payload))

    async def run(self) -> DiagnosticsReport:
        """Runs every check sequentially and returns the report."""
        report = DiagnosticsReport(base_url=self.client.base_url)
        checks = (
            ("ping", self.client.ping),
            ("health_check", self.client.health_check),
            ("whoami", self.client.whoami),
        )
        for name, call in checks:
            report.checks.append(await self._run_check(name, call))
        logger.info(f"Diagnostics finished: {sum(c.ok for c in report.checks)}/{len(report.checks)} checks passed")
        return report

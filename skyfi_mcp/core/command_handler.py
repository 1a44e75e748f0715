"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py) and delegates the work
to the appropriate application services (DiagnosticsService,
OrderHistorySessionManager), rendering results through the UserInterface.
"""

import logging
from typing import Any, Dict, Optional

# Core Services Imports
from skyfi_mcp.core.services.diagnostics_service import DiagnosticsService
from skyfi_mcp.core.services.order_history_service import OrderHistorySessionManager

# Domain Layer Imports
from skyfi_mcp.domain.interfaces.user_interface import UserInterface
from skyfi_mcp.domain.models.errors import ErrorKind, SkyFiError, SkyFiRateLimitError

# Infrastructure Layer Imports
from skyfi_mcp.infrastructure.skyfi.client import SkyFiClient

logger = logging.getLogger(__name__)

CLI_CONVERSATION_ID = "cli"

def describe_error(error: SkyFiError) -> str:
    """Actionable text for a classified failure."""
    if isinstance(error, SkyFiRateLimitError):
        return f"{error} (please wait {error.retry_after_seconds} seconds before retrying)"
    if error.kind is ErrorKind.AUTH:
        return f"{error} (check that SKYFI_API_KEY is valid)"
    if error.kind is ErrorKind.CONNECTION_FAILURE:
        return f"{error} (check SKYFI_BASE_URL and your network connection)"
    return str(error)

class CommandHandler:
    """Handles incoming commands and delegates to appropriate services."""

    def __init__(
        self,
        client: SkyFiClient,
        diagnostics_service: DiagnosticsService,
        order_history: OrderHistorySessionManager,
        ui: UserInterface,
    ):
        """Initializes the CommandHandler with required services."""
        self.client = client
        self.diagnostics_service = diagnostics_service
        self.order_history = order_history
        self.ui = ui

    async def handle_diagnose(self) -> bool:
        """Handles the 'diagnose' command. Returns True when every check passed."""
        logger.info("Handling 'diagnose' command.")
        report = await self.diagnostics_service.run()
        self.ui.display_diagnostics(report)
        if not report.ok:
            self.ui.display_warning("One or more SkyFi API checks failed.")
        return report.ok

    async def handle_orders(
        self,
        request: Dict[str, Any],
        conversation_id: str = CLI_CONVERSATION_ID,
        pages: int = 1,
    ) -> Optional[Dict[str, Any]]:
        """Handles the 'orders' command.

        Fetches the requested page, then follows the session with `action: next`
        for up to `pages` pages in total, stopping early on the last page.
        Returns the last page shown, or None when a request failed.
        """
        logger.info(f"Handling 'orders' command with keys: {sorted(request)}, pages={pages}")
        try:
            response = await self.order_history.list_orders(conversation_id, request)
            self.ui.display_order_page(response)
            for _ in range(pages - 1):
                if not response["page"].get("hasMore"):
                    break
                follow_up: Dict[str, Any] = {"sessionId": response["sessionId"], "action": "next"}
                if request.get("includeHistory"):
                    follow_up["includeHistory"] = True
                response = await self.order_history.list_orders(conversation_id, follow_up)
                self.ui.display_order_page(response)
        except SkyFiError as e:
            logger.error(f"Orders command failed ({e.kind.value}): {e}")
            self.ui.display_error(describe_error(e))
            return None
        return dict(response)

    async def close(self) -> None:
        """Releases the HTTP session held by the client."""
        await self.client.aclose()

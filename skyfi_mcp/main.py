"""Main entry point for the skyfi-mcp command line.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import typer
import logging
import asyncio

from typing import Optional, Dict, Any, Coroutine
from typing_extensions import Annotated

logger = logging.getLogger(__name__)

# --- Core Layer ---
from skyfi_mcp.core.command_handler import CommandHandler
from skyfi_mcp.core.services.diagnostics_service import DiagnosticsService
from skyfi_mcp.core.services.order_history_service import OrderHistorySessionManager
from skyfi_mcp.core.services.session_analytics import SessionAnalyticsTracker

# --- Infrastructure Layer ---
# Config
from skyfi_mcp.infrastructure.config.settings import load_configuration, get_config, get_client_config, get_rate_limit_settings
# UI
from skyfi_mcp.infrastructure.cli.display import ConsoleDisplay
# Cache
from skyfi_mcp.infrastructure.cache.caching_service import ResponseCache
# Resilience
from skyfi_mcp.infrastructure.resilience.rate_limiter import RateLimiter
# SkyFi API
from skyfi_mcp.infrastructure.skyfi.client import SkyFiClient
# Sessions
from skyfi_mcp.infrastructure.session.memory_store import InMemorySessionStore
# Monitoring
from skyfi_mcp.infrastructure.monitoring.logger_setup import setup_logging

# --- Dependency Injection Container (Manual) ---

def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.
    """
    dependencies: Dict[str, Any] = {}
    dependencies['ui'] = ConsoleDisplay()
    try:
        # 1. Load Configuration First
        load_configuration()
        log_level_name = str(get_config('logging.level', 'WARNING')).upper()
        log_level = getattr(logging, log_level_name, logging.WARNING)
        log_file = get_config('logging.file')
        log_format = get_config('logging.format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        setup_logging(log_level=log_level, log_file=log_file, log_format=log_format)
        logger.info("Configuration and logging initialized.")

        # 2. Instantiate Infrastructure Adapters
        client_config = get_client_config()
        capacity, refill_per_second = get_rate_limit_settings()
        dependencies['rate_limiter'] = RateLimiter(capacity=capacity, refill_per_second=refill_per_second)
        dependencies['cache_service'] = ResponseCache()
        dependencies['client'] = SkyFiClient(
            api_key=client_config.api_key,
            base_url=client_config.base_url,
            timeout_ms=client_config.timeout_ms,
            retries=client_config.retries,
            rate_limiter=dependencies['rate_limiter'],
            cache=dependencies['cache_service'],
        )
        dependencies['session_store'] = InMemorySessionStore()
        dependencies['analytics'] = SessionAnalyticsTracker()

        # 3. Instantiate Core Services
        dependencies['diagnostics_service'] = DiagnosticsService(client=dependencies['client'])
        dependencies['order_history'] = OrderHistorySessionManager(
            order_source=dependencies['client'],
            store=dependencies['session_store'],
            analytics=dependencies['analytics'],
        )

        # 4. Instantiate Command Handler
        dependencies['command_handler'] = CommandHandler(
            client=dependencies['client'],
            diagnostics_service=dependencies['diagnostics_service'],
            order_history=dependencies['order_history'],
            ui=dependencies['ui'],
        )
        logger.info("All dependencies initialized successfully.")
        return dependencies

    except ValueError as e:
        logger.error(f"Fatal Error during application initialization: {e}")
        dependencies['ui'].display_error(f"Application Initialization Failed: {e}")
        raise typer.Exit(code=1)

# --- Typer App Definition ---
app = typer.Typer(
    name="skyfi-mcp",
    help="SkyFi platform API tools: connectivity diagnostics and order history browsing.",
    add_completion=False,
)

# --- Helper for Running Async Commands ---
def run_async(handler: CommandHandler, coro: Coroutine[Any, Any, Any]) -> Any:
    """Runs a handler coroutine to completion, then closes the HTTP session."""
    async def _run() -> Any:
        try:
            return await coro
        finally:
            await handler.close()

    try:
        return asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Command interrupted by user.")
        raise typer.Exit(code=130)

# --- CLI Commands ---

@app.command()
def diagnose():
    """Check connectivity and credentials against the SkyFi API."""
    handler: CommandHandler = create_dependencies()['command_handler']
    all_ok = run_async(handler, handler.handle_diagnose())
    if not all_ok:
        raise typer.Exit(code=1)

@app.command()
def orders(
    status: Annotated[Optional[str], typer.Option("--status", "-s", help="Order status filter, e.g. 'completed'.")] = None,
    limit: Annotated[Optional[int], typer.Option("--limit", "-l", min=1, help="Orders per page.")] = None,
    page: Annotated[Optional[int], typer.Option("--page", "-p", min=1, help="1-based page number.")] = None,
    offset: Annotated[Optional[int], typer.Option("--offset", min=0, help="Explicit offset (overrides --page).")] = None,
    pages: Annotated[int, typer.Option("--pages", min=1, help="Number of consecutive pages to fetch.")] = 1,
    history: Annotated[bool, typer.Option("--history", help="Include the session's filter history.")] = False,
):
    """Browse order history, one or more consecutive pages."""
    request: Dict[str, Any] = {
        "status": status,
        "limit": limit,
        "page": page,
        "offset": offset,
    }
    request = {k: v for k, v in request.items() if v is not None}
    if history:
        request["includeHistory"] = True

    handler: CommandHandler = create_dependencies()['command_handler']
    response = run_async(handler, handler.handle_orders(request, pages=pages))
    if response is None:
        raise typer.Exit(code=1)

# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    logger.info("Starting skyfi-mcp application...")
    app()  # Typer takes over

if __name__ == "__main__":
    cli_entry_point()

import logging
from typing import Any, Dict

from rich.console import Console
from rich.panel import Panel
from rich.box import ROUNDED, HEAVY, SIMPLE
from rich.text import Text
from rich.table import Table

from skyfi_mcp.domain.interfaces.user_interface import UserInterface

logger = logging.getLogger(__name__)

class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Console = None):
        """Initializes the rich Console."""
        self.console = console or Console()

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style.

        Args:
            error_message: The error message to display.
        """
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message.

        Args:
            info_message: The informational message to display.
        """
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message.

        Args:
            warning_message: The warning message to display.
        """
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_order_page(self, response: Dict[str, Any], **kwargs: Any) -> None:
        """Renders one order history page as a table followed by its summary."""
        page = response.get("page", {})
        orders = response.get("orders", [])
        logger.debug(f"Displaying order page {page.get('index')} with {len(orders)} orders")

        table = Table(
            title=f"Orders - page {page.get('index', 1)}",
            show_header=True,
            box=ROUNDED,
            border_style="cyan",
            padding=(0, 1),
        )
        table.add_column("#", style="cyan", justify="right")
        table.add_column("Order ID", style="bold")
        table.add_column("Status")
        table.add_column("Created", style="dim")
        table.add_column("Price", justify="right")

        start = page.get("offset", 0)
        for position, order in enumerate(orders, start + 1):
            price = order.get("price")
            price_text = f"{price} {order.get('currency', '')}".strip() if price is not None else "-"
            table.add_row(
                str(position),
                str(order.get("id", "")),
                str(order.get("status", "")),
                str(order.get("createdAt", "")),
                price_text,
            )

        self.console.print(table)
        footer = f"{response.get('summary', '')}\nSession: {response.get('sessionId', '')}"
        if page.get("hasMore"):
            footer += f"\nMore results from offset {page.get('nextOffset')}"
        self.console.print(Panel(Text(footer), border_style="cyan", box=SIMPLE))

        for entry in response.get("history") or []:
            self.console.print(f"[dim]{entry.get('timestamp')}[/dim] {entry.get('summary')}")

    def display_diagnostics(self, report: Any, **kwargs: Any) -> None:
        """Renders a DiagnosticsReport as a status table."""
        table = Table(title=f"SkyFi API diagnostics ({report.base_url})", show_header=True, box=ROUNDED, border_style="cyan")
        table.add_column("Check", style="bold")
        table.add_column("Status")
        table.add_column("Latency", justify="right", style="dim")
        table.add_column("Detail")

        for check in report.checks:
            status = "[bold green]OK[/bold green]" if check.ok else f"[bold red]FAIL[/bold red] ({check.error_kind})"
            table.add_row(check.name, status, f"{check.latency_ms:.0f} ms", check.detail)

        self.console.print(table)

"""Interface for interacting with the user (output only).

Defines the contract for displaying information, errors, warnings and the
structured results of SkyFi commands, allowing different UI implementations
(e.g., console, test doubles).
"""

import abc
from typing import Any, Dict

class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user.

        Args:
            error_message: The error message string.
            **kwargs: Additional arguments for formatting.
        """
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user.

        Args:
            warning_message: The warning message string.
            **kwargs: Additional arguments for formatting.
        """
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user.

        Args:
            info_message: The informational message string.
            **kwargs: Additional arguments for formatting.
        """
        pass

    @abc.abstractmethod
    def display_order_page(self, response: Dict[str, Any], **kwargs: Any) -> None:
        """Displays one page of an order history response.

        Args:
            response: The structured order history response.
            **kwargs: Additional display options.
        """
        pass

    @abc.abstractmethod
    def display_diagnostics(self, report: Any, **kwargs: Any) -> None:
        """Displays the result of the upstream connectivity checks.

        Args:
            report: A DiagnosticsReport.
            **kwargs: Additional display options.
        """
        pass

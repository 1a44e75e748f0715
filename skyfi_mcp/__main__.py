"""Main entry point when executing skyfi_mcp as a package.

This allows running the package using python -m skyfi_mcp.
"""

from skyfi_mcp.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()

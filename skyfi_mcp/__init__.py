"""SkyFi MCP integration core.

Resilient SkyFi platform API client and conversation-scoped order history
pagination for an LLM-facing tool server.
"""

__version__ = "1.0.0"

"""Session storage implementations for order history browsing."""

"""SkyFi platform API adapter.

HTTP client, response envelope decoding and geometry normalization.
Bounded Context: Upstream Integration
"""

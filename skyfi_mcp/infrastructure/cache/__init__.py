"""Caching Service Implementation.

Provides the in-memory response cache used by the SkyFi client, with
per-entry TTL and explicit invalidation by key or key prefix.
Bounded Context: Cache Management
"""

"""API Resilience Implementations.

Contains services for handling API rate limits and bounded retries with
exponential backoff.
Bounded Context: API Resilience
"""

"""Domain Event definitions.

Represents significant occurrences around upstream API calls (retries,
deferrals, cache invalidation) that other parts of the system might react to.
"""

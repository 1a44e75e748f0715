"""Per-conversation usage analytics.

Records which search criteria a conversation keeps coming back to
(locations, date ranges, satellites, cloud coverage and resolution limits)
and how often those searches return anything, plus a running count of the
orders the conversation has looked at.
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_PATTERNS = 50
PATTERN_EXPIRY_S = 30 * 24 * 60 * 60
MAX_PREFERRED_SATELLITES = 10
# Weight of the newest outcome in a pattern's success rate
SUCCESS_RATE_ALPHA = 0.3


@dataclass
class SearchPattern:
    """A criterion value seen in one or more searches."""
    type: str
    value: Any
    frequency: int = 1
    last_used: float = field(default_factory=time.time)
    success_rate: float = 0.0
    pattern_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.pattern_id,
            "type": self.type,
            "value": self.value,
            "frequency": self.frequency,
            "lastUsed": self.last_used,
            "successRate": self.success_rate,
        }


@dataclass
class SessionAnalytics:
    total_searches: int = 0
    total_orders: int = 0
    search_success_rate: float = 0.0
    # (satellite, count), most used first
    preferred_satellites: List[List[Any]] = field(default_factory=list)
    average_cloud_coverage: float = 0.0
    average_resolution: float = 0.0
    cloud_coverage_samples: int = 0
    resolution_samples: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSearches": self.total_searches,
            "totalOrders": self.total_orders,
            "searchSuccessRate": self.search_success_rate,
            "preferredSatellites": [{"satellite": s, "count": c} for s, c in self.preferred_satellites],
            "averageCloudCoverage": self.average_cloud_coverage,
            "averageResolution": self.average_resolution,
        }


@dataclass
class _ConversationHistory:
    patterns: List[SearchPattern] = field(default_factory=list)
    analytics: SessionAnalytics = field(default_factory=SessionAnalytics)
    last_updated: float = field(default_factory=time.time)


def _value_key(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class SessionAnalyticsTracker:
    """In-process analytics keyed by conversation id."""

    def __init__(self, max_patterns: int = MAX_PATTERNS, pattern_expiry_s: float = PATTERN_EXPIRY_S):
        self.max_patterns = max_patterns
        self.pattern_expiry_s = pattern_expiry_s
        self._histories: Dict[str, _ConversationHistory] = {}

    def __len__(self) -> int:
        return len(self._histories)

    def _history(self, conversation_id: str) -> _ConversationHistory:
        history = self._histories.get(conversation_id)
        if history is None:
            history = _ConversationHistory()
            self._histories[conversation_id] = history
        return history

    # --- Recording ---

    def track_search(self, conversation_id: str, criteria: Dict[str, Any], result_count: int) -> None:
        """Records one search and whether it found anything."""
        history = self._history(conversation_id)
        success = result_count > 0

        self._update_pattern(history, "location", criteria.get("location"), success)
        if criteria.get("startDate") or criteria.get("endDate"):
            date_range = {k: criteria[k] for k in ("startDate", "endDate") if criteria.get(k)}
            self._update_pattern(history, "date_range", date_range, success)
        self._update_pattern(history, "cloud_coverage", criteria.get("maxCloudCoverage"), success)
        self._update_pattern(history, "resolution", criteria.get("minResolution"), success)

        satellites = criteria.get("satellites")
        if not isinstance(satellites, list):
            satellites = [criteria["satellite"]] if criteria.get("satellite") else []
        for satellite in satellites:
            self._update_pattern(history, "satellite", satellite, success)

        analytics = history.analytics
        previous = analytics.total_searches
        analytics.total_searches += 1
        successes = analytics.search_success_rate * previous + (1 if success else 0)
        analytics.search_success_rate = successes / analytics.total_searches
        history.last_updated = time.time()
        logger.debug(
            f"Tracked search for conversation {conversation_id}: results={result_count}, "
            f"total_searches={analytics.total_searches}"
        )

    def track_order(self, conversation_id: str) -> None:
        """Counts one order seen by the conversation."""
        history = self._history(conversation_id)
        history.analytics.total_orders += 1
        history.last_updated = time.time()

    def _update_pattern(self, history: _ConversationHistory, kind: str, value: Any, success: bool) -> None:
        if value is None or value == "":
            return
        key = _value_key(value)
        now = time.time()
        existing = next((p for p in history.patterns if p.type == kind and _value_key(p.value) == key), None)
        if existing is not None:
            existing.frequency += 1
            existing.last_used = now
            existing.success_rate = (
                SUCCESS_RATE_ALPHA * (1.0 if success else 0.0) + (1 - SUCCESS_RATE_ALPHA) * existing.success_rate
            )
        else:
            history.patterns.append(
                SearchPattern(type=kind, value=value, last_used=now, success_rate=1.0 if success else 0.0)
            )
            if len(history.patterns) > self.max_patterns:
                history.patterns.sort(key=lambda p: p.frequency, reverse=True)
                del history.patterns[self.max_patterns:]
        self._update_analytics(history.analytics, kind, value)

    @staticmethod
    def _update_analytics(analytics: SessionAnalytics, kind: str, value: Any) -> None:
        if kind == "satellite":
            for entry in analytics.preferred_satellites:
                if entry[0] == value:
                    entry[1] += 1
                    break
            else:
                analytics.preferred_satellites.append([value, 1])
            analytics.preferred_satellites.sort(key=lambda entry: entry[1], reverse=True)
            del analytics.preferred_satellites[MAX_PREFERRED_SATELLITES:]
        elif kind == "cloud_coverage" and _is_number(value):
            analytics.cloud_coverage_samples += 1
            n = analytics.cloud_coverage_samples
            analytics.average_cloud_coverage += (value - analytics.average_cloud_coverage) / n
        elif kind == "resolution" and _is_number(value):
            analytics.resolution_samples += 1
            n = analytics.resolution_samples
            analytics.average_resolution += (value - analytics.average_resolution) / n

    # --- Queries ---

    def get_analytics(self, conversation_id: str) -> SessionAnalytics:
        """A copy of the conversation's counters; zeroed when it has none."""
        history = self._histories.get(conversation_id)
        if history is None:
            return SessionAnalytics()
        analytics = history.analytics
        return SessionAnalytics(
            total_searches=analytics.total_searches,
            total_orders=analytics.total_orders,
            search_success_rate=analytics.search_success_rate,
            preferred_satellites=[list(entry) for entry in analytics.preferred_satellites],
            average_cloud_coverage=analytics.average_cloud_coverage,
            average_resolution=analytics.average_resolution,
            cloud_coverage_samples=analytics.cloud_coverage_samples,
            resolution_samples=analytics.resolution_samples,
        )

    def get_recent_patterns(self, conversation_id: str, limit: int = 10, now: Optional[float] = None) -> List[SearchPattern]:
        """Unexpired patterns, most recently used first."""
        history = self._histories.get(conversation_id)
        if history is None:
            return []
        now = time.time() if now is None else now
        live = [p for p in history.patterns if now - p.last_used < self.pattern_expiry_s]
        live.sort(key=lambda p: p.last_used, reverse=True)
        return live[:limit]

    # --- Maintenance ---

    def cleanup(self, now: Optional[float] = None) -> int:
        """Drops expired patterns, then conversations left empty and idle.

        Returns:
            The number of conversations removed.
        """
        now = time.time() if now is None else now
        removed = 0
        for conversation_id, history in list(self._histories.items()):
            history.patterns = [p for p in history.patterns if now - p.last_used < self.pattern_expiry_s]
            if not history.patterns and now - history.last_updated > self.pattern_expiry_s:
                del self._histories[conversation_id]
                removed += 1
        if removed:
            logger.info(f"Removed analytics for {removed} idle conversation(s).")
        return removed

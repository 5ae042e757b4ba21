from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class FeedMetrics:
    """Accumulating refresh counters, cleared only by reset()"""
    last_refresh: Optional[datetime] = None
    total_refreshes: int = 0
    suppressed_updates: int = 0
    adaptive_delay: float = 0.0

    def record_refresh(self, at: datetime) -> None:
        self.total_refreshes += 1
        self.last_refresh = at

    def record_suppressed(self) -> None:
        self.suppressed_updates += 1

    def reset(self) -> None:
        self.last_refresh = None
        self.total_refreshes = 0
        self.suppressed_updates = 0
        self.adaptive_delay = 0.0

    def snapshot(self) -> Dict[str, Any]:
        return {
            "last_refresh": self.last_refresh.isoformat() if self.last_refresh else None,
            "total_refreshes": self.total_refreshes,
            "suppressed_updates": self.suppressed_updates,
            "adaptive_delay": self.adaptive_delay,
        }

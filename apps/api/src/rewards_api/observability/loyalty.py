from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    awards: Dict[str, int]
    points: Dict[str, int]
    quests: Dict[str, int]
    failures: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "awards": dict(self.awards),
            "points": dict(self.points),
            "quests": dict(self.quests),
            "failures": dict(self.failures),
        }


class LoyaltyObservabilityStore:
    """Collect award engine telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._awards: Dict[str, int] = defaultdict(int)
        self._points: Dict[str, int] = defaultdict(int)
        self._quests: Dict[str, int] = defaultdict(int)
        self._failures: Dict[str, int] = defaultdict(int)

    def record_earn(self, source_type: str, points: int) -> None:
        with self._lock:
            self._awards[f"earn:{source_type}"] += 1
            self._points["earned"] += points

    def record_redeem(self, points: int) -> None:
        with self._lock:
            self._awards["redeem"] += 1
            self._points["redeemed"] += points

    def record_quest_event(self, event: str) -> None:
        with self._lock:
            self._quests[event] += 1

    def record_failure(self, reason: str) -> None:
        with self._lock:
            self._failures[reason] += 1

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            return LoyaltySnapshot(
                awards=dict(self._awards),
                points=dict(self._points),
                quests=dict(self._quests),
                failures=dict(self._failures),
            )

    def reset(self) -> None:
        with self._lock:
            self._awards.clear()
            self._points.clear()
            self._quests.clear()
            self._failures.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class PointsSnapshot:
    checkins: Dict[str, int]
    redemptions: Dict[str, int]
    points: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "checkins": dict(self.checkins),
            "redemptions": dict(self.redemptions),
            "points": dict(self.points),
        }


class PointsObservabilityStore:
    """Collect check-in and redemption outcomes for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._checkins: Dict[str, int] = defaultdict(int)
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._points: Dict[str, int] = defaultdict(int)

    def record_checkin(self, reward_status: str, points_awarded: int) -> None:
        with self._lock:
            self._checkins["recorded"] += 1
            self._checkins[f"reward:{reward_status}"] += 1
            self._points["awarded"] += points_awarded

    def record_checkin_rejected(self, code: str) -> None:
        with self._lock:
            self._checkins[f"rejected:{code}"] += 1

    def record_redemption(self, points_spent: int) -> None:
        with self._lock:
            self._redemptions["issued"] += 1
            self._points["spent"] += points_spent

    def record_redemption_rejected(self, code: str) -> None:
        with self._lock:
            self._redemptions[f"rejected:{code}"] += 1

    def record_code_collision(self) -> None:
        with self._lock:
            self._redemptions["code_collisions"] += 1

    def snapshot(self) -> PointsSnapshot:
        with self._lock:
            return PointsSnapshot(
                checkins=dict(self._checkins),
                redemptions=dict(self._redemptions),
                points=dict(self._points),
            )

    def reset(self) -> None:
        with self._lock:
            self._checkins.clear()
            self._redemptions.clear()
            self._points.clear()


_STORE = PointsObservabilityStore()


def get_points_store() -> PointsObservabilityStore:
    return _STORE


__all__ = ["get_points_store", "PointsObservabilityStore", "PointsSnapshot"]

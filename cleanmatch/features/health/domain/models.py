"""
Domain models for professional health scoring.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

AUTO_BADGES = ("top_rated", "fast_responder", "reliable")


@dataclass(slots=True)
class HealthMetrics:
    no_show_rate: float = 0.0
    cancel_rate: float = 0.0
    avg_response_mins: float = 0.0
    in_app_ratio: float = 1.0
    rating_avg: float = 0.0
    rating_count: int = 0


@dataclass(slots=True)
class HealthResult:
    score: int
    metrics: HealthMetrics
    badges: list[str] = field(default_factory=list)

    def to_record(self, updated_at: datetime) -> dict[str, Any]:
        """Shape persisted in ``pro_profiles.health``."""
        return {"score": self.score, **asdict(self.metrics), "updated_at": updated_at.isoformat()}


@dataclass(frozen=True, slots=True)
class ChatMessage:
    sender_id: str
    sent_at: datetime


@dataclass(slots=True)
class ProHealthProfile:
    """Mutable admin-facing view of a professional's trust fields."""

    pro_id: str
    badges: list[str]
    health: dict[str, Any] | None
    soft_banned: bool = False
    hard_banned: bool = False
    flag_notes: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ProHealthProfile":
        return cls(
            pro_id=str(row["id"]),
            badges=list(row.get("badges") or []),
            health=row.get("health"),
            soft_banned=bool(row.get("soft_banned")),
            hard_banned=bool(row.get("hard_banned")),
            flag_notes=row.get("flag_notes"),
        )

    def flags(self) -> dict[str, Any]:
        return {
            "soft_banned": self.soft_banned,
            "hard_banned": self.hard_banned,
            "notes": self.flag_notes,
        }


@dataclass(slots=True)
class NightlyRunResult:
    processed: int
    failed: int

"""
Domain models for lead matching.

Rows from ``jobs``, ``pro_profiles`` and ``leads`` are parsed into these
records at the repository boundary. Missing optional profile fields take
fixed defaults; a profile without coordinates cannot be matched and is a
decode error.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from cleanmatch.errors import RecordDecodeError

DEFAULT_RADIUS_KM = 25.0
DEFAULT_HOURLY_RATE = 25.0

JOB_OPEN = "open"
JOB_ASSIGNED = "assigned"
JOB_COMPLETED = "completed"
JOB_CANCELLED = "cancelled"

LEAD_PENDING = "pending"
LEAD_ACCEPTED = "accepted"
LEAD_DECLINED = "declined"


@dataclass(frozen=True, slots=True)
class GeoPoint:
    lat: float
    lng: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lng)


@dataclass(slots=True)
class Job:
    id: str
    customer_id: str
    services: list[str]
    location: GeoPoint
    duration_hours: float
    budget: float
    title: str = ""
    address: str | None = None
    preferred_at: datetime | None = None
    status: str = JOB_OPEN
    pro_id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Job":
        if row.get("lat") is None or row.get("lng") is None:
            raise RecordDecodeError("Job has no coordinates", "job", row.get("id"))
        return cls(
            id=str(row["id"]),
            customer_id=str(row["customer_id"]),
            services=list(row.get("services") or []),
            location=GeoPoint(float(row["lat"]), float(row["lng"])),
            duration_hours=float(row.get("duration_hours") or 0),
            budget=float(row.get("budget") or 0),
            title=row.get("title") or "",
            address=row.get("address"),
            preferred_at=row.get("preferred_at"),
            status=row.get("status") or JOB_OPEN,
            pro_id=str(row["pro_id"]) if row.get("pro_id") else None,
        )


@dataclass(frozen=True, slots=True)
class BanFlags:
    soft_banned: bool = False
    hard_banned: bool = False
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class HealthSnapshot:
    """Last persisted health record of a professional."""

    score: int
    no_show_rate: float = 0.0
    cancel_rate: float = 0.0
    avg_response_mins: float = 0.0
    in_app_ratio: float = 1.0
    rating_avg: float = 0.0
    rating_count: int = 0

    @classmethod
    def from_json(cls, data: dict[str, Any] | None) -> "HealthSnapshot | None":
        if not data or data.get("score") is None:
            return None
        return cls(
            score=int(data["score"]),
            no_show_rate=float(data.get("no_show_rate", 0.0)),
            cancel_rate=float(data.get("cancel_rate", 0.0)),
            avg_response_mins=float(data.get("avg_response_mins", 0.0)),
            in_app_ratio=float(data.get("in_app_ratio", 1.0)),
            rating_avg=float(data.get("rating_avg", 0.0)),
            rating_count=int(data.get("rating_count", 0)),
        )


@dataclass(slots=True)
class ProCandidate:
    """Read-only snapshot of a professional considered for a lead."""

    pro_id: str
    location: GeoPoint
    radius_km: float = DEFAULT_RADIUS_KM
    services: list[str] = field(default_factory=list)
    hourly_rate: float = DEFAULT_HOURLY_RATE
    rating: float = 0.0
    response_rate: float = 0.0
    profile_completeness: float = 0.0
    health: HealthSnapshot | None = None
    flags: BanFlags = field(default_factory=BanFlags)
    badges: list[str] = field(default_factory=list)
    distance_km: float | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ProCandidate":
        pro_id = str(row.get("id"))
        lat, lng = row.get("lat"), row.get("lng")
        if lat is None or lng is None:
            raise RecordDecodeError("Professional has no location", "pro_profile", pro_id)

        try:
            radius = float(row.get("radius_km") or 0)
        except (TypeError, ValueError):
            radius = 0.0

        return cls(
            pro_id=pro_id,
            location=GeoPoint(float(lat), float(lng)),
            radius_km=radius if radius > 0 else DEFAULT_RADIUS_KM,
            services=list(row.get("services") or []),
            hourly_rate=float(row.get("hourly_rate") or DEFAULT_HOURLY_RATE),
            rating=float(row.get("rating") or 0),
            response_rate=float(row.get("response_rate") or 0),
            profile_completeness=float(row.get("profile_completeness") or 0),
            health=HealthSnapshot.from_json(row.get("health")),
            flags=BanFlags(
                soft_banned=bool(row.get("soft_banned")),
                hard_banned=bool(row.get("hard_banned")),
                notes=row.get("flag_notes"),
            ),
            badges=list(row.get("badges") or []),
        )


@dataclass(slots=True)
class ScoredLead:
    candidate: ProCandidate
    score: int
    distance_km: float
    eta_minutes: int
    price_match: float
    reasons: list[str]


@dataclass(slots=True)
class Lead:
    id: str
    job_id: str
    pro_id: str
    customer_id: str
    status: str
    score: int
    distance_km: float
    eta_minutes: int
    reasons: list[str]
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Lead":
        return cls(
            id=str(row["id"]),
            job_id=str(row["job_id"]),
            pro_id=str(row["pro_id"]),
            customer_id=str(row["customer_id"]),
            status=row["status"],
            score=int(row.get("score") or 0),
            distance_km=float(row.get("distance_km") or 0),
            eta_minutes=int(row.get("eta_minutes") or 0),
            reasons=list(row.get("reasons") or []),
            created_at=row["created_at"],
            expires_at=row["expires_at"],
        )


@dataclass(slots=True)
class LeadBatchResult:
    job_id: str
    candidates: int
    leads_created: int
    leads_failed: int

"""
Domain models for the dispute lifecycle.

Status machine:
    open -> under_review -> resolved_refund_full | resolved_refund_partial
                          | resolved_no_refund | cancelled | expired
Any active status may be resolved or expire directly. Terminal disputes
accept neither evidence nor a second resolution.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from cleanmatch.errors import FailedPreconditionError, InvalidArgumentError

STATUS_OPEN = "open"
STATUS_AWAITING_PRO = "awaiting_pro"
STATUS_UNDER_REVIEW = "under_review"
STATUS_RESOLVED_REFUND_FULL = "resolved_refund_full"
STATUS_RESOLVED_REFUND_PARTIAL = "resolved_refund_partial"
STATUS_RESOLVED_NO_REFUND = "resolved_no_refund"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"

ACTIVE_STATUSES = frozenset({STATUS_OPEN, STATUS_AWAITING_PRO, STATUS_UNDER_REVIEW})

DISPUTABLE_PAYMENT_STATUSES = frozenset({"captured", "released", "partially_refunded"})
PAYMENT_REFUNDED = "refunded"
PAYMENT_PARTIALLY_REFUNDED = "partially_refunded"

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp"})
AUDIO_EXTENSIONS = frozenset({"mp3", "wav", "m4a", "aac", "ogg"})


def evidence_type(path: str) -> str:
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    if extension in IMAGE_EXTENSIONS:
        return "image"
    if extension in AUDIO_EXTENSIONS:
        return "audio"
    return "text"


def _iso(value: datetime | str) -> str:
    return value.isoformat() if isinstance(value, datetime) else value


@dataclass(slots=True)
class EvidenceItem:
    type: str
    created_at: datetime | str
    text: str | None = None
    path: str | None = None

    @classmethod
    def from_path(cls, path: str, created_at: datetime) -> "EvidenceItem":
        return cls(type=evidence_type(path), path=path, created_at=created_at)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "EvidenceItem":
        return cls(
            type=data.get("type", "text"),
            created_at=data.get("created_at"),
            text=data.get("text"),
            path=data.get("path"),
        )

    def to_json(self) -> dict[str, Any]:
        item: dict[str, Any] = {"type": self.type, "created_at": _iso(self.created_at)}
        if self.text is not None:
            item["text"] = self.text
        if self.path is not None:
            item["path"] = self.path
        return item


@dataclass(slots=True)
class AuditEntry:
    by: str  # customer | pro | admin | system
    action: str
    note: str
    at: datetime | str

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "AuditEntry":
        return cls(by=data["by"], action=data["action"], note=data.get("note", ""), at=data["at"])

    def to_json(self) -> dict[str, Any]:
        return {"by": self.by, "action": self.action, "note": self.note, "at": _iso(self.at)}


@dataclass(slots=True)
class Dispute:
    id: str
    job_id: str
    payment_id: str
    customer_id: str
    pro_id: str | None
    status: str
    reason: str
    description: str
    requested_amount: float
    opened_at: datetime
    deadline_pro_response: datetime
    deadline_decision: datetime
    awarded_amount: float | None = None
    resolved_at: datetime | None = None
    evidence: list[EvidenceItem] = field(default_factory=list)
    pro_response: list[EvidenceItem] = field(default_factory=list)
    audit: list[AuditEntry] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Dispute":
        awarded = row.get("awarded_amount")
        return cls(
            id=str(row["id"]),
            job_id=str(row["job_id"]),
            payment_id=str(row["payment_id"]),
            customer_id=str(row["customer_id"]),
            pro_id=str(row["pro_id"]) if row.get("pro_id") else None,
            status=row["status"],
            reason=row["reason"],
            description=row.get("description") or "",
            requested_amount=float(row["requested_amount"]),
            opened_at=row["opened_at"],
            deadline_pro_response=row["deadline_pro_response"],
            deadline_decision=row["deadline_decision"],
            awarded_amount=float(awarded) if awarded is not None else None,
            resolved_at=row.get("resolved_at"),
            evidence=[EvidenceItem.from_json(item) for item in row.get("evidence") or []],
            pro_response=[EvidenceItem.from_json(item) for item in row.get("pro_response") or []],
            audit=[AuditEntry.from_json(item) for item in row.get("audit") or []],
        )


@dataclass(slots=True)
class Payment:
    id: str
    job_id: str
    customer_id: str
    pro_id: str | None
    status: str
    amount_gross: float
    refunded_amount: float = 0.0
    captured_at: datetime | None = None
    payment_intent_ref: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Payment":
        return cls(
            id=str(row["id"]),
            job_id=str(row["job_id"]),
            customer_id=str(row["customer_id"]),
            pro_id=str(row["pro_id"]) if row.get("pro_id") else None,
            status=row["status"],
            amount_gross=float(row["amount_gross"]),
            refunded_amount=float(row.get("refunded_amount") or 0),
            captured_at=row.get("captured_at"),
            payment_intent_ref=row.get("payment_intent_ref"),
        )


@dataclass(frozen=True, slots=True)
class ResolutionPlan:
    final_status: str
    awarded_amount: float
    refund_amount: float


def refundable_amount(payment: Payment) -> float:
    return round(max(payment.amount_gross - payment.refunded_amount, 0.0), 2)


def build_resolution_plan(decision: str, amount: float | None, payment: Payment) -> ResolutionPlan:
    """
    Refunds are capped by what is still refundable on the payment, so earlier
    refunds against the same payment are never paid out twice.
    """
    if decision in ("refund_full", "refund_partial") and refundable_amount(payment) <= 0:
        raise FailedPreconditionError("Payment has already been fully refunded")

    if decision == "refund_full":
        remaining = refundable_amount(payment)
        return ResolutionPlan(STATUS_RESOLVED_REFUND_FULL, remaining, remaining)
    if decision == "refund_partial":
        if amount is None or amount <= 0:
            raise InvalidArgumentError("Partial refund requires valid amount")
        if amount > payment.amount_gross:
            raise InvalidArgumentError("Refund amount exceeds payment amount")
        if amount > refundable_amount(payment):
            raise InvalidArgumentError("Refund amount exceeds refundable amount")
        return ResolutionPlan(STATUS_RESOLVED_REFUND_PARTIAL, amount, amount)
    if decision == "no_refund":
        return ResolutionPlan(STATUS_RESOLVED_NO_REFUND, 0.0, 0.0)
    if decision == "cancelled":
        return ResolutionPlan(STATUS_CANCELLED, 0.0, 0.0)
    raise InvalidArgumentError("Invalid decision")


def payment_status_after_refund(refunded_total: float, amount_gross: float) -> str:
    """Payment status once ``refunded_total`` (all refunds so far) has been returned."""
    return PAYMENT_REFUNDED if refunded_total >= amount_gross else PAYMENT_PARTIALLY_REFUNDED


@dataclass(slots=True)
class SweepResult:
    moved_to_review: int
    expired: int

    @property
    def updated(self) -> int:
        return self.moved_to_review + self.expired

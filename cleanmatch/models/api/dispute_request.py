# cleanmatch/models/api/dispute_request.py
"""
Dispute request models.
Validated before any dispute operation touches the store.
"""

from typing import Literal

from pydantic import BaseModel, Field

DisputeReason = Literal["no_show", "poor_quality", "damage", "overcharge", "other"]
DisputeDecision = Literal["refund_full", "refund_partial", "no_refund", "cancelled"]
EvidenceRole = Literal["customer", "pro"]


class OpenDisputeRequest(BaseModel):
    """Customer request to open a dispute against a captured payment."""

    job_id: str = Field(..., min_length=1, description="Disputed job")
    payment_id: str = Field(..., min_length=1, description="Captured payment for the job")
    reason: DisputeReason = Field(..., description="Reason code")
    description: str = Field(..., min_length=1, max_length=5000, description="Customer account")
    requested_amount: float = Field(..., gt=0, description="Amount the customer asks back")
    media_paths: list[str] = Field(default_factory=list, description="Uploaded evidence paths")


class AddEvidenceRequest(BaseModel):
    case_id: str = Field(..., min_length=1)
    role: EvidenceRole
    text: str | None = Field(default=None, max_length=5000)
    media_paths: list[str] = Field(default_factory=list)


class ResolveDisputeRequest(BaseModel):
    """Admin decision on a pending dispute."""

    case_id: str = Field(..., min_length=1)
    decision: DisputeDecision
    amount: float | None = Field(default=None, description="Refund amount for refund_partial")

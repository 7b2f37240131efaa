# cleanmatch/models/api/health_request.py
"""
Admin request models for professional health and flags.
"""

from pydantic import BaseModel, Field


class SetFlagsRequest(BaseModel):
    pro_id: str = Field(..., min_length=1)
    soft_banned: bool | None = Field(default=None, description="Leave unchanged when omitted")
    hard_banned: bool | None = Field(default=None, description="Leave unchanged when omitted")
    notes: str | None = Field(default=None, max_length=1000)


class BadgeRequest(BaseModel):
    pro_id: str = Field(..., min_length=1)
    badge: str = Field(..., min_length=1, max_length=64)


class RecalculateHealthRequest(BaseModel):
    pro_id: str = Field(..., min_length=1)

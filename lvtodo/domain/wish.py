"""Wish domain models and enums."""

from enum import StrEnum

from pydantic import BaseModel, Field


class WishStatus(StrEnum):
    """Wish lifecycle state."""

    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CostVote(BaseModel):
    user_id: str
    suggested_cost: int = Field(..., gt=0)


class Wish(BaseModel):
    """Wish data transfer object."""

    id: str = Field(..., description="Unique wish ID")
    title: str = Field(..., description="What the creator wants")
    description: str = Field(default="")
    cost: int = Field(default=0, ge=0, description="0 until activated, then the agreed price in points")
    created_by: str = Field(..., description="Creator user ID")
    group_id: str = Field(..., description="Owning group ID")
    status: WishStatus = Field(default=WishStatus.PENDING_APPROVAL)
    approved_by: list[str] = Field(default_factory=list, description="Distinct approvers, creator excluded")
    cost_votes: list[CostVote] = Field(default_factory=list, description="One vote per approver, in order")
    version: int = Field(default=0, description="Incremented by every status change and vote")
    created_at: str = Field(..., description="Creation timestamp (UTC ISO)")
    approved_at: str | None = None
    completed_at: str | None = None
    cancelled_at: str | None = None

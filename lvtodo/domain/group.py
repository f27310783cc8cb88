"""Group domain models."""

from pydantic import BaseModel, Field


class GroupSettings(BaseModel):
    """Per-group switches controlled by the creator."""

    allow_wishes: bool = Field(default=True, description="Members may propose wishes")
    require_task_confirmation: bool = Field(
        default=True, description="Completed tasks wait for the assigner's confirmation"
    )


class Group(BaseModel):
    """Group data transfer object."""

    id: str = Field(..., description="Unique group ID")
    name: str = Field(..., description="Group name")
    description: str = Field(default="", description="Free-form description")
    invite_code: str = Field(..., description="6-character uppercase alphanumeric join code")
    member_ids: list[str] = Field(default_factory=list, description="Members, always including the creator")
    created_by: str = Field(..., description="Creator user ID (immutable)")
    settings: GroupSettings = Field(default_factory=GroupSettings)
    created_at: str = Field(default="", description="Creation timestamp (UTC ISO)")

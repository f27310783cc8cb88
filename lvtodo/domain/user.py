"""User domain model."""

from pydantic import BaseModel, Field

from lvtodo.services import reward_calculator


class User(BaseModel):
    """User data transfer object."""

    id: str = Field(..., description="Unique user ID")
    display_name: str = Field(..., description="Name shown to other group members")
    email: str = Field(default="", description="Contact address used for email notifications")
    points: int = Field(default=0, ge=0, description="Spendable balance")
    xp: int = Field(default=0, ge=0, description="Experience, never decreases")
    group_ids: list[str] = Field(default_factory=list, description="Groups the user belongs to")
    achievement_ids: list[str] = Field(default_factory=list, description="Unlocked achievements")
    created_at: str = Field(default="", description="Creation timestamp (UTC ISO)")

    @property
    def level(self) -> int:
        return reward_calculator.level(self.xp)

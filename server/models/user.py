"""User profile value held by the user cache."""

from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class UserProfile(BaseModel):
    """Immutable student profile.

    Cached instances are shared between requests, so the model is frozen.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_id: str = Field(alias="UserID")
    full_name: str = Field(alias="FullName")
    class_name: Optional[str] = Field(default=None, alias="Class")
    department_name: Optional[str] = Field(default=None, alias="DepartmentName")
    email: Optional[str] = Field(default=None, alias="Email")
    group_name: Optional[str] = Field(default=None, alias="GroupName")

    @classmethod
    def from_upstream(cls, data: Dict[str, Any]) -> "UserProfile":
        """Build from the university user-info payload (PascalCase keys)."""
        return cls.model_validate(data)

    def to_public(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=False)

"""
User data models for Users Service.
"""

from typing import Any, Dict
from dataclasses import dataclass, asdict

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class User:
    """User record as held by the durable store."""
    user_id: str
    name: str
    email: str

    def to_dict(self) -> Dict[str, Any]:
        """Cache/wire projection; the id travels as ``id``."""
        data = asdict(self)
        data["id"] = data.pop("user_id")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(user_id=data["id"], name=data["name"], email=data["email"])


class CreateUserRequest(BaseModel):
    """Request model for CreateUser."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, description="Display name")
    email: str = Field(..., min_length=1, description="Email address")


class UserResponse(BaseModel):
    """Response model for user operations."""
    id: str = Field(..., description="Store-assigned user ID")
    name: str
    email: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(id=user.user_id, name=user.name, email=user.email)

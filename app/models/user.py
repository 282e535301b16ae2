from datetime import datetime
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class User(Document):
    """Account record. Registration and login live outside this service."""
    email: Indexed(str, unique=True)
    name: str = ""
    role: Literal["user", "admin"] = "user"
    plan_id: PydanticObjectId | None = None
    plan_expiry: datetime | None = None
    total_captchas_solved: int = 0
    total_earnings: int = 0
    is_blocked: bool = False
    token_version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"

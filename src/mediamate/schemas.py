from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class HealthResponse(BaseModel):
    status: str
    detail: str | None = None
    services: dict[str, bool] | None = None
    sessions: int | None = None


class MessageRequest(BaseModel):
    user_id: str = Field(min_length=1)
    message: str

    @field_validator("user_id")
    @classmethod
    def normalize_user_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("user_id must not be empty")
        return value


class MessageResponse(BaseModel):
    user_id: str
    reply: str


class ResetResponse(BaseModel):
    user_id: str
    reset: bool

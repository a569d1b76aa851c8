"""Pydantic models for the actor-identity domain."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class Role(str, Enum):
    """The four kinds of actor that touch a service request."""

    CUSTOMER = "CUSTOMER"
    MECHANIC = "MECHANIC"
    GARAGE_ADMIN = "GARAGE_ADMIN"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"


class Actor(BaseModel):
    """An authenticated identity with a role."""

    id: UUID
    role: Role

    model_config = {"frozen": True}

    @property
    def is_system_admin(self) -> bool:
        return self.role == Role.SYSTEM_ADMIN


class Session(BaseModel):
    """An active session bound to one actor."""

    token: str = Field(..., description="Session token (opaque string)")
    user_id: UUID
    role: Role
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime

    @property
    def actor(self) -> Actor:
        """The actor this session authenticates."""
        return Actor(id=self.user_id, role=self.role)

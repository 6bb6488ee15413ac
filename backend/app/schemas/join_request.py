"""
Pydantic schemas for join request validation and responses.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.config import MAX_HOLD_TTL_MIN, MIN_HOLD_TTL_MIN
from app.models.join_request import NOTE_MAX_LENGTH, JoinRequestStatus


class JoinRequestCreate(BaseModel):
    party_size: int = Field(..., ge=1)
    note: Optional[str] = Field(None, max_length=NOTE_MAX_LENGTH)

    model_config = ConfigDict(extra="forbid")


class JoinRequestResponse(BaseModel):
    id: int
    event_id: int
    user_id: int
    party_size: int = Field(..., ge=1)
    note: Optional[str] = None
    status: JoinRequestStatus
    hold_expires_at: Optional[datetime] = None
    waitlist_pos: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _field_presence_matches_status(self):
        if (self.status == JoinRequestStatus.PENDING) != (self.hold_expires_at is not None):
            raise ValueError("hold_expires_at must be set if and only if status is pending")
        if (self.status == JoinRequestStatus.WAITLISTED) != (self.waitlist_pos is not None):
            raise ValueError("waitlist_pos must be set if and only if status is waitlisted")
        return self


class PaginatedJoinRequests(BaseModel):
    data: list[JoinRequestResponse]
    nextOffset: Optional[int]
    totalCount: int


class ListRequestsQuery(BaseModel):
    limit: int = Field(25, ge=1, le=100)
    offset: int = Field(0, ge=0)
    status: Optional[JoinRequestStatus] = None


class AvailabilityResponse(BaseModel):
    total: int = Field(..., ge=0)
    confirmed: int = Field(..., ge=0)
    held: int = Field(..., ge=0)
    available: int = Field(..., ge=0)

    model_config = ConfigDict(from_attributes=True)


class ExtendHoldRequest(BaseModel):
    extension_minutes: int = Field(..., ge=MIN_HOLD_TTL_MIN, le=MAX_HOLD_TTL_MIN)


class ReorderWaitlistRequest(BaseModel):
    waitlist_pos: int = Field(..., ge=1)


class PromoteResponse(BaseModel):
    moved: int

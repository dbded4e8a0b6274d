"""
Pydantic schemas for passcode issuance and lookup.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class PasscodeIssueRequest(BaseModel):
    """Schema for minting a passcode for a user."""
    user_id: int = Field(..., description="Owner of the passcode")
    type: Literal["employee", "visitor"] = Field(..., description="Passcode type")
    usage_limit: Optional[int] = Field(None, ge=1, description="Number of allowed validations")
    valid_for_minutes: Optional[int] = Field(None, ge=1, description="Validity window from now, in minutes")
    application_id: Optional[int] = Field(None, description="Approved visitor application backing this passcode")
    permissions: List[str] = Field(default_factory=list, description="Extra permission scopes")


class PasscodeRefreshRequest(BaseModel):
    user_id: int


class PasscodeBatchIssueRequest(BaseModel):
    user_ids: List[int] = Field(..., min_length=1, max_length=500)
    type: Literal["employee", "visitor"]
    usage_limit: Optional[int] = Field(None, ge=1)
    valid_for_minutes: Optional[int] = Field(None, ge=1)


class PasscodeResponse(BaseModel):
    """Schema for passcode response."""
    id: int
    user_id: int
    code: str
    type: str
    status: str
    valid_from: datetime
    valid_until: datetime
    usage_limit: int
    usage_count: int
    remaining_uses: int
    application_id: Optional[int] = None
    permissions: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PasscodeUserView(BaseModel):
    id: int
    name: Optional[str] = None
    user_type: str
    status: str

    class Config:
        from_attributes = True


class PasscodeInfoResponse(BaseModel):
    passcode: PasscodeResponse
    user: Optional[PasscodeUserView] = None

    class Config:
        from_attributes = True


class PasscodeCredentialsResponse(BaseModel):
    """QR payload and current rolling code for a passcode."""
    passcode: PasscodeResponse
    qr_payload: str
    rolling_code: str
    rolling_valid_until: datetime

    class Config:
        from_attributes = True


class PasscodeStatsResponse(BaseModel):
    total: int
    active: int
    expired: int
    revoked: int


class ExpireOverdueResponse(BaseModel):
    expired: int

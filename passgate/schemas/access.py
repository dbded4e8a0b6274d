"""
Pydantic schemas for access validation, the audit trail and device status.

Validation responses always carry HTTP 200: a denied passcode is a normal
outcome described by ``valid`` and ``reason``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Direction = Literal["in", "out"]


class DeviceContextIn(BaseModel):
    device_id: str = Field(..., min_length=1, max_length=64)
    direction: Direction = "in"
    device_type: Optional[str] = Field(None, max_length=32)
    project_id: Optional[int] = None
    venue_id: Optional[int] = None
    floor_id: Optional[int] = None


class ValidateCodeRequest(DeviceContextIn):
    code: str = Field(..., min_length=1, max_length=128)


class ValidateQRRequest(DeviceContextIn):
    qr_payload: str = Field(..., min_length=1, max_length=2048)


class ValidateRollingRequest(DeviceContextIn):
    rolling_code: str = Field(..., min_length=1, max_length=16)
    base_code: str = Field(..., min_length=1, max_length=128)


class ValidationResultResponse(BaseModel):
    valid: bool
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    user_type: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)
    reason: Optional[str] = None
    timestamp: datetime


class AccessRecordResponse(BaseModel):
    id: int
    user_id: Optional[int] = None
    passcode_id: Optional[int] = None
    device_id: str
    device_type: Optional[str] = None
    direction: str
    result: str
    fail_reason: Optional[str] = None
    project_id: Optional[int] = None
    venue_id: Optional[int] = None
    floor_id: Optional[int] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class AccessRecordPage(BaseModel):
    items: List[AccessRecordResponse]
    total: int
    page: int
    page_size: int
    total_pages: int

    class Config:
        from_attributes = True


class AccessStatsResponse(BaseModel):
    total: int
    success: int
    failed: int
    success_rate: float
    start: datetime
    end: datetime
    by_device: Dict[str, int] = Field(default_factory=dict)
    recent_activity: List[AccessRecordResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class DeviceStatusResponse(BaseModel):
    device_id: str
    is_online: bool
    status: str
    last_activity: Optional[datetime] = None
    today_count: int
    current_hour_count: int

    class Config:
        from_attributes = True

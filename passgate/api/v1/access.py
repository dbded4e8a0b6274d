"""
Access validation, audit trail and device status endpoints.

Validation endpoints always answer 200: a denied passcode is reported in
the body. Store outages surface as 503 through the app-level handler.
"""

from __future__ import annotations

import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Response

from ...core.pagination import clamp_page_size, set_pagination_headers
from ...schemas.access import (
    AccessRecordPage,
    AccessStatsResponse,
    DeviceContextIn,
    DeviceStatusResponse,
    ValidateCodeRequest,
    ValidateQRRequest,
    ValidateRollingRequest,
    ValidationResultResponse,
)
from ...services.access_control import AccessControl, get_access_control
from ...services.access_recorder import AccessQuery
from ...services.validation import DeviceContext, ValidationResult


router = APIRouter(prefix="/api/v1/access", tags=["access"])


def _context(req: DeviceContextIn, now: datetime.datetime) -> DeviceContext:
    return DeviceContext(
        device_id=req.device_id,
        direction=req.direction,
        device_type=req.device_type,
        project_id=req.project_id,
        venue_id=req.venue_id,
        floor_id=req.floor_id,
        now=now,
    )


def _to_response(result: ValidationResult, now: datetime.datetime) -> ValidationResultResponse:
    return ValidationResultResponse(
        valid=result.valid,
        user_id=result.user_id,
        user_name=result.user_name,
        user_type=result.user_type,
        permissions=list(result.permissions),
        reason=result.reason.value if result.reason else None,
        timestamp=now,
    )


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@router.post("/validate", response_model=ValidationResultResponse)
def validate_code(req: ValidateCodeRequest, control: AccessControl = Depends(get_access_control)) -> ValidationResultResponse:
    now = _now()
    return _to_response(control.validate(req.code, _context(req, now)), now)


@router.post("/validate-qr", response_model=ValidationResultResponse)
def validate_qr(req: ValidateQRRequest, control: AccessControl = Depends(get_access_control)) -> ValidationResultResponse:
    now = _now()
    return _to_response(control.validate_qr(req.qr_payload, _context(req, now)), now)


@router.post("/validate-rolling", response_model=ValidationResultResponse)
def validate_rolling(req: ValidateRollingRequest, control: AccessControl = Depends(get_access_control)) -> ValidationResultResponse:
    now = _now()
    result = control.validate_rolling(req.rolling_code, req.base_code, _context(req, now))
    return _to_response(result, now)


@router.get("/records", response_model=AccessRecordPage)
def list_access_records(
    response: Response,
    user_id: Optional[int] = Query(None),
    device_id: Optional[str] = Query(None),
    result: Optional[Literal["success", "failed"]] = Query(None),
    date_from: Optional[datetime.datetime] = Query(None),
    date_to: Optional[datetime.datetime] = Query(None),
    sort_by: str = Query("timestamp"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1),
    control: AccessControl = Depends(get_access_control),
) -> AccessRecordPage:
    page_size = clamp_page_size(page_size)
    records = control.list_access(
        AccessQuery(
            user_id=user_id,
            device_id=device_id,
            result=result,
            start=date_from,
            end=date_to,
            page=page,
            page_size=page_size,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    )
    set_pagination_headers(response, total=records.total, page=records.page, page_size=records.page_size)
    return AccessRecordPage.model_validate(records)


@router.get("/stats", response_model=AccessStatsResponse)
def access_stats(
    date_from: Optional[datetime.datetime] = Query(None),
    date_to: Optional[datetime.datetime] = Query(None),
    merchant_id: Optional[int] = Query(None),
    device_id: Optional[str] = Query(None),
    control: AccessControl = Depends(get_access_control),
) -> AccessStatsResponse:
    stats = control.access_stats(start=date_from, end=date_to, merchant_id=merchant_id, device_id=device_id)
    return AccessStatsResponse.model_validate(stats)


@router.get("/devices/{device_id}/status", response_model=DeviceStatusResponse)
def device_status(device_id: str, control: AccessControl = Depends(get_access_control)) -> DeviceStatusResponse:
    return DeviceStatusResponse.model_validate(control.device_status(device_id))


@router.get("/users/{user_id}/today-count")
def user_today_count(user_id: int, control: AccessControl = Depends(get_access_control)) -> dict:
    return {"user_id": user_id, "today_count": control.user_today_count(user_id)}

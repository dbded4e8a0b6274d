"""
Passcode issuance and lookup endpoints.
"""

from __future__ import annotations

import datetime
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ...core.errors import PasscodeError
from ...schemas.passcode import (
    ExpireOverdueResponse,
    PasscodeBatchIssueRequest,
    PasscodeCredentialsResponse,
    PasscodeInfoResponse,
    PasscodeIssueRequest,
    PasscodeRefreshRequest,
    PasscodeResponse,
    PasscodeStatsResponse,
)
from ...services.access_control import AccessControl, get_access_control
from ...services.passcodes import IssueOptions


router = APIRouter(prefix="/api/v1/passcodes", tags=["passcodes"])
logger = logging.getLogger("passcodes_api")


def _minutes(value: Optional[int]) -> Optional[datetime.timedelta]:
    return datetime.timedelta(minutes=value) if value else None


def _raise_http(exc: PasscodeError) -> None:
    raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


@router.post("", status_code=201, response_model=PasscodeResponse)
def issue_passcode(req: PasscodeIssueRequest, control: AccessControl = Depends(get_access_control)) -> PasscodeResponse:
    options = IssueOptions(
        usage_limit=req.usage_limit,
        valid_for=_minutes(req.valid_for_minutes),
        application_id=req.application_id,
        permissions=tuple(req.permissions),
    )
    try:
        passcode = control.issue(req.user_id, req.type, options)
    except PasscodeError as exc:
        _raise_http(exc)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return PasscodeResponse.model_validate(passcode)


@router.post("/refresh", status_code=201, response_model=PasscodeResponse)
def refresh_passcode(req: PasscodeRefreshRequest, control: AccessControl = Depends(get_access_control)) -> PasscodeResponse:
    try:
        passcode = control.refresh(req.user_id)
    except PasscodeError as exc:
        _raise_http(exc)
    return PasscodeResponse.model_validate(passcode)


@router.post("/batch", status_code=201, response_model=List[PasscodeResponse])
def batch_issue_passcodes(
    req: PasscodeBatchIssueRequest,
    control: AccessControl = Depends(get_access_control),
) -> List[PasscodeResponse]:
    options = IssueOptions(usage_limit=req.usage_limit, valid_for=_minutes(req.valid_for_minutes))
    issued = control.passcodes.batch_issue(req.user_ids, req.type, options)
    logger.info("Batch issue requested=%s issued=%s", len(req.user_ids), len(issued))
    return [PasscodeResponse.model_validate(p) for p in issued]


@router.post("/from-application/{application_id}", status_code=201, response_model=PasscodeResponse)
def issue_from_application(application_id: int, control: AccessControl = Depends(get_access_control)) -> PasscodeResponse:
    try:
        passcode = control.passcodes.issue_for_application(application_id)
    except PasscodeError as exc:
        _raise_http(exc)
    return PasscodeResponse.model_validate(passcode)


@router.get("/stats", response_model=PasscodeStatsResponse)
def passcode_stats(
    user_id: Optional[int] = Query(None),
    type: Optional[Literal["employee", "visitor"]] = Query(None),
    control: AccessControl = Depends(get_access_control),
) -> PasscodeStatsResponse:
    return PasscodeStatsResponse(**control.passcodes.statistics(user_id=user_id, passcode_type=type))


@router.post("/expire-overdue", response_model=ExpireOverdueResponse)
def expire_overdue(control: AccessControl = Depends(get_access_control)) -> ExpireOverdueResponse:
    return ExpireOverdueResponse(expired=control.passcodes.expire_overdue())


@router.get("/users/{user_id}/current", response_model=PasscodeResponse)
def current_passcode(user_id: int, control: AccessControl = Depends(get_access_control)) -> PasscodeResponse:
    passcode = control.passcodes.current(user_id)
    if passcode is None:
        raise HTTPException(status_code=404, detail="No active passcode")
    return PasscodeResponse.model_validate(passcode)


@router.get("/by-code/{code}", response_model=PasscodeInfoResponse)
def passcode_info(code: str, control: AccessControl = Depends(get_access_control)) -> PasscodeInfoResponse:
    try:
        info = control.info(code)
    except PasscodeError as exc:
        _raise_http(exc)
    return PasscodeInfoResponse.model_validate(info)


@router.get("/{passcode_id}/credentials", response_model=PasscodeCredentialsResponse)
def passcode_credentials(passcode_id: int, control: AccessControl = Depends(get_access_control)) -> PasscodeCredentialsResponse:
    try:
        credentials = control.passcodes.credentials(passcode_id)
    except PasscodeError as exc:
        _raise_http(exc)
    return PasscodeCredentialsResponse.model_validate(credentials)


@router.post("/{passcode_id}/revoke", response_model=PasscodeResponse)
def revoke_passcode(passcode_id: int, control: AccessControl = Depends(get_access_control)) -> PasscodeResponse:
    try:
        passcode = control.passcodes.revoke(passcode_id)
    except PasscodeError as exc:
        _raise_http(exc)
    return PasscodeResponse.model_validate(passcode)

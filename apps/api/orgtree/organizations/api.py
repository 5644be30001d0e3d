from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from orgtree.context import get_correlation_id
from orgtree.core.database import get_db
from orgtree.organizations.expansion import ExpansionState
from orgtree.organizations.repositories import OrganizationRecordSource, SqlOrganizationRecordSource
from orgtree.organizations.schemas import (
    HierarchyRead,
    HierarchyValidationRead,
    OrganizationCreate,
    OrganizationRead,
    OrganizationType,
    OrganizationUpdate,
    ReparentRead,
    ReparentRequest,
)
from orgtree.organizations.service import HierarchyService, OrganizationService

router = APIRouter(prefix="/api/crm/organizations", tags=["crm.organizations"])
service = OrganizationService()

# Shared by every request so that reparent gestures never overlap.
_reparent_lock = threading.Lock()

_REPARENT_STATUS_CODES = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_parent": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "circular_reference": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "in_progress": status.HTTP_409_CONFLICT,
    "load_failed": status.HTTP_503_SERVICE_UNAVAILABLE,
    "update_failed": status.HTTP_503_SERVICE_UNAVAILABLE,
}


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def get_record_source(db: Session = Depends(get_db)) -> OrganizationRecordSource:
    return SqlOrganizationRecordSource(db)


def _parse_uuid_list(raw: str | None) -> list[uuid.UUID]:
    if not raw:
        return []
    values = [item.strip() for item in raw.split(",") if item.strip()]
    parsed: list[uuid.UUID] = []
    for value in values:
        parsed.append(uuid.UUID(value))
    return parsed


@router.get("/hierarchy", response_model=HierarchyRead)
def get_hierarchy(
    request: Request,
    organization_type: OrganizationType | None = Query(default=None, alias="type"),
    expanded: str | None = Query(default=None),
    source: OrganizationRecordSource = Depends(get_record_source),
) -> HierarchyRead | JSONResponse:
    try:
        expanded_ids = _parse_uuid_list(expanded)
    except ValueError:
        return error_response(
            request,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="crm_organization_hierarchy_failed",
            message="expanded must be a comma-separated list of organization ids",
        )

    hierarchy = HierarchyService(source, expansion=ExpansionState(expanded_ids))
    return hierarchy.load(organization_type).to_read()


@router.get("/hierarchy/validation", response_model=HierarchyValidationRead)
def validate_hierarchy(
    request: Request,
    organization_type: OrganizationType | None = Query(default=None, alias="type"),
    source: OrganizationRecordSource = Depends(get_record_source),
) -> HierarchyValidationRead | JSONResponse:
    snapshot = HierarchyService(source).load(organization_type)
    if snapshot.load_error is not None:
        return error_response(
            request,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code="crm_organization_validation_failed",
            message=snapshot.load_error,
        )
    return HierarchyValidationRead(is_valid=not snapshot.errors, errors=snapshot.errors)


@router.post("", response_model=OrganizationRead, status_code=status.HTTP_201_CREATED)
def create_organization(
    request: Request,
    dto: OrganizationCreate,
    db: Session = Depends(get_db),
) -> OrganizationRead | JSONResponse:
    try:
        return service.create_organization(db, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_organization_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.get("", response_model=list[OrganizationRead])
def list_organizations(
    request: Request,
    name: str | None = Query(default=None),
    organization_type: OrganizationType | None = Query(default=None, alias="type"),
    is_active: bool | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
) -> list[OrganizationRead] | JSONResponse:
    try:
        return service.list_organizations(
            db,
            filters={"name": name, "type": organization_type, "is_active": is_active},
            cursor=cursor,
            limit=limit,
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_organization_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.get("/{organization_id}", response_model=OrganizationRead)
def get_organization(
    request: Request,
    organization_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> OrganizationRead | JSONResponse:
    try:
        return service.get_organization(db, organization_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_organization_get_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.get("/{organization_id}/children", response_model=list[OrganizationRead])
def list_children(
    request: Request,
    organization_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> list[OrganizationRead] | JSONResponse:
    try:
        return service.list_children(db, organization_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_organization_children_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.patch("/{organization_id}", response_model=OrganizationRead)
def patch_organization(
    request: Request,
    organization_id: uuid.UUID,
    dto: OrganizationUpdate,
    db: Session = Depends(get_db),
) -> OrganizationRead | JSONResponse:
    try:
        return service.update_organization(db, organization_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_organization_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.post("/{organization_id}/reparent", response_model=ReparentRead)
def reparent_organization(
    request: Request,
    organization_id: uuid.UUID,
    dto: ReparentRequest,
    source: OrganizationRecordSource = Depends(get_record_source),
) -> ReparentRead | JSONResponse:
    hierarchy = HierarchyService(source, gesture_lock=_reparent_lock)
    result = hierarchy.reparent(organization_id, dto.parent_id, refresh=True)

    if not result.succeeded:
        return error_response(
            request,
            status_code=_REPARENT_STATUS_CODES.get(result.reason or "", status.HTTP_422_UNPROCESSABLE_ENTITY),
            code="crm_organization_reparent_failed",
            message=result.message or "reparent failed",
            details={"outcome": result.outcome, "reason": result.reason},
        )

    return ReparentRead(
        outcome=result.outcome,
        organization_id=result.organization_id,
        parent_id=result.parent_id,
        message=result.message,
        hierarchy=result.snapshot.to_read(),
    )


@router.delete("/{organization_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_organization(
    request: Request,
    organization_id: uuid.UUID,
    force: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> Any:
    try:
        service.soft_delete_organization(db, organization_id, force=force)
        return {"status": "deleted"}
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_organization_delete_failed",
            message=str(exc.detail),
            details=exc.detail,
        )

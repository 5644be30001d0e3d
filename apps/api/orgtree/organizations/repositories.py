from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable
from typing import Protocol

from fastapi import HTTPException, status
from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from orgtree.organizations.models import CRMOrganization, utcnow
from orgtree.organizations.schemas import OrganizationRead, OrganizationType


class OrganizationRecordSource(Protocol):
    def list_organizations(self, organization_type: OrganizationType | None = None) -> list[OrganizationRead]:
        ...

    def update_organization(self, organization: OrganizationRead) -> OrganizationRead:
        ...


class SqlOrganizationRecordSource:
    def __init__(self, session: Session) -> None:
        self._session = session

    def list_organizations(self, organization_type: OrganizationType | None = None) -> list[OrganizationRead]:
        stmt = select(CRMOrganization).where(CRMOrganization.deleted_at.is_(None))
        if organization_type is not None:
            stmt = stmt.where(CRMOrganization.type == organization_type.value)
        stmt = stmt.order_by(CRMOrganization.created_at.asc(), CRMOrganization.id.asc())
        return [OrganizationRead.model_validate(row) for row in self._session.scalars(stmt).all()]

    def update_organization(self, organization: OrganizationRead) -> OrganizationRead:
        existing = self._session.scalar(
            select(CRMOrganization).where(
                and_(CRMOrganization.id == organization.id, CRMOrganization.deleted_at.is_(None))
            )
        )
        if existing is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="organization not found")

        existing.parent_id = organization.parent_id
        existing.name = organization.name
        existing.type = organization.type.value
        existing.territory_id = organization.territory_id
        existing.is_active = organization.is_active
        existing.updated_at = utcnow()
        existing.row_version = existing.row_version + 1
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        self._session.refresh(existing)
        return OrganizationRead.model_validate(existing)


class InMemoryOrganizationRecordSource:
    def __init__(self, organizations: Iterable[OrganizationRead] = ()) -> None:
        self._lock = threading.Lock()
        self._records: dict[uuid.UUID, OrganizationRead] = {org.id: org for org in organizations}

    def list_organizations(self, organization_type: OrganizationType | None = None) -> list[OrganizationRead]:
        with self._lock:
            return [
                org.model_copy()
                for org in self._records.values()
                if organization_type is None or org.type == organization_type
            ]

    def update_organization(self, organization: OrganizationRead) -> OrganizationRead:
        with self._lock:
            existing = self._records.get(organization.id)
            if existing is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="organization not found")
            updated = organization.model_copy(
                update={"updated_at": utcnow(), "row_version": existing.row_version + 1}
            )
            self._records[updated.id] = updated
            return updated.model_copy()

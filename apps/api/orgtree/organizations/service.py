from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any

from fastapi import HTTPException, status
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import Select, and_, func, select, update
from sqlalchemy.orm import Session

from orgtree.context import get_correlation_id
from orgtree.core.config import Settings, get_settings
from orgtree.core import events
from orgtree.core.events import (
    ORGANIZATION_CREATED,
    ORGANIZATION_DELETED,
    ORGANIZATION_REPARENTED,
    ORGANIZATION_UPDATED,
)
from orgtree.metrics import (
    observe_hierarchy_build,
    observe_hierarchy_load_failure,
    observe_hierarchy_validation,
    observe_reparent,
)
from orgtree.organizations.expansion import ExpansionState
from orgtree.organizations.guard import would_create_cycle
from orgtree.organizations.models import CRMOrganization, utcnow
from orgtree.organizations.repositories import OrganizationRecordSource
from orgtree.organizations.schemas import (
    HierarchyRead,
    HierarchyValidationError,
    OrganizationCreate,
    OrganizationNode,
    OrganizationRead,
    OrganizationType,
    OrganizationUpdate,
    ReparentOutcome,
)
from orgtree.organizations.tree import build_tree
from orgtree.organizations.validation import validate
from orgtree.otel import get_tracer


logger = logging.getLogger("orgtree.hierarchy")
tracer = get_tracer("orgtree.hierarchy")

LOAD_FAILED_MESSAGE = "Failed to load organizations. Please try again."
UPDATE_FAILED_MESSAGE = "Failed to update organization hierarchy. Please try again."
CIRCULAR_REFERENCE_MESSAGE = "Cannot move organization: This would create a circular reference."
BUSY_MESSAGE = "Another hierarchy change is still in progress. Please try again."


@dataclass
class HierarchySnapshot:
    organizations: list[OrganizationRead] = field(default_factory=list)
    # Unfiltered list; the reparent guard must see ancestors of every type.
    all_organizations: list[OrganizationRead] = field(default_factory=list)
    tree: list[OrganizationNode] = field(default_factory=list)
    errors: list[HierarchyValidationError] = field(default_factory=list)
    load_error: str | None = None

    def to_read(self) -> HierarchyRead:
        return HierarchyRead(
            organizations_count=len(self.organizations),
            tree=self.tree,
            errors=self.errors,
            load_error=self.load_error,
        )


@dataclass
class ReparentResult:
    outcome: ReparentOutcome
    organization_id: uuid.UUID
    parent_id: uuid.UUID | None
    snapshot: HierarchySnapshot
    message: str | None = None
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in {"moved", "unchanged"}


class HierarchyService:
    """Keeps the displayed forest and its violations in step with a record source.

    The organization list is only ever replaced wholesale by a reload; the
    forest and the error list are recomputed from it each time. Reparent
    gestures are serialized through ``gesture_lock``: a gesture that arrives
    while another is in flight is turned away with the ``busy`` outcome rather
    than queued.
    """

    def __init__(
        self,
        source: OrganizationRecordSource,
        *,
        settings: Settings | None = None,
        expansion: ExpansionState | None = None,
        gesture_lock: threading.Lock | None = None,
    ) -> None:
        self._source = source
        self._settings = settings or get_settings()
        self.expansion = expansion or ExpansionState()
        self._gesture_lock = gesture_lock or threading.Lock()
        self._organization_type: OrganizationType | None = None
        self._snapshot = HierarchySnapshot()

    @property
    def snapshot(self) -> HierarchySnapshot:
        return self._snapshot

    def load(self, organization_type: OrganizationType | None = None) -> HierarchySnapshot:
        self._organization_type = organization_type
        try:
            organizations = self._source.list_organizations()
        except Exception as exc:
            observe_hierarchy_load_failure()
            logger.exception(
                "hierarchy.load_failed",
                extra={
                    "organization_type": organization_type.value if organization_type else None,
                    "error": str(exc)[:500],
                },
            )
            self._snapshot = HierarchySnapshot(load_error=LOAD_FAILED_MESSAGE)
            return self._snapshot

        self._snapshot = self._compute(organizations, organization_type)
        logger.info(
            "hierarchy.loaded",
            extra={
                "organization_type": organization_type.value if organization_type else None,
                "organizations_count": len(self._snapshot.organizations),
                "error_count": len(self._snapshot.errors),
            },
        )
        return self._snapshot

    def reload(self) -> HierarchySnapshot:
        return self.load(self._organization_type)

    def expand(self, organization_id: uuid.UUID) -> HierarchySnapshot:
        self.expansion.expand(organization_id)
        return self._rebuild_tree()

    def collapse(self, organization_id: uuid.UUID) -> HierarchySnapshot:
        self.expansion.collapse(organization_id)
        return self._rebuild_tree()

    def toggle_expansion(self, organization_id: uuid.UUID) -> HierarchySnapshot:
        self.expansion.toggle(organization_id)
        return self._rebuild_tree()

    def find(self, organization_id: uuid.UUID) -> OrganizationRead | None:
        for org in self._snapshot.all_organizations:
            if org.id == organization_id:
                return org
        return None

    def children_of(self, parent_id: uuid.UUID | None) -> list[OrganizationRead]:
        children = [org for org in self._snapshot.organizations if org.parent_id == parent_id]
        return sorted(children, key=lambda org: org.name.casefold())

    def errors_for(self, organization_id: uuid.UUID) -> list[HierarchyValidationError]:
        return [error for error in self._snapshot.errors if error.organization_id == organization_id]

    def reparent(
        self,
        moving_id: uuid.UUID,
        candidate_parent_id: uuid.UUID | None,
        *,
        refresh: bool = False,
    ) -> ReparentResult:
        """Move ``moving_id`` under ``candidate_parent_id`` (``None`` moves it to the root).

        The cycle guard runs against the last loaded list before the record
        source is touched; a rejected move issues no update at all. With
        ``refresh`` the list is reloaded first, inside the gesture lock.
        """
        if not self._gesture_lock.acquire(blocking=False):
            result = ReparentResult(
                outcome="busy",
                organization_id=moving_id,
                parent_id=candidate_parent_id,
                snapshot=self._snapshot,
                message=BUSY_MESSAGE,
                reason="in_progress",
            )
            self._record_outcome(result)
            return result

        try:
            with tracer.start_as_current_span("hierarchy.reparent") as span:
                span.set_attribute("organization_id", str(moving_id))
                span.set_attribute("parent_id", str(candidate_parent_id) if candidate_parent_id else "")
                correlation_id = get_correlation_id()
                if correlation_id:
                    span.set_attribute("correlation_id", correlation_id)

                result = self._reparent(moving_id, candidate_parent_id, refresh=refresh)

                span.set_attribute("outcome", result.outcome)
                if result.outcome == "failed":
                    span.set_status(Status(StatusCode.ERROR, result.reason or "failed"))
        finally:
            self._gesture_lock.release()

        self._record_outcome(result)
        return result

    def _reparent(
        self,
        moving_id: uuid.UUID,
        candidate_parent_id: uuid.UUID | None,
        *,
        refresh: bool,
    ) -> ReparentResult:
        def finish(outcome: ReparentOutcome, message: str | None = None, reason: str | None = None) -> ReparentResult:
            return ReparentResult(
                outcome=outcome,
                organization_id=moving_id,
                parent_id=candidate_parent_id,
                snapshot=self._snapshot,
                message=message,
                reason=reason,
            )

        if refresh and self.reload().load_error is not None:
            return finish("failed", LOAD_FAILED_MESSAGE, "load_failed")

        moving = self.find(moving_id)
        if moving is None:
            return finish("rejected", "organization not found", "not_found")

        if moving.parent_id == candidate_parent_id:
            return finish("unchanged")

        if candidate_parent_id is not None and self.find(candidate_parent_id) is None:
            return finish("rejected", "parent organization not found", "invalid_parent")

        if would_create_cycle(moving.id, candidate_parent_id, self._snapshot.all_organizations):
            return finish("rejected", CIRCULAR_REFERENCE_MESSAGE, "circular_reference")

        try:
            self._source.update_organization(moving.model_copy(update={"parent_id": candidate_parent_id}))
        except Exception as exc:
            logger.exception(
                "hierarchy.reparent_failed",
                extra={
                    "organization_id": str(moving_id),
                    "parent_id": str(candidate_parent_id) if candidate_parent_id else None,
                    "error": str(exc)[:500],
                },
            )
            return finish("failed", UPDATE_FAILED_MESSAGE, "update_failed")

        self.reload()
        events.publish(
            events.organization_envelope(
                ORGANIZATION_REPARENTED,
                {
                    "organization_id": str(moving.id),
                    "previous_parent_id": str(moving.parent_id) if moving.parent_id else None,
                    "parent_id": str(candidate_parent_id) if candidate_parent_id else None,
                },
            )
        )
        return finish("moved")

    def _record_outcome(self, result: ReparentResult) -> None:
        observe_reparent(result.outcome)
        extra = {
            "organization_id": str(result.organization_id),
            "parent_id": str(result.parent_id) if result.parent_id else None,
            "outcome": result.outcome,
            "reason": result.reason,
        }
        if result.succeeded:
            logger.info("hierarchy.reparent", extra=extra)
        else:
            logger.warning("hierarchy.reparent", extra=extra)

    def _compute(
        self,
        organizations: list[OrganizationRead],
        organization_type: OrganizationType | None,
    ) -> HierarchySnapshot:
        """Validate the whole store, then narrow the displayed forest and its errors to one type."""
        started = time.perf_counter()
        visible = [org for org in organizations if organization_type is None or org.type == organization_type]
        tree = build_tree(visible, self.expansion.expanded_ids)
        errors = validate(
            organizations,
            max_depth=self._settings.hierarchy_max_depth,
            walk_limit=self._settings.hierarchy_walk_limit,
        )
        if organization_type is not None:
            visible_ids = {org.id for org in visible}
            errors = [error for error in errors if error.organization_id in visible_ids]
        observe_hierarchy_build(time.perf_counter() - started)
        observe_hierarchy_validation(error.type for error in errors)
        if errors:
            logger.warning("hierarchy.invalid", extra={"error_count": len(errors)})
        return HierarchySnapshot(
            organizations=visible,
            all_organizations=list(organizations),
            tree=tree,
            errors=errors,
        )

    def _rebuild_tree(self) -> HierarchySnapshot:
        self._snapshot = replace(
            self._snapshot,
            tree=build_tree(self._snapshot.organizations, self.expansion.expanded_ids),
        )
        return self._snapshot


class OrganizationService:
    def create_organization(self, session: Session, dto: OrganizationCreate) -> OrganizationRead:
        if not dto.name.strip():
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="name is required")

        if dto.parent_id is not None and self._get_active(session, dto.parent_id) is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="parent organization not found",
            )

        organization = CRMOrganization(
            name=dto.name.strip(),
            type=dto.type.value,
            parent_id=dto.parent_id,
            territory_id=dto.territory_id,
            is_active=dto.is_active,
        )
        session.add(organization)
        session.flush()

        self._publish(
            ORGANIZATION_CREATED,
            {
                "organization_id": str(organization.id),
                "name": organization.name,
                "parent_id": str(organization.parent_id) if organization.parent_id else None,
            },
        )
        session.commit()
        session.refresh(organization)
        return OrganizationRead.model_validate(organization)

    def list_organizations(
        self,
        session: Session,
        filters: dict[str, Any],
        cursor: str | None,
        limit: int,
    ) -> list[OrganizationRead]:
        stmt: Select[tuple[CRMOrganization]] = select(CRMOrganization).where(CRMOrganization.deleted_at.is_(None))

        name_filter = filters.get("name")
        if name_filter:
            stmt = stmt.where(CRMOrganization.name.ilike(f"%{name_filter}%"))
        if filters.get("type") is not None:
            stmt = stmt.where(CRMOrganization.type == filters["type"].value)
        if filters.get("is_active") is not None:
            stmt = stmt.where(CRMOrganization.is_active == filters["is_active"])

        offset = int(cursor) if cursor and cursor.isdigit() else 0
        stmt = stmt.order_by(CRMOrganization.created_at.desc(), CRMOrganization.id).offset(offset).limit(limit)
        return [OrganizationRead.model_validate(row) for row in session.scalars(stmt).all()]

    def get_organization(self, session: Session, organization_id: uuid.UUID) -> OrganizationRead:
        organization = self._get_active(session, organization_id)
        if organization is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="organization not found")
        return OrganizationRead.model_validate(organization)

    def list_children(self, session: Session, organization_id: uuid.UUID) -> list[OrganizationRead]:
        if self._get_active(session, organization_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="organization not found")

        stmt = (
            select(CRMOrganization)
            .where(and_(CRMOrganization.parent_id == organization_id, CRMOrganization.deleted_at.is_(None)))
            .order_by(func.lower(CRMOrganization.name), CRMOrganization.created_at)
        )
        return [OrganizationRead.model_validate(row) for row in session.scalars(stmt).all()]

    def update_organization(
        self,
        session: Session,
        organization_id: uuid.UUID,
        dto: OrganizationUpdate,
    ) -> OrganizationRead:
        existing = self._get_active(session, organization_id)
        if existing is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="organization not found")

        changes: dict[str, Any] = {}
        if dto.name is not None:
            if not dto.name.strip():
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="name cannot be empty")
            changes["name"] = dto.name.strip()
        if dto.type is not None:
            changes["type"] = dto.type.value
        if dto.territory_id is not None:
            changes["territory_id"] = dto.territory_id
        if dto.is_active is not None:
            changes["is_active"] = dto.is_active

        if not changes:
            return OrganizationRead.model_validate(existing)

        changes["updated_at"] = utcnow()
        changes["row_version"] = CRMOrganization.row_version + 1

        result = session.execute(
            update(CRMOrganization)
            .where(
                and_(
                    CRMOrganization.id == organization_id,
                    CRMOrganization.row_version == dto.row_version,
                    CRMOrganization.deleted_at.is_(None),
                )
            )
            .values(**changes)
        )
        if result.rowcount == 0:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")

        self._publish(
            ORGANIZATION_UPDATED,
            {
                "organization_id": str(organization_id),
                "changed_fields": sorted(key for key in changes if key not in {"updated_at", "row_version"}),
            },
        )
        session.commit()
        return self.get_organization(session, organization_id)

    def soft_delete_organization(
        self,
        session: Session,
        organization_id: uuid.UUID,
        *,
        force: bool = False,
    ) -> None:
        organization = self._get_active(session, organization_id)
        if organization is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="organization not found")

        children = session.scalars(
            select(CRMOrganization).where(
                and_(CRMOrganization.parent_id == organization_id, CRMOrganization.deleted_at.is_(None))
            )
        ).all()
        active_children = [child for child in children if child.is_active]
        if active_children and not force:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={
                    "message": "Organization has active child organizations",
                    "dependencies": {"children": len(active_children)},
                },
            )

        # Every child, active or not, is re-attached to the deleted organization's own parent.
        for child in children:
            child.parent_id = organization.parent_id
            child.updated_at = utcnow()
            child.row_version = child.row_version + 1
            session.add(child)

        organization.deleted_at = utcnow()
        organization.updated_at = utcnow()
        organization.row_version = organization.row_version + 1
        session.add(organization)

        self._publish(
            ORGANIZATION_DELETED,
            {
                "organization_id": str(organization.id),
                "reparented_children": [str(child.id) for child in children],
            },
        )
        session.commit()

    def _get_active(self, session: Session, organization_id: uuid.UUID) -> CRMOrganization | None:
        return session.scalar(
            select(CRMOrganization).where(
                and_(CRMOrganization.id == organization_id, CRMOrganization.deleted_at.is_(None))
            )
        )

    def _publish(self, event_type: str, payload: dict[str, Any]) -> None:
        events.publish(events.organization_envelope(event_type, payload))


organization_service = OrganizationService()

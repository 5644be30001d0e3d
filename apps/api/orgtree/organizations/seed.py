from __future__ import annotations

import uuid
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from orgtree.organizations.models import CRMOrganization, utcnow
from orgtree.organizations.schemas import OrganizationRead, OrganizationType


ORGANIZATIONS_PER_TYPE = 10
_DIVISION_INDEXES = {6: 1, 8: 3, 10: 5}


def demo_organization_id(organization_type: OrganizationType, index: int) -> uuid.UUID:
    slug = organization_type.value.lower().replace(" ", "_")
    return uuid.uuid5(uuid.NAMESPACE_URL, f"nexa-organization:{slug}_{index}")


def generate_demo_organizations(
    organization_type: OrganizationType | None = None,
) -> list[OrganizationRead]:
    """Ten organizations per type; numbers 6, 8 and 10 are divisions of 1, 3 and 5."""
    types = [organization_type] if organization_type is not None else list(OrganizationType)
    now = utcnow()
    organizations: list[OrganizationRead] = []

    for org_type in types:
        type_index = list(OrganizationType).index(org_type)
        for index in range(1, ORGANIZATIONS_PER_TYPE + 1):
            parent_index = _DIVISION_INDEXES.get(index)
            parent_id = demo_organization_id(org_type, parent_index) if parent_index is not None else None
            organizations.append(
                OrganizationRead(
                    id=demo_organization_id(org_type, index),
                    parent_id=parent_id,
                    name=f"{org_type.value} {index}{' (Division)' if parent_id else ''}",
                    type=org_type,
                    territory_id=f"territory_{type_index + 1}",
                    is_active=index != ORGANIZATIONS_PER_TYPE,
                    created_at=now - timedelta(days=365 - index),
                    updated_at=now - timedelta(days=index),
                )
            )

    return organizations


def seed_demo_organizations(session: Session) -> int:
    existing = session.scalar(select(CRMOrganization.id).limit(1))
    if existing is not None:
        return 0

    organizations = generate_demo_organizations()
    for org in organizations:
        session.add(
            CRMOrganization(
                id=org.id,
                parent_id=org.parent_id,
                name=org.name,
                type=org.type.value,
                territory_id=org.territory_id,
                is_active=org.is_active,
                created_at=org.created_at,
                updated_at=org.updated_at,
            )
        )
    session.commit()
    return len(organizations)

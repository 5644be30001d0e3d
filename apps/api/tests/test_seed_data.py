from __future__ import annotations

from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from orgtree.core.database import Base
from orgtree.organizations.models import CRMOrganization
from orgtree.organizations.repositories import SqlOrganizationRecordSource
from orgtree.organizations.schemas import OrganizationType
from orgtree.organizations.seed import (
    ORGANIZATIONS_PER_TYPE,
    demo_organization_id,
    generate_demo_organizations,
    seed_demo_organizations,
)
from orgtree.organizations.tree import build_tree
from orgtree.organizations.validation import validate


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def test_demo_organizations_form_valid_forest() -> None:
    organizations = generate_demo_organizations()

    assert len(organizations) == ORGANIZATIONS_PER_TYPE * len(OrganizationType)
    assert validate(organizations) == []
    assert len(build_tree(organizations)) == 7 * len(OrganizationType)


def test_demo_divisions_hang_off_their_parents() -> None:
    organizations = {org.id: org for org in generate_demo_organizations(OrganizationType.ARCHITECT)}

    division = organizations[demo_organization_id(OrganizationType.ARCHITECT, 8)]
    assert division.parent_id == demo_organization_id(OrganizationType.ARCHITECT, 3)
    assert division.name == "Architect 8 (Division)"
    assert division.territory_id == "territory_4"

    last = organizations[demo_organization_id(OrganizationType.ARCHITECT, 10)]
    assert last.is_active is False


def test_demo_ids_are_stable() -> None:
    first = [org.id for org in generate_demo_organizations()]
    second = [org.id for org in generate_demo_organizations()]

    assert first == second


def test_seed_inserts_once(db_session: Session) -> None:
    assert seed_demo_organizations(db_session) == ORGANIZATIONS_PER_TYPE * len(OrganizationType)
    assert seed_demo_organizations(db_session) == 0
    assert db_session.scalar(select(func.count()).select_from(CRMOrganization)) == 60

    owners = SqlOrganizationRecordSource(db_session).list_organizations(OrganizationType.BUILDING_OWNER)
    assert len(owners) == ORGANIZATIONS_PER_TYPE
    assert validate(owners) == []

from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from orgtree.core import events
from orgtree.core.database import Base, get_db
from orgtree.main import app
from orgtree.organizations.models import CRMOrganization


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


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    events.published_events.clear()
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        test_client.headers.update({"x-correlation-id": "corr-test"})
        yield test_client
    app.dependency_overrides.clear()
    events.published_events.clear()


def _create(client: TestClient, name: str, parent_id: str | None = None, org_type: str = "Engineering Firm") -> dict:
    response = client.post(
        "/api/crm/organizations",
        json={"name": name, "type": org_type, "parent_id": parent_id},
    )
    assert response.status_code == 201
    return response.json()


def test_create_organization_success(client: TestClient) -> None:
    response = client.post(
        "/api/crm/organizations",
        json={"name": "  Acme Engineering ", "type": "Engineering Firm", "territory_id": "territory_1"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Acme Engineering"
    assert body["type"] == "Engineering Firm"
    assert body["parent_id"] is None
    assert body["is_active"] is True
    assert body["row_version"] == 1

    created = [item for item in events.published_events if item["event_type"] == "crm.organization.created"]
    assert created
    assert created[-1]["payload"]["organization_id"] == body["id"]
    assert created[-1]["correlation_id"] == "corr-test"


def test_create_with_unknown_parent_rejected(client: TestClient) -> None:
    response = client.post(
        "/api/crm/organizations",
        json={"name": "Orphan", "type": "Architect", "parent_id": str(uuid.uuid4())},
    )

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "crm_organization_create_failed"
    assert body["message"] == "parent organization not found"
    assert body["correlation_id"] == "corr-test"


def test_create_with_unknown_type_rejected(client: TestClient) -> None:
    response = client.post("/api/crm/organizations", json={"name": "Odd", "type": "Astronaut"})

    assert response.status_code == 422


def test_get_and_list_organizations(client: TestClient) -> None:
    parent = _create(client, "Parent Co")
    _create(client, "Owner", org_type="Building Owner")

    fetched = client.get(f"/api/crm/organizations/{parent['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["name"] == "Parent Co"

    listed = client.get("/api/crm/organizations")
    assert listed.status_code == 200
    assert {item["name"] for item in listed.json()} == {"Parent Co", "Owner"}

    by_type = client.get("/api/crm/organizations", params={"type": "Building Owner"})
    assert [item["name"] for item in by_type.json()] == ["Owner"]

    by_name = client.get("/api/crm/organizations", params={"name": "parent"})
    assert [item["name"] for item in by_name.json()] == ["Parent Co"]


def test_get_missing_organization_returns_envelope(client: TestClient) -> None:
    response = client.get(f"/api/crm/organizations/{uuid.uuid4()}")

    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "crm_organization_get_failed"
    assert body["correlation_id"] == "corr-test"
    assert response.headers.get("x-correlation-id") == "corr-test"


def test_list_children_sorted_by_name(client: TestClient) -> None:
    parent = _create(client, "Parent")
    _create(client, "zeta", parent["id"])
    _create(client, "Alpha", parent["id"])

    response = client.get(f"/api/crm/organizations/{parent['id']}/children")

    assert response.status_code == 200
    assert [item["name"] for item in response.json()] == ["Alpha", "zeta"]


def test_patch_organization_with_row_version(client: TestClient) -> None:
    created = _create(client, "Before")

    updated = client.patch(
        f"/api/crm/organizations/{created['id']}",
        json={"row_version": created["row_version"], "name": "After", "is_active": False},
    )
    assert updated.status_code == 200
    assert updated.json()["name"] == "After"
    assert updated.json()["is_active"] is False
    assert updated.json()["row_version"] == created["row_version"] + 1

    stale = client.patch(
        f"/api/crm/organizations/{created['id']}",
        json={"row_version": created["row_version"], "name": "Stale"},
    )
    assert stale.status_code == 409
    assert stale.json()["code"] == "crm_organization_update_failed"

    changed = [item for item in events.published_events if item["event_type"] == "crm.organization.updated"]
    assert changed[-1]["payload"]["changed_fields"] == ["is_active", "name"]


def test_delete_with_children_requires_force(client: TestClient, db_session: Session) -> None:
    grandparent = _create(client, "Grandparent")
    parent = _create(client, "Parent", grandparent["id"])
    child = _create(client, "Child", parent["id"])

    blocked = client.delete(f"/api/crm/organizations/{parent['id']}")
    assert blocked.status_code == 422
    assert blocked.json()["details"]["dependencies"] == {"children": 1}

    forced = client.delete(f"/api/crm/organizations/{parent['id']}", params={"force": "true"})
    assert forced.status_code == 200
    assert forced.json() == {"status": "deleted"}

    assert client.get(f"/api/crm/organizations/{parent['id']}").status_code == 404
    moved_child = db_session.scalar(select(CRMOrganization).where(CRMOrganization.id == uuid.UUID(child["id"])))
    assert moved_child is not None
    assert str(moved_child.parent_id) == grandparent["id"]


def test_delete_leaf_organization(client: TestClient) -> None:
    leaf = _create(client, "Leaf")

    response = client.delete(f"/api/crm/organizations/{leaf['id']}")

    assert response.status_code == 200
    assert client.get("/api/crm/organizations").json() == []
    deleted = [item for item in events.published_events if item["event_type"] == "crm.organization.deleted"]
    assert deleted[-1]["payload"] == {"organization_id": leaf["id"], "reparented_children": []}


def test_delete_with_only_inactive_children_needs_no_force(client: TestClient, db_session: Session) -> None:
    parent = _create(client, "Parent")
    child = _create(client, "Dormant", parent["id"])
    deactivated = client.patch(
        f"/api/crm/organizations/{child['id']}",
        json={"row_version": child["row_version"], "is_active": False},
    )
    assert deactivated.status_code == 200

    response = client.delete(f"/api/crm/organizations/{parent['id']}")

    assert response.status_code == 200
    moved_child = db_session.scalar(select(CRMOrganization).where(CRMOrganization.id == uuid.UUID(child["id"])))
    assert moved_child is not None
    assert moved_child.parent_id is None

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class OrganizationType(str, Enum):
    ENGINEERING_FIRM = "Engineering Firm"
    MANUFACTURER_REP = "Manufacturer Rep"
    BUILDING_OWNER = "Building Owner"
    ARCHITECT = "Architect"
    MECHANICAL_CONTRACTOR = "Mechanical Contractor"
    FACILITIES_MANAGER = "Facilities Manager"


HierarchyErrorType = Literal["circular_reference", "invalid_parent", "max_depth_exceeded"]
ReparentOutcome = Literal["moved", "unchanged", "rejected", "failed", "busy"]


class OrganizationCreate(BaseModel):
    name: str = Field(min_length=1)
    type: OrganizationType
    parent_id: UUID | None = None
    territory_id: str | None = None
    is_active: bool = True


class OrganizationUpdate(BaseModel):
    row_version: int
    name: str | None = None
    type: OrganizationType | None = None
    territory_id: str | None = None
    is_active: bool | None = None


class OrganizationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    parent_id: UUID | None = None
    name: str
    type: OrganizationType
    territory_id: str | None = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime
    row_version: int = 1


class OrganizationNode(OrganizationRead):
    children: list[OrganizationNode] = Field(default_factory=list)
    level: int = 0
    is_expanded: bool = False


OrganizationNode.model_rebuild()


class HierarchyValidationError(BaseModel):
    type: HierarchyErrorType
    message: str
    organization_id: UUID


class ReparentRequest(BaseModel):
    parent_id: UUID | None = None


class HierarchyRead(BaseModel):
    organizations_count: int
    tree: list[OrganizationNode]
    errors: list[HierarchyValidationError]
    load_error: str | None = None


class HierarchyValidationRead(BaseModel):
    is_valid: bool
    errors: list[HierarchyValidationError]


class ReparentRead(BaseModel):
    outcome: ReparentOutcome
    organization_id: UUID
    parent_id: UUID | None
    message: str | None = None
    hierarchy: HierarchyRead

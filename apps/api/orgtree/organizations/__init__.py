from orgtree.organizations.api import router
from orgtree.organizations.expansion import ExpansionState
from orgtree.organizations.guard import would_create_cycle
from orgtree.organizations.models import CRMOrganization
from orgtree.organizations.repositories import (
    InMemoryOrganizationRecordSource,
    OrganizationRecordSource,
    SqlOrganizationRecordSource,
)
from orgtree.organizations.schemas import (
    HierarchyRead,
    HierarchyValidationError,
    OrganizationCreate,
    OrganizationNode,
    OrganizationRead,
    OrganizationType,
    OrganizationUpdate,
)
from orgtree.organizations.service import (
    HierarchyService,
    HierarchySnapshot,
    OrganizationService,
    ReparentResult,
    organization_service,
)
from orgtree.organizations.tree import build_tree, flatten_tree
from orgtree.organizations.validation import validate

__all__ = [
    "router",
    "CRMOrganization",
    "OrganizationType",
    "OrganizationCreate",
    "OrganizationUpdate",
    "OrganizationRead",
    "OrganizationNode",
    "HierarchyRead",
    "HierarchyValidationError",
    "OrganizationRecordSource",
    "SqlOrganizationRecordSource",
    "InMemoryOrganizationRecordSource",
    "ExpansionState",
    "HierarchyService",
    "HierarchySnapshot",
    "ReparentResult",
    "OrganizationService",
    "organization_service",
    "build_tree",
    "flatten_tree",
    "validate",
    "would_create_cycle",
]

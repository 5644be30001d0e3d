from __future__ import annotations

from collections.abc import Hashable, Sequence

from orgtree.core.config import get_settings
from orgtree.organizations.schemas import HierarchyValidationError, OrganizationRead


def validate(
    orgs: Sequence[OrganizationRead],
    *,
    max_depth: int | None = None,
    walk_limit: int | None = None,
) -> list[HierarchyValidationError]:
    """Report every structural problem in ``orgs``.

    The three checks are independent and each sees the whole list, so one
    organization can carry several errors. Nothing here raises on bad data.
    """
    settings = get_settings()
    resolved_max_depth = max_depth if max_depth is not None else settings.hierarchy_max_depth
    resolved_walk_limit = walk_limit if walk_limit is not None else settings.hierarchy_walk_limit

    errors: list[HierarchyValidationError] = []
    errors.extend(detect_cycles(orgs))
    errors.extend(detect_invalid_parents(orgs))
    errors.extend(detect_excess_depth(orgs, max_depth=resolved_max_depth, walk_limit=resolved_walk_limit))
    return errors


def detect_cycles(orgs: Sequence[OrganizationRead]) -> list[HierarchyValidationError]:
    by_id = _index(orgs)
    visited: set[Hashable] = set()
    errors: list[HierarchyValidationError] = []

    for org in orgs:
        if org.id in visited:
            continue

        path: list[OrganizationRead] = []
        on_stack: set[Hashable] = set()
        current: OrganizationRead | None = org
        while current is not None:
            if current.id in on_stack:
                names = [item.name for item in path] + [current.name]
                errors.append(
                    HierarchyValidationError(
                        type="circular_reference",
                        message=f"Circular reference detected in path: {' -> '.join(names)}",
                        organization_id=current.id,
                    )
                )
                break
            if current.id in visited:
                break
            on_stack.add(current.id)
            path.append(current)
            current = by_id.get(current.parent_id) if current.parent_id is not None else None

        visited.update(on_stack)

    return errors


def detect_invalid_parents(orgs: Sequence[OrganizationRead]) -> list[HierarchyValidationError]:
    by_id = _index(orgs)
    errors: list[HierarchyValidationError] = []
    for org in orgs:
        if org.parent_id is not None and org.parent_id not in by_id:
            errors.append(
                HierarchyValidationError(
                    type="invalid_parent",
                    message=f"Organization {org.name} has invalid parent ID: {org.parent_id}",
                    organization_id=org.id,
                )
            )
    return errors


def detect_excess_depth(
    orgs: Sequence[OrganizationRead],
    *,
    max_depth: int,
    walk_limit: int,
) -> list[HierarchyValidationError]:
    # The seen-set stops a walk that re-enters a cycle, so a long cycle still
    # registers as deep even if cycle detection reported it first.
    by_id = _index(orgs)
    errors: list[HierarchyValidationError] = []

    for org in orgs:
        hops = 0
        seen: set[Hashable] = set()
        trail = [org.name]
        current = org
        while current.parent_id is not None and hops < walk_limit:
            if current.id in seen:
                break
            seen.add(current.id)
            parent = by_id.get(current.parent_id)
            if parent is None:
                break
            current = parent
            hops += 1
            trail.append(current.name)

        if hops >= max_depth:
            errors.append(
                HierarchyValidationError(
                    type="max_depth_exceeded",
                    message=(
                        f"Organization hierarchy exceeds maximum depth of {max_depth} levels: "
                        f"{' -> '.join(reversed(trail))}"
                    ),
                    organization_id=org.id,
                )
            )

    return errors


def _index(orgs: Sequence[OrganizationRead]) -> dict[Hashable, OrganizationRead]:
    return {org.id: org for org in orgs}

from __future__ import annotations

from collections.abc import Hashable, Sequence

from orgtree.organizations.schemas import OrganizationRead


def would_create_cycle(
    moving_id: Hashable,
    candidate_parent_id: Hashable | None,
    orgs: Sequence[OrganizationRead],
) -> bool:
    """Return True when placing ``moving_id`` under ``candidate_parent_id`` closes a loop.

    That is the case when the candidate is the moving organization itself or
    one of its descendants in the current parent graph. Moving to the root
    (``candidate_parent_id`` of ``None``) never creates a cycle.
    """
    if candidate_parent_id is None:
        return False
    if candidate_parent_id == moving_id:
        return True

    parents = {org.id: org.parent_id for org in orgs}
    seen: set[Hashable] = set()
    current: Hashable | None = candidate_parent_id
    while current is not None and current not in seen:
        seen.add(current)
        parent_id = parents.get(current)
        if parent_id == moving_id:
            return True
        current = parent_id
    return False

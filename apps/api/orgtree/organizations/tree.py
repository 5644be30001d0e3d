from __future__ import annotations

from collections.abc import Collection, Hashable, Sequence

from orgtree.organizations.schemas import OrganizationNode, OrganizationRead


def build_tree(
    orgs: Sequence[OrganizationRead],
    expanded_ids: Collection[Hashable] | None = None,
) -> list[OrganizationNode]:
    """Turn a flat organization list into a name-ordered forest.

    Records whose parent is missing from ``orgs`` become roots. Records caught
    in a parent cycle are unreachable from any root; each cycle is broken at its
    first member in input order, which becomes a root, so every record is
    still displayed once.

    The input list is not modified and the result depends only on ``orgs`` and
    ``expanded_ids``.
    """
    expanded = expanded_ids or ()
    positions: dict[Hashable, int] = {}
    nodes: dict[Hashable, OrganizationNode] = {}
    for index, org in enumerate(orgs):
        positions.setdefault(org.id, index)
        nodes[org.id] = OrganizationNode(
            **org.model_dump(exclude={"children", "level", "is_expanded"}),
            children=[],
            level=0,
            is_expanded=org.id in expanded,
        )

    roots: list[OrganizationNode] = []
    for org in orgs:
        node = nodes[org.id]
        parent = nodes.get(org.parent_id) if org.parent_id is not None else None
        if parent is None or parent is node:
            roots.append(node)
        else:
            parent.children.append(node)

    placed: set[Hashable] = set()
    _assign_levels(roots, placed)

    for org in orgs:
        if org.id in placed:
            continue
        cycle = _cycle_above(nodes[org.id], nodes)
        node = min(cycle, key=lambda member: positions[member.id])
        parent = nodes[node.parent_id]
        parent.children = [child for child in parent.children if child is not node]
        roots.append(node)
        _assign_levels([node], placed)

    def sort_key(node: OrganizationNode) -> tuple[str, int]:
        return node.name.casefold(), positions[node.id]

    _sort_nodes(roots, sort_key)
    return roots


def _cycle_above(node: OrganizationNode, nodes: dict[Hashable, OrganizationNode]) -> list[OrganizationNode]:
    # An unplaced node never reaches a root, so its ancestor chain ends in a loop.
    trail: list[OrganizationNode] = []
    seen: dict[Hashable, int] = {}
    current = node
    while current.id not in seen:
        seen[current.id] = len(trail)
        trail.append(current)
        current = nodes[current.parent_id]
    return trail[seen[current.id]:]


def _assign_levels(start: list[OrganizationNode], placed: set[Hashable]) -> None:
    stack = [(node, 0) for node in start]
    while stack:
        node, level = stack.pop()
        if node.id in placed:
            continue
        placed.add(node.id)
        node.level = level
        stack.extend((child, level + 1) for child in node.children)


def _sort_nodes(nodes: list[OrganizationNode], key) -> None:  # type: ignore[no-untyped-def]
    nodes.sort(key=key)
    pending = list(nodes)
    while pending:
        node = pending.pop()
        node.children.sort(key=key)
        pending.extend(node.children)


def flatten_tree(roots: Sequence[OrganizationNode], *, expanded_only: bool = False) -> list[OrganizationNode]:
    """Depth-first, display-ordered walk of a built forest.

    With ``expanded_only`` the walk skips the children of collapsed nodes, which
    is the list of rows a tree view renders.
    """
    rows: list[OrganizationNode] = []
    pending = list(reversed(roots))
    while pending:
        node = pending.pop()
        rows.append(node)
        if expanded_only and not node.is_expanded:
            continue
        pending.extend(reversed(node.children))
    return rows

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from orgtree.organizations.schemas import OrganizationRead, OrganizationType
from orgtree.organizations.validation import (
    detect_cycles,
    detect_excess_depth,
    detect_invalid_parents,
    validate,
)


NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _org(name: str, parent_id: uuid.UUID | None = None, org_id: uuid.UUID | None = None) -> OrganizationRead:
    return OrganizationRead(
        id=org_id or uuid.uuid4(),
        parent_id=parent_id,
        name=name,
        type=OrganizationType.MECHANICAL_CONTRACTOR,
        created_at=NOW,
        updated_at=NOW,
    )


def _chain(length: int) -> list[OrganizationRead]:
    orgs: list[OrganizationRead] = []
    parent_id: uuid.UUID | None = None
    for index in range(1, length + 1):
        org = _org(f"Level {index}", parent_id)
        orgs.append(org)
        parent_id = org.id
    return orgs


def _cycle(*names: str) -> list[OrganizationRead]:
    ids = [uuid.uuid4() for _ in names]
    return [
        _org(name, parent_id=ids[(index + 1) % len(ids)], org_id=ids[index])
        for index, name in enumerate(names)
    ]


def test_root_mid_leaf_is_valid() -> None:
    assert validate(_chain(3)) == []


def test_two_node_cycle_reported_on_cycle_member() -> None:
    orgs = _cycle("A", "B")

    errors = [error for error in validate(orgs) if error.type == "circular_reference"]

    assert len(errors) == 1
    assert errors[0].organization_id in {org.id for org in orgs}
    assert errors[0].message == "Circular reference detected in path: A -> B -> A"


def test_self_parent_is_a_cycle() -> None:
    org_id = uuid.uuid4()
    org = _org("Loop", parent_id=org_id, org_id=org_id)

    errors = detect_cycles([org])

    assert [error.organization_id for error in errors] == [org_id]
    assert errors[0].message.endswith("Loop -> Loop")


def test_tail_leading_into_cycle_reports_cycle_once() -> None:
    cycle = _cycle("A", "B", "C")
    tail = _org("Tail", parent_id=cycle[0].id)

    errors = detect_cycles([tail, *cycle])

    assert len(errors) == 1
    assert errors[0].organization_id == cycle[0].id
    assert errors[0].message == "Circular reference detected in path: Tail -> A -> B -> C -> A"


def test_separate_cycles_each_reported() -> None:
    errors = detect_cycles([*_cycle("A", "B"), *_cycle("X", "Y", "Z")])

    assert len(errors) == 2


def test_chain_of_six_exceeds_depth_on_sixth() -> None:
    orgs = _chain(6)

    errors = [error for error in validate(orgs) if error.type == "max_depth_exceeded"]

    assert [error.organization_id for error in errors] == [orgs[5].id]
    assert "maximum depth of 5 levels" in errors[0].message
    assert errors[0].message.endswith("Level 1 -> Level 2 -> Level 3 -> Level 4 -> Level 5 -> Level 6")


def test_chain_of_five_within_depth() -> None:
    assert detect_excess_depth(_chain(5), max_depth=5, walk_limit=10) == []


def test_depth_limit_is_configurable() -> None:
    orgs = _chain(3)

    errors = validate(orgs, max_depth=2)

    assert [error.organization_id for error in errors] == [orgs[2].id]


def test_long_cycle_also_reports_depth() -> None:
    orgs = _cycle("A", "B", "C", "D", "E", "F")

    errors = validate(orgs)

    assert sum(1 for error in errors if error.type == "circular_reference") == 1
    assert {error.organization_id for error in errors if error.type == "max_depth_exceeded"} == {
        org.id for org in orgs
    }


def test_walk_limit_bounds_depth_walk() -> None:
    orgs = _chain(30)

    errors = detect_excess_depth(orgs, max_depth=5, walk_limit=10)

    assert len(errors) == 25


def test_dangling_parent_reports_invalid_parent() -> None:
    missing_id = uuid.uuid4()
    orphan = _org("Orphan", parent_id=missing_id)

    errors = validate([orphan])

    assert len(errors) == 1
    assert errors[0].type == "invalid_parent"
    assert errors[0].organization_id == orphan.id
    assert errors[0].message == f"Organization Orphan has invalid parent ID: {missing_id}"


def test_dangling_parent_does_not_count_towards_depth() -> None:
    orgs = _chain(5)
    top = orgs[0].model_copy(update={"parent_id": uuid.uuid4()})

    assert detect_excess_depth([top, *orgs[1:]], max_depth=5, walk_limit=10) == []
    assert len(detect_invalid_parents([top, *orgs[1:]])) == 1


def test_all_checks_accumulate() -> None:
    orgs = [*_chain(6), *_cycle("A", "B"), _org("Orphan", parent_id=uuid.uuid4())]

    error_types = [error.type for error in validate(orgs)]

    assert error_types == ["circular_reference", "invalid_parent", "max_depth_exceeded"]

from __future__ import annotations

import uuid

from orgtree.organizations.expansion import ExpansionState


def test_toggle_flips_and_reports_new_state() -> None:
    state = ExpansionState()
    node_id = uuid.uuid4()

    assert state.toggle(node_id) is True
    assert state.is_expanded(node_id)
    assert state.toggle(node_id) is False
    assert node_id not in state


def test_expand_and_collapse_are_idempotent() -> None:
    node_id = uuid.uuid4()
    state = ExpansionState([node_id])

    state.expand(node_id)
    assert len(state) == 1

    state.collapse(node_id)
    state.collapse(node_id)
    assert len(state) == 0


def test_expanded_ids_is_a_snapshot() -> None:
    first, second = uuid.uuid4(), uuid.uuid4()
    state = ExpansionState([first])

    snapshot = state.expanded_ids
    state.expand(second)

    assert snapshot == frozenset({first})
    assert set(state) == {first, second}

    state.clear()
    assert state.expanded_ids == frozenset()

from __future__ import annotations

from collections.abc import Hashable, Iterable, Iterator


class ExpansionState:
    """Which tree nodes are currently shown expanded."""

    def __init__(self, expanded_ids: Iterable[Hashable] = ()) -> None:
        self._expanded: set[Hashable] = set(expanded_ids)

    def expand(self, organization_id: Hashable) -> None:
        self._expanded.add(organization_id)

    def collapse(self, organization_id: Hashable) -> None:
        self._expanded.discard(organization_id)

    def toggle(self, organization_id: Hashable) -> bool:
        if organization_id in self._expanded:
            self._expanded.discard(organization_id)
            return False
        self._expanded.add(organization_id)
        return True

    def is_expanded(self, organization_id: Hashable) -> bool:
        return organization_id in self._expanded

    def clear(self) -> None:
        self._expanded.clear()

    @property
    def expanded_ids(self) -> frozenset[Hashable]:
        return frozenset(self._expanded)

    def __contains__(self, organization_id: object) -> bool:
        return organization_id in self._expanded

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._expanded)

    def __len__(self) -> int:
        return len(self._expanded)

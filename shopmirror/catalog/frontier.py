"""Per-locale pending set of detail documents to fetch."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from shopmirror.catalog.types import ContentKind, ContentReference, MovieRef, TitleRef


@dataclass
class CrawlFrontier:
    """
    De-duplicated work queue keyed by (kind, identifier).

    ``pop`` hands out the smallest pending identifier of a kind, so processing
    order is sorted regardless of discovery order. A pair that was popped
    once is never handed out again, even if it is rediscovered later.
    """

    _pending: dict[ContentKind, set[str]] = field(
        default_factory=lambda: {kind: set() for kind in ContentKind}, init=False
    )
    _visited: set[tuple[ContentKind, str]] = field(default_factory=set, init=False)

    def add(self, kind: ContentKind, identifier: str) -> bool:
        if (kind, identifier) in self._visited or identifier in self._pending[kind]:
            return False
        self._pending[kind].add(identifier)
        return True

    def add_reference(self, reference: ContentReference) -> bool:
        match reference:
            case TitleRef():
                return self.add(ContentKind.TITLE, reference.identifier)
            case MovieRef():
                return self.add(ContentKind.MOVIE, reference.identifier)
            case _:
                raise TypeError(f"Unsupported content reference {reference!r}")

    def extend(self, references: Iterable[ContentReference]) -> int:
        return sum(1 for reference in references if self.add_reference(reference))

    def pop(self, kind: ContentKind) -> Optional[str]:
        pending = self._pending[kind]
        if not pending:
            return None
        identifier = min(pending)
        pending.remove(identifier)
        self._visited.add((kind, identifier))
        return identifier

    def pending(self, kind: ContentKind) -> list[str]:
        return sorted(self._pending[kind])

    def visited(self, kind: ContentKind, identifier: str) -> bool:
        return (kind, identifier) in self._visited

    def is_empty(self) -> bool:
        return not any(self._pending.values())

    def __len__(self) -> int:
        return sum(len(ids) for ids in self._pending.values())

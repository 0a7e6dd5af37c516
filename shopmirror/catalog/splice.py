"""Raw-text reassembly of paginated listing documents.

Pages are cut at literal markers instead of being re-serialized, so every
retained fragment keeps the server's exact formatting. Nothing here looks at
parsed data.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

from shopmirror.errors import ProtocolViolation


@dataclass(frozen=True)
class EnvelopeMarkers:
    list_tag: str = "contents"
    # Closing tag that must follow the list envelope, e.g. "</eshop>" or "</directory>"
    parent_close: str = "</eshop>"

    @property
    def open_pattern(self) -> re.Pattern[str]:
        return re.compile(rf"<{re.escape(self.list_tag)}(?:\s[^>]*)?/?>")

    @property
    def close_tag(self) -> str:
        return f"</{self.list_tag}>"


@dataclass(frozen=True)
class PageFragments:
    header: str
    inner: str
    footer: str


def split_page(text: str, markers: EnvelopeMarkers, context: str) -> PageFragments:
    """Cut one page into header / inner list markup / footer."""
    opening = markers.open_pattern.search(text)
    if opening is None:
        raise ProtocolViolation(f"{context}: opening <{markers.list_tag}> marker not found in response")

    if opening.group(0).endswith("/>"):
        inner_end = close_end = opening.end()
    else:
        inner_end = text.find(markers.close_tag, opening.end())
        if inner_end == -1:
            raise ProtocolViolation(f"{context}: closing {markers.close_tag} marker not found in response")
        close_end = inner_end + len(markers.close_tag)

    footer = text[close_end:]
    if markers.parent_close not in footer:
        raise ProtocolViolation(f"{context}: closing {markers.parent_close} marker not found in response")

    return PageFragments(
        header=text[: opening.start()],
        inner=text[opening.end():inner_end],
        footer=footer,
    )


@dataclass
class MergedDocumentBuilder:
    """Accumulates page fragments and emits one document with a synthetic envelope."""

    markers: EnvelopeMarkers
    context: str
    _header: Optional[str] = field(default=None, init=False)
    _footer: str = field(default="", init=False)
    _inner: List[str] = field(default_factory=list, init=False)

    def add_page(self, text: str) -> None:
        fragments = split_page(text, self.markers, self.context)
        if self._header is None:
            self._header = fragments.header
        self._inner.append(fragments.inner)
        self._footer = fragments.footer

    @property
    def page_count(self) -> int:
        return len(self._inner)

    def build(self, total: int) -> str:
        if self._header is None:
            raise ProtocolViolation(f"{self.context}: no pages to merge")
        tag = self.markers.list_tag
        return f'{self._header}<{tag} total="{total}">{"".join(self._inner)}</{tag}>{self._footer}'

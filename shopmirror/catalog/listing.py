"""Reassembles offset-paginated listing endpoints into one document."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from shopmirror import logger
from shopmirror.catalog.client import FetchResult
from shopmirror.catalog.parsers import is_error_document, parse_listing_page
from shopmirror.catalog.splice import EnvelopeMarkers, MergedDocumentBuilder
from shopmirror.catalog.types import ListingPage, Locale, MergedListing, MovieRef, TitleRef
from shopmirror.errors import FetchRejected, ProtocolViolation


class ListingSource(Protocol):
    """The part of ``CatalogClient`` the assembler uses."""

    async def get_samurai(self, locale: Locale, path: str, offset: int | None = None) -> FetchResult:
        ...


@dataclass(frozen=True)
class ListingEndpoint:
    path: str
    contents_path: str
    markers: EnvelopeMarkers

    @classmethod
    def root(cls) -> "ListingEndpoint":
        return cls("contents", "contents", EnvelopeMarkers(parent_close="</eshop>"))

    @classmethod
    def directory(cls, directory_id: str) -> "ListingEndpoint":
        return cls(f"directory/{directory_id}", "directory/contents", EnvelopeMarkers(parent_close="</directory>"))

    @classmethod
    def ranking(cls, ranking_id: str) -> "ListingEndpoint":
        return cls(f"ranking/{ranking_id}", "ranking/contents", EnvelopeMarkers(parent_close="</ranking>"))


def validate_page(page: ListingPage, requested_offset: int, context: str) -> None:
    """Hard-fail checks on one page; any mismatch means the API changed shape."""
    if page.offset != requested_offset:
        raise ProtocolViolation(
            f"{context}: requested offset {requested_offset} but server reported {page.offset}"
        )
    if len(page.entries) != page.length:
        raise ProtocolViolation(
            f"{context}: page reports length {page.length} but carries {len(page.entries)} entries"
        )
    if len(page.entries) > page.total:
        raise ProtocolViolation(
            f"{context}: page carries {len(page.entries)} entries but total is {page.total}"
        )
    if page.total > 0:
        if not page.entries:
            raise ProtocolViolation(
                f"{context}: empty page at offset {requested_offset} before total {page.total} was reached"
            )
        expected_index = str(requested_offset + 1)
        if page.entries[0].index != expected_index:
            raise ProtocolViolation(
                f"{context}: first entry has index {page.entries[0].index!r}, expected {expected_index!r}"
            )
        if requested_offset + len(page.entries) > page.total:
            raise ProtocolViolation(
                f"{context}: page at offset {requested_offset} runs past total {page.total}"
            )


def _describe(page: ListingPage, locale: Locale) -> None:
    for entry in page.entries:
        reference = entry.reference
        match reference:
            case TitleRef():
                logger.info(f"[{locale}]   Title {reference.identifier}: {reference.name}")
            case MovieRef():
                logger.info(f"[{locale}]   Movie {reference.identifier}: {reference.name}")
            case _:
                raise TypeError(f"Unsupported content reference {reference!r}")


class ListingAssembler:
    """Drives repeated offset requests for one locale until a listing is complete."""

    def __init__(self, client: ListingSource, locale: Locale) -> None:
        self.client = client
        self.locale = locale

    async def assemble(self, endpoint: ListingEndpoint) -> MergedListing:
        context = f"[{self.locale}] {endpoint.path}"
        builder = MergedDocumentBuilder(endpoint.markers, context)
        merged = MergedListing(endpoint=endpoint.path, total=0)
        offset = 0

        while True:
            try:
                response = await self.client.get_samurai(self.locale, endpoint.path, offset=offset)
            except FetchRejected as exc:
                if offset == 0:
                    logger.warning(f"{context}: HTTP {exc.status}, treating listing as empty")
                    return merged
                raise
            text = response.text
            if offset == 0 and is_error_document(text):
                logger.warning(f"{context}: service returned an error document, treating listing as empty")
                return merged

            page = parse_listing_page(text, endpoint.contents_path, context)
            validate_page(page, offset, context)
            if page.total == 0:
                logger.info(f"{context}: 0 entries")
                builder.add_page(text)
                merged.document = builder.build(0)
                merged.pages = builder.page_count
                return merged

            last = offset + len(page.entries) - 1
            logger.info(f"{context}: entries {offset}-{last}, {page.total} total")
            _describe(page, self.locale)
            builder.add_page(text)
            merged.entries.extend(page.entries)
            merged.total = page.total

            offset += len(page.entries)
            if offset == page.total:
                break

        merged.document = builder.build(merged.total)
        merged.pages = builder.page_count
        return merged


def listing_from_document(endpoint: ListingEndpoint, text: str, locale: Locale) -> MergedListing:
    """Rebuild a ``MergedListing`` from a document previously written by ``assemble``."""
    context = f"[{locale}] {endpoint.path} (stored)"
    page = parse_listing_page(text, endpoint.contents_path, context)
    validate_page(page, 0, context)
    return MergedListing(
        endpoint=endpoint.path,
        total=page.total,
        entries=list(page.entries),
        document=text,
        pages=0,
    )

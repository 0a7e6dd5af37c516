"""Shared data structures for the catalog crawl."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union


class ContentKind(str, Enum):
    """Detail-document kinds; the value is the API path segment."""

    TITLE = "title"
    MOVIE = "movie"
    # The root listing covers movies, but never demos.
    DEMO = "demo"


@dataclass(frozen=True, order=True)
class Locale:
    region: str
    language: str

    def __str__(self) -> str:
        return f"{self.region}/{self.language}"


@dataclass(frozen=True)
class TitleRef:
    identifier: str
    name: str = ""

    kind = ContentKind.TITLE


@dataclass(frozen=True)
class MovieRef:
    identifier: str
    name: str = ""

    kind = ContentKind.MOVIE


# A listing entry is exactly one of these two.
ContentReference = Union[TitleRef, MovieRef]


@dataclass(frozen=True)
class ListingEntry:
    index: str
    reference: ContentReference


@dataclass
class ListingPage:
    offset: int
    length: int
    total: int
    entries: List[ListingEntry] = field(default_factory=list)


@dataclass
class MergedListing:
    endpoint: str
    total: int
    entries: List[ListingEntry] = field(default_factory=list)
    document: str = ""
    pages: int = 0

    @property
    def references(self) -> List[ContentReference]:
        return [entry.reference for entry in self.entries]


@dataclass(frozen=True)
class Resource:
    """A binary asset referenced by a detail document."""

    label: str
    url: str


@dataclass
class MovieFile:
    url: str


@dataclass
class MovieDetail:
    identifier: str
    name: str
    banner_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    rating_icons: List[str] = field(default_factory=list)
    files: List[MovieFile] = field(default_factory=list)

    def resources(self) -> List[Resource]:
        items: List[Resource] = []
        if self.banner_url:
            items.append(Resource("banner", self.banner_url))
        if self.thumbnail_url:
            items.append(Resource("thumbnail", self.thumbnail_url))
        items.extend(Resource("rating icon", url) for url in self.rating_icons)
        return items


@dataclass
class Screenshot:
    # (screen, url); screen is "upper"/"lower" for 3DS and None elsewhere
    images: List[tuple[Optional[str], str]] = field(default_factory=list)
    thumbnails: List[str] = field(default_factory=list)


@dataclass
class TitleDetail:
    identifier: str
    name: str
    icon_url: Optional[str] = None
    banner_url: Optional[str] = None
    thumbnails: List[str] = field(default_factory=list)
    rating_icons: List[str] = field(default_factory=list)
    screenshots: List[Screenshot] = field(default_factory=list)
    aoc_available: bool = False
    demo_available: bool = False
    demo_ids: List[str] = field(default_factory=list)
    movies: List[MovieDetail] = field(default_factory=list)

    def resources(self) -> List[Resource]:
        items: List[Resource] = []
        if self.icon_url:
            items.append(Resource("icon", self.icon_url))
        if self.banner_url:
            items.append(Resource("banner", self.banner_url))
        items.extend(Resource("thumbnail", url) for url in self.thumbnails)
        items.extend(Resource("rating icon", url) for url in self.rating_icons)
        for shot in self.screenshots:
            for screen, url in shot.images:
                items.append(Resource(f"{screen} screenshot" if screen else "screenshot", url))
            items.extend(Resource("thumbnail", url) for url in shot.thumbnails)
        return items


@dataclass
class DemoDetail:
    identifier: str
    name: str
    icon_url: Optional[str] = None
    rating_icons: List[str] = field(default_factory=list)

    def resources(self) -> List[Resource]:
        items: List[Resource] = []
        if self.icon_url:
            items.append(Resource("icon", self.icon_url))
        items.extend(Resource("rating icon", url) for url in self.rating_icons)
        return items


@dataclass
class GroupDetail:
    """Directory or ranking header: the part of the document outside its contents."""

    identifier: str
    name: str
    icon_url: Optional[str] = None
    banner_url: Optional[str] = None

    def resources(self) -> List[Resource]:
        items: List[Resource] = []
        if self.icon_url:
            items.append(Resource("icon", self.icon_url))
        if self.banner_url:
            items.append(Resource("banner", self.banner_url))
        return items


DetailDocument = Union[TitleDetail, MovieDetail, DemoDetail]


@dataclass
class CrawlReport:
    """Per-locale counters used for the run summary and the exit status."""

    locale: Locale
    documents_fetched: int = 0
    documents_reused: int = 0
    listings_merged: int = 0
    resources_downloaded: int = 0
    resources_skipped: int = 0
    resources_failed: List[str] = field(default_factory=list)
    aborted: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.aborted is None and not self.resources_failed

    def summary(self) -> str:
        state = f"aborted ({self.aborted})" if self.aborted else "complete"
        return (
            f"[{self.locale}] Crawl {state}: documents={self.documents_fetched}, "
            f"reused={self.documents_reused}, listings={self.listings_merged}, "
            f"downloaded={self.resources_downloaded}, skipped={self.resources_skipped}, "
            f"failed={len(self.resources_failed)}"
        )

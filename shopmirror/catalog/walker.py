"""Per-locale crawl of the content graph: listings → titles → movies/demos → media."""

from __future__ import annotations

from pathlib import Path
from typing import Awaitable, Callable, List

from shopmirror import logger
from shopmirror.catalog.client import FetchResult
from shopmirror.catalog.context import CrawlContext, CrawlOptions
from shopmirror.catalog.frontier import CrawlFrontier
from shopmirror.catalog.listing import ListingAssembler, ListingEndpoint, listing_from_document
from shopmirror.catalog.parsers import (
    is_error_document,
    parse_demo,
    parse_group,
    parse_group_list,
    parse_movie,
    parse_title,
)
from shopmirror.catalog.types import ContentKind, CrawlReport, Locale, MergedListing
from shopmirror.errors import FetchRejected, ProtocolViolation

# list endpoint -> (list tag, item tag, per-item listing endpoint factory)
_GROUP_LISTS: dict[str, tuple[str, str, Callable[[str], ListingEndpoint]]] = {
    "directories": ("directories", "directory", ListingEndpoint.directory),
    "rankings": ("rankings", "ranking", ListingEndpoint.ranking),
}


class ContentGraphWalker:
    """
    Crawls one locale to completion.

    Phases run in a fixed order: static endpoints, seeding, directory and
    ranking expansion, then title, movie and demo detail fetches. The
    frontier guarantees each (kind, id) detail endpoint is requested at most
    once. Any ``FetchError`` escapes ``run`` and aborts the locale.
    """

    def __init__(self, context: CrawlContext, locale: Locale, options: CrawlOptions) -> None:
        self.context = context
        self.locale = locale
        self.options = options
        self.frontier = CrawlFrontier()
        self.report = CrawlReport(locale)
        self.assembler = ListingAssembler(context.client, locale)

    @property
    def _ninja_enabled(self) -> bool:
        return self.options.fetch_metadata and not self.options.omit_ninja

    def _log(self, message: str) -> None:
        logger.info(f"[{self.locale}] {message}")

    async def run(self) -> CrawlReport:
        if self.options.fetch_metadata and not self.options.explicit_seed:
            await self._fetch_static_endpoints()

        groups = await self._seed()
        for endpoint in groups:
            await self._expand_group(endpoint)

        while (title_id := self.frontier.pop(ContentKind.TITLE)) is not None:
            await self._visit_title(title_id)
        while (movie_id := self.frontier.pop(ContentKind.MOVIE)) is not None:
            await self._visit_movie(movie_id)
        while (demo_id := self.frontier.pop(ContentKind.DEMO)) is not None:
            await self._visit_demo(demo_id)

        self._log("Frontier exhausted")
        return self.report

    # Documents

    def _reuses(self, detail: bool) -> bool:
        """
        Whether a stored document may stand in for a request.

        Detail documents (titles, movies, demos and their per-id companions)
        are reused in every mode so an interrupted crawl resumes where it
        stopped. Listings and static endpoints are only reused by media-only
        runs, since they are how new content is discovered. ``refresh``
        disables reuse entirely.
        """
        if self.options.refresh:
            return False
        return detail or not self.options.fetch_metadata

    async def _document(
        self, path: Path, fetch: Callable[[], Awaitable[FetchResult]], detail: bool = False
    ) -> str:
        """Fetch and store a raw document, or return the stored copy when it may be reused."""
        store = self.context.store
        if self._reuses(detail):
            stored = store.read_text(path)
            if stored is not None:
                self.report.documents_reused += 1
                return stored
        result = await fetch()
        text = result.text
        store.write_text(path, text)
        self.report.documents_fetched += 1
        return text

    async def _listing(self, endpoint: ListingEndpoint) -> MergedListing:
        store = self.context.store
        path = store.listing_path(self.locale, endpoint.path)
        if self._reuses(detail=False):
            stored = store.read_text(path)
            if stored is not None:
                self.report.documents_reused += 1
                return listing_from_document(endpoint, stored, self.locale)
        listing = await self.assembler.assemble(endpoint)
        if listing.document:
            store.write_text(path, listing.document)
            self.report.listings_merged += 1
        return listing

    async def _fetch_static_endpoints(self) -> None:
        client = self.context.client
        for endpoint in self.options.endpoints:
            self._log(f"Fetching endpoint {endpoint}")
            await self._document(
                self.context.store.endpoint_path(self.locale, endpoint),
                lambda endpoint=endpoint: client.get_samurai(self.locale, endpoint),
            )

    # Seeding

    async def _seed(self) -> List[ListingEndpoint]:
        if self.options.explicit_seed:
            for title_id in self.options.title_ids:
                self.frontier.add(ContentKind.TITLE, title_id)
            for movie_id in self.options.movie_ids:
                self.frontier.add(ContentKind.MOVIE, movie_id)
            return [ListingEndpoint.directory(directory_id) for directory_id in self.options.directory_ids]

        root = await self._listing(ListingEndpoint.root())
        added = self.frontier.extend(root.references)
        self._log(f"Root listing seeded {added} item(s)")

        groups: List[ListingEndpoint] = []
        for list_endpoint in _GROUP_LISTS:
            groups.extend(await self._group_list(list_endpoint))
        return groups

    async def _group_list(self, list_endpoint: str) -> List[ListingEndpoint]:
        """Directory/ranking identifiers; an error-shaped response means there are none."""
        list_tag, item_tag, factory = _GROUP_LISTS[list_endpoint]
        client = self.context.client
        try:
            text = await self._document(
                self.context.store.endpoint_path(self.locale, list_endpoint),
                lambda: client.get_samurai(self.locale, list_endpoint),
            )
        except FetchRejected as exc:
            self._log(f"{list_endpoint}: HTTP {exc.status}, assuming none")
            return []
        if is_error_document(text):
            self._log(f"{list_endpoint}: service returned an error document, assuming none")
            return []

        groups = parse_group_list(text, list_tag, item_tag, f"[{self.locale}] {list_endpoint}")
        for group in groups:
            self._log(f"{item_tag.capitalize()} {group.identifier}: {group.name}")
        return [factory(group.identifier) for group in groups]

    async def _expand_group(self, endpoint: ListingEndpoint) -> None:
        self._log(f"Fetching content info for {endpoint.path}")
        listing = await self._listing(endpoint)
        added = self.frontier.extend(listing.references)
        self._log(f"{endpoint.path}: {listing.total} entries, {added} new")

        if self.options.fetch_media and listing.document:
            tag = endpoint.path.split("/", 1)[0]
            header = parse_group(listing.document, tag, f"[{self.locale}] {endpoint.path}")
            await self.context.media.fetch_all(header.resources(), self.report)

    # Details

    async def _visit_title(self, title_id: str) -> None:
        self._log(f"Fetching content info for title {title_id}")
        client, store = self.context.client, self.context.store
        text = await self._document(
            store.detail_path(self.locale, ContentKind.TITLE, title_id),
            lambda: client.get_samurai(self.locale, f"title/{title_id}"),
            detail=True,
        )
        title = parse_title(text, f"[{self.locale}] title {title_id}")

        if self._ninja_enabled:
            await self._fetch_ec_info(title_id)
            self._log("  Fetching price information")
            # Not-purchasable ids just yield an empty <online_prices/>
            await self._document(
                store.price_path(self.locale, title_id),
                lambda: client.get_ninja(self.locale, "titles/online_prices", **{"title[]": title_id}),
                detail=True,
            )

        if title.aoc_available and self.options.fetch_metadata:
            self._log("  Fetching DLC list")
            await self._document(
                store.aoc_path(self.locale, title_id),
                lambda: client.get_samurai(self.locale, f"title/{title_id}/aocs"),
                detail=True,
            )

        if title.demo_available:
            if not title.demo_ids:
                raise ProtocolViolation(f"[{self.locale}] title {title_id} declares a demo but lists no demo ids")
            for demo_id in title.demo_ids:
                self.frontier.add(ContentKind.DEMO, demo_id)
        for movie in title.movies:
            self.frontier.add(ContentKind.MOVIE, movie.identifier)

        if self.options.fetch_media:
            await self.context.media.fetch_all(title.resources(), self.report)

    async def _visit_movie(self, movie_id: str) -> None:
        self._log(f"Fetching content info for movie {movie_id}")
        client, store = self.context.client, self.context.store
        text = await self._document(
            store.detail_path(self.locale, ContentKind.MOVIE, movie_id),
            lambda: client.get_samurai(self.locale, f"movie/{movie_id}"),
            detail=True,
        )
        movie = parse_movie(text, f"[{self.locale}] movie {movie_id}")
        if self.options.fetch_media:
            files = movie.files if self.options.fetch_videos else []
            await self.context.media.fetch_all(movie.resources(), self.report, files)

    async def _visit_demo(self, demo_id: str) -> None:
        self._log(f"Fetching content info for demo {demo_id}")
        client, store = self.context.client, self.context.store
        text = await self._document(
            store.detail_path(self.locale, ContentKind.DEMO, demo_id),
            lambda: client.get_samurai(self.locale, f"demo/{demo_id}"),
            detail=True,
        )
        demo = parse_demo(text, f"[{self.locale}] demo {demo_id}")
        # Demos and titles share the id-mapping endpoint
        if self._ninja_enabled:
            await self._fetch_ec_info(demo_id)
        if self.options.fetch_media:
            await self.context.media.fetch_all(demo.resources(), self.report)

    async def _fetch_ec_info(self, content_id: str) -> None:
        self._log("  Fetching title id mapping")
        client, store = self.context.client, self.context.store
        await self._document(
            store.ec_info_path(self.locale, content_id),
            lambda: client.get_ninja(self.locale, f"title/{content_id}/ec_info"),
            detail=True,
        )

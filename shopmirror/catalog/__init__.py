"""Catalog crawl engine: fetcher, listing assembler, graph walker and media cache."""

from .client import CatalogClient, FetchResult
from .context import CrawlContext, CrawlOptions, open_context
from .frontier import CrawlFrontier
from .listing import ListingAssembler, ListingEndpoint
from .locales import crawl_locales, enumerate_locales
from .media import MediaFetcher, url_to_filename
from .resource_cache import ResourceCache
from .store import MirrorStore
from .types import ContentKind, CrawlReport, Locale, MergedListing
from .walker import ContentGraphWalker

__all__ = [
    "CatalogClient",
    "ContentGraphWalker",
    "ContentKind",
    "CrawlContext",
    "CrawlFrontier",
    "CrawlOptions",
    "CrawlReport",
    "FetchResult",
    "ListingAssembler",
    "ListingEndpoint",
    "Locale",
    "MediaFetcher",
    "MergedListing",
    "MirrorStore",
    "ResourceCache",
    "crawl_locales",
    "enumerate_locales",
    "open_context",
    "url_to_filename",
]

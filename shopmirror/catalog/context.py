"""Process-wide crawl state, constructed once and passed explicitly."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Tuple

from shopmirror import logger
from shopmirror.catalog.client import CatalogClient
from shopmirror.catalog.media import MediaFetcher
from shopmirror.catalog.resource_cache import ResourceCache
from shopmirror.catalog.store import MirrorStore
from shopmirror.config import MirrorConfig


@dataclass(frozen=True)
class CrawlOptions:
    """What one run fetches; explicit ids bypass discovery."""

    fetch_metadata: bool = True
    fetch_media: bool = True
    fetch_videos: bool = False
    omit_ninja: bool = False
    refresh: bool = False
    endpoints: Tuple[str, ...] = ()
    title_ids: Tuple[str, ...] = ()
    movie_ids: Tuple[str, ...] = ()
    directory_ids: Tuple[str, ...] = ()

    @property
    def explicit_seed(self) -> bool:
        return bool(self.title_ids or self.movie_ids or self.directory_ids)


@dataclass
class CrawlContext:
    """Owns the client, the resource cache and its log handle, and the store."""

    config: MirrorConfig
    client: CatalogClient
    cache: ResourceCache
    store: MirrorStore
    media: MediaFetcher = field(init=False)

    def __post_init__(self) -> None:
        self.media = MediaFetcher(self.client, self.cache, self.store, ffmpeg=self.config.ffmpeg)

    async def close(self) -> None:
        await self.client.close()
        self.cache.close()


@asynccontextmanager
async def open_context(config: MirrorConfig) -> AsyncIterator[CrawlContext]:
    store = MirrorStore(config.output_dir)
    cache = ResourceCache.load(store.request_log)
    logger.info(f"Mirror root {store.root} ({len(cache)} known resource(s))")
    context = CrawlContext(
        config=config,
        client=CatalogClient(config.services, config.fetch),
        cache=cache,
        store=store,
    )
    try:
        yield context
    finally:
        await context.close()

"""Download of images and videos referenced by detail documents."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import urlsplit

import aiohttp

from shopmirror import logger
from shopmirror.catalog.client import CatalogClient
from shopmirror.catalog.resource_cache import ResourceCache
from shopmirror.catalog.store import MirrorStore
from shopmirror.catalog.transcode import VIDEO_SUFFIX, convert_to_mp4, converted_path
from shopmirror.catalog.types import CrawlReport, MovieFile, Resource
from shopmirror.errors import FetchError, ProtocolViolation, UnknownResourceHost

CHUNK_SIZE = 1 << 16

# host -> (path prefix stripped from the URL, local directory)
_IMAGE_HOSTS: dict[str, tuple[str, str]] = {
    "kanzashi-ctr.cdn.nintendo.net": ("i/", "kanzashi"),
    "kanzashi-wup.cdn.nintendo.net": ("i/", "kanzashi"),
}
_MOVIE_HOSTS: dict[str, tuple[str, str]] = {
    "kanzashi-movie-ctr.cdn.nintendo.net": ("m/", "kanzashi-movie"),
}


class ResourceOutcome(str, Enum):
    CACHED = "cached"
    UNCHANGED = "unchanged"
    DOWNLOADED = "downloaded"


def _map_url(url: str, hosts: dict[str, tuple[str, str]]) -> str:
    parts = urlsplit(url)
    if parts.scheme != "https" or parts.netloc not in hosts or parts.query:
        raise UnknownResourceHost(url)
    prefix, directory = hosts[parts.netloc]
    path = parts.path.lstrip("/")
    if not path.startswith(prefix) or len(path) == len(prefix):
        raise UnknownResourceHost(url)
    relative = path[len(prefix):]
    if any(segment in ("", ".", "..") for segment in relative.split("/")):
        raise UnknownResourceHost(url)
    return f"{directory}/{relative}"


def url_to_filename(url: str) -> str:
    """Stable relative path for an image URL."""
    return _map_url(url, _IMAGE_HOSTS)


def movie_url_to_filename(url: str) -> str:
    """Stable relative path for a video container URL."""
    filename = _map_url(url, _MOVIE_HOSTS)
    if not filename.endswith(VIDEO_SUFFIX):
        raise ProtocolViolation(f"Movie file {url} is not a {VIDEO_SUFFIX} container")
    return filename


async def _stream_to(response: aiohttp.ClientResponse, path: Path) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".part")
    written = 0
    try:
        with open(tmp, "wb") as handle:
            async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                handle.write(chunk)
                written += len(chunk)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    os.replace(tmp, path)
    return written


def _format_size(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / 1024 / 1024:.1f} MiB"
    return f"{size // 1024} KiB"


class MediaFetcher:
    """Fetches resources, skipping files the cache or the server says are unchanged."""

    def __init__(
        self,
        client: CatalogClient,
        cache: ResourceCache,
        store: MirrorStore,
        ffmpeg: str = "ffmpeg",
    ) -> None:
        self.client = client
        self.cache = cache
        self.store = store
        self.ffmpeg = ffmpeg

    async def fetch_resource(self, resource: Resource) -> ResourceOutcome:
        path = self.store.media_path(url_to_filename(resource.url))
        on_disk = self.store.size_on_disk(path)
        logger.info(f"  Fetching {resource.label} from {resource.url}")
        if self.cache.is_current(resource.url, on_disk):
            logger.info("    ... cached, skipping")
            return ResourceOutcome.CACHED
        return await self._download(resource.url, path, on_disk)

    async def fetch_movie_file(self, movie_file: MovieFile) -> ResourceOutcome:
        path = self.store.media_path(movie_url_to_filename(movie_file.url))
        on_disk = self.store.size_on_disk(path)
        logger.info(f"  Fetching movie from {movie_file.url}")
        if self.cache.is_current(movie_file.url, on_disk):
            outcome = ResourceOutcome.CACHED
        else:
            outcome = await self._download(movie_file.url, path, on_disk)

        # A container only counts as complete once its converted companion exists.
        if outcome is ResourceOutcome.DOWNLOADED or not converted_path(path).exists():
            convert_to_mp4(path, ffmpeg=self.ffmpeg, strict=False)
        elif outcome is ResourceOutcome.CACHED:
            logger.info("    ... cached, skipping")
        return outcome

    async def _download(self, url: str, path: Path, on_disk: Optional[int]) -> ResourceOutcome:
        cache = self.cache

        async def _parse(response: aiohttp.ClientResponse) -> ResourceOutcome:
            length = response.content_length
            headers = dict(response.headers)
            # Encoded bodies arrive decompressed; the wire length is not the file size
            encoded = "Content-Encoding" in response.headers
            if on_disk is not None and length is not None and not encoded and on_disk == length:
                logger.info(f"    ... already exists on disk ({_format_size(length)}), skipping")
                cache.record(url, length, headers)
                return ResourceOutcome.UNCHANGED
            written = await _stream_to(response, path)
            if length is not None and not encoded and written != length:
                raise aiohttp.ClientPayloadError(f"expected {length} bytes from {url}, got {written}")
            cache.record(url, written if encoded else length, headers)
            return ResourceOutcome.DOWNLOADED

        return await self.client.request(url, None, _parse, self.client.resource_policy)

    async def fetch_all(
        self,
        resources: Iterable[Resource],
        report: CrawlReport,
        movie_files: Iterable[MovieFile] = (),
    ) -> None:
        """Fetch every resource; one that exhausts its retries is reported, not fatal."""
        pending: list[Resource | MovieFile] = [*resources, *movie_files]
        for item in pending:
            try:
                if isinstance(item, MovieFile):
                    outcome = await self.fetch_movie_file(item)
                else:
                    outcome = await self.fetch_resource(item)
            except FetchError as exc:
                logger.error(f"[{report.locale}] {exc}")
                report.resources_failed.append(item.url)
                continue
            if outcome is ResourceOutcome.DOWNLOADED:
                report.resources_downloaded += 1
            else:
                report.resources_skipped += 1

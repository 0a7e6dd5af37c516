from __future__ import annotations

import asyncio
import json
from pathlib import Path

import aiohttp
import pytest
from aiohttp import RequestInfo
from multidict import CIMultiDict
from yarl import URL

from shopmirror.catalog import media, resilience
from shopmirror.catalog.client import CatalogClient
from shopmirror.catalog.media import MediaFetcher, ResourceOutcome, movie_url_to_filename, url_to_filename
from shopmirror.catalog.resource_cache import ResourceCache
from shopmirror.catalog.store import MirrorStore
from shopmirror.catalog.types import CrawlReport, Locale, MovieFile, Resource
from shopmirror.config import FetchConfig, ServiceConfig
from shopmirror.errors import ProtocolViolation, UnknownResourceHost

BANNER = "https://kanzashi-ctr.cdn.nintendo.net/i/a1/banner.jpg"
TRAILER = "https://kanzashi-movie-ctr.cdn.nintendo.net/m/m1/trailer.moflex"


class _FakeContent:
    def __init__(self, body: bytes) -> None:
        self._body = body

    async def iter_chunked(self, size: int):
        for start in range(0, len(self._body), size):
            yield self._body[start : start + size]


class _FakeResponseCtx:
    def __init__(self, *, status: int = 200, body: bytes = b"", headers: dict[str, str] | None = None) -> None:
        self.status = status
        self.headers = CIMultiDict(headers if headers is not None else {"Content-Length": str(len(body))})
        self.content = _FakeContent(body)
        self.request_info = RequestInfo(URL(BANNER), "GET", CIMultiDict(), URL(BANNER))
        self.history = ()
        self._body = body

    @property
    def content_length(self) -> int | None:
        value = self.headers.get("Content-Length")
        return int(value) if value is not None else None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def text(self, errors: str = "strict") -> str:
        return self._body.decode("utf-8", errors=errors)


class _RecordingSession:
    def __init__(self, responses: dict[str, list[_FakeResponseCtx]]) -> None:
        self.closed = False
        self._responses = responses
        self.calls: list[str] = []

    def get(self, url, params=None):
        self.calls.append(url)
        queue = self._responses[url]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def close(self) -> None:
        self.closed = True


def _fetcher(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    session: _RecordingSession,
    cache: ResourceCache | None = None,
) -> MediaFetcher:
    client = CatalogClient(
        ServiceConfig(),
        FetchConfig(retry_delay_seconds=0.0, resource_max_attempts=2, min_interval_seconds=0.0),
    )

    async def _fake_ensure_session():
        return session

    async def _fake_enforce(_url: str) -> None:
        return None

    async def _no_sleep(_delay: float) -> None:
        return None

    monkeypatch.setattr(client, "_ensure_session", _fake_ensure_session)
    monkeypatch.setattr(client, "_enforce_interval", _fake_enforce)
    monkeypatch.setattr(resilience.asyncio, "sleep", _no_sleep)
    store = MirrorStore(tmp_path)
    return MediaFetcher(client, cache or ResourceCache(store.request_log), store)


def test_url_to_filename_maps_known_hosts() -> None:
    assert url_to_filename(BANNER) == "kanzashi/a1/banner.jpg"
    assert url_to_filename("https://kanzashi-wup.cdn.nintendo.net/i/x/y.jpg") == "kanzashi/x/y.jpg"
    assert movie_url_to_filename(TRAILER) == "kanzashi-movie/m1/trailer.moflex"


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/i/a.jpg",
        "http://kanzashi-ctr.cdn.nintendo.net/i/a.jpg",
        "https://kanzashi-ctr.cdn.nintendo.net/x/a.jpg",
        "https://kanzashi-ctr.cdn.nintendo.net/i/../etc/passwd",
        "https://kanzashi-ctr.cdn.nintendo.net/i/a.jpg?size=2",
        "https://kanzashi-ctr.cdn.nintendo.net/i/",
    ],
)
def test_unrecognized_urls_are_rejected(url: str) -> None:
    with pytest.raises(UnknownResourceHost):
        url_to_filename(url)


def test_movie_must_be_moflex_container() -> None:
    with pytest.raises(ProtocolViolation, match="moflex"):
        movie_url_to_filename("https://kanzashi-movie-ctr.cdn.nintendo.net/m/m1/trailer.mp4")


def test_same_banner_from_two_titles_downloads_once(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    session = _RecordingSession({BANNER: [_FakeResponseCtx(body=b"banner-bytes")]})
    fetcher = _fetcher(tmp_path, monkeypatch, session)
    report = CrawlReport(Locale("US", "en"))

    asyncio.run(fetcher.fetch_all([Resource("banner", BANNER)], report))
    asyncio.run(fetcher.fetch_all([Resource("banner", BANNER)], report))
    fetcher.cache.close()

    assert session.calls == [BANNER]
    assert (tmp_path / "kanzashi" / "a1" / "banner.jpg").read_bytes() == b"banner-bytes"
    records = [json.loads(line) for line in (tmp_path / "requests.log").read_text(encoding="utf-8").splitlines()]
    assert [record["url"] for record in records] == [BANNER]
    assert (report.resources_downloaded, report.resources_skipped) == (1, 1)


def test_matching_file_on_disk_is_not_rewritten(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "kanzashi" / "a1" / "banner.jpg"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"old-bytes!!!")
    session = _RecordingSession({BANNER: [_FakeResponseCtx(body=b"new-bytes!!!")]})
    fetcher = _fetcher(tmp_path, monkeypatch, session)

    outcome = asyncio.run(fetcher.fetch_resource(Resource("banner", BANNER)))

    assert outcome is ResourceOutcome.UNCHANGED
    assert target.read_bytes() == b"old-bytes!!!"
    assert fetcher.cache.lookup(BANNER) == 12


def test_cache_replayed_from_previous_run_skips_network(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "kanzashi" / "a1" / "banner.jpg"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"12345")
    (tmp_path / "requests.log").write_text(
        json.dumps({"url": BANNER, "headers": {"content-length": "5"}}) + "\n", encoding="utf-8"
    )
    session = _RecordingSession({})
    fetcher = _fetcher(tmp_path, monkeypatch, session, ResourceCache.load(tmp_path / "requests.log"))

    outcome = asyncio.run(fetcher.fetch_resource(Resource("banner", BANNER)))

    assert outcome is ResourceOutcome.CACHED
    assert session.calls == []


def test_truncated_body_is_retried(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    session = _RecordingSession(
        {
            BANNER: [
                _FakeResponseCtx(body=b"short", headers={"Content-Length": "10"}),
                _FakeResponseCtx(body=b"0123456789"),
            ]
        }
    )
    fetcher = _fetcher(tmp_path, monkeypatch, session)

    outcome = asyncio.run(fetcher.fetch_resource(Resource("banner", BANNER)))

    assert outcome is ResourceOutcome.DOWNLOADED
    assert len(session.calls) == 2
    assert (tmp_path / "kanzashi" / "a1" / "banner.jpg").read_bytes() == b"0123456789"


def test_exhausted_resource_is_reported_and_crawl_continues(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    icon = "https://kanzashi-ctr.cdn.nintendo.net/i/a1/icon.jpg"
    session = _RecordingSession(
        {
            BANNER: [_FakeResponseCtx(status=503, body=b"busy")],
            icon: [_FakeResponseCtx(body=b"icon")],
        }
    )
    fetcher = _fetcher(tmp_path, monkeypatch, session)
    report = CrawlReport(Locale("US", "en"))

    asyncio.run(fetcher.fetch_all([Resource("banner", BANNER), Resource("icon", icon)], report))

    assert report.resources_failed == [BANNER]
    assert report.resources_downloaded == 1
    assert not report.ok
    assert session.calls == [BANNER, BANNER, icon]


def test_unknown_host_stops_the_crawl(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fetcher = _fetcher(tmp_path, monkeypatch, _RecordingSession({}))
    report = CrawlReport(Locale("US", "en"))

    with pytest.raises(UnknownResourceHost):
        asyncio.run(fetcher.fetch_all([Resource("banner", "https://cdn.example/i/a.jpg")], report))


def test_cached_video_without_mp4_is_converted_without_download(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    container = tmp_path / "kanzashi-movie" / "m1" / "trailer.moflex"
    container.parent.mkdir(parents=True)
    container.write_bytes(b"moflex")
    cache = ResourceCache()
    cache.record(TRAILER, 6)
    session = _RecordingSession({})
    fetcher = _fetcher(tmp_path, monkeypatch, session, cache)
    converted: list[Path] = []
    monkeypatch.setattr(media, "convert_to_mp4", lambda source, ffmpeg, strict: converted.append(source) or True)

    outcome = asyncio.run(fetcher.fetch_movie_file(MovieFile(TRAILER)))

    assert outcome is ResourceOutcome.CACHED
    assert session.calls == []
    assert converted == [container]


def test_downloaded_video_is_converted(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    session = _RecordingSession({TRAILER: [_FakeResponseCtx(body=b"moflex-data")]})
    fetcher = _fetcher(tmp_path, monkeypatch, session)
    converted: list[Path] = []
    monkeypatch.setattr(media, "convert_to_mp4", lambda source, ffmpeg, strict: converted.append(source) or True)
    report = CrawlReport(Locale("US", "en"))

    asyncio.run(fetcher.fetch_all([], report, [MovieFile(TRAILER)]))

    assert converted == [tmp_path / "kanzashi-movie" / "m1" / "trailer.moflex"]
    assert report.resources_downloaded == 1


class _BrokenContent:
    async def iter_chunked(self, size: int):
        yield b"partial"
        raise aiohttp.ClientPayloadError("connection reset")


def test_interrupted_stream_leaves_no_partial_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    broken = _FakeResponseCtx(body=b"0123456789")
    broken.content = _BrokenContent()
    session = _RecordingSession({BANNER: [broken]})
    fetcher = _fetcher(tmp_path, monkeypatch, session)
    report = CrawlReport(Locale("US", "en"))

    asyncio.run(fetcher.fetch_all([Resource("banner", BANNER)], report))

    assert report.resources_failed == [BANNER]
    assert len(session.calls) == 2
    assert list((tmp_path / "kanzashi" / "a1").iterdir()) == []


def test_encoded_response_records_decoded_size(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    session = _RecordingSession(
        {BANNER: [_FakeResponseCtx(body=b"decoded-bytes", headers={"Content-Length": "4", "Content-Encoding": "gzip"})]}
    )
    fetcher = _fetcher(tmp_path, monkeypatch, session)

    first = asyncio.run(fetcher.fetch_resource(Resource("banner", BANNER)))
    second = asyncio.run(fetcher.fetch_resource(Resource("banner", BANNER)))
    fetcher.cache.close()

    assert (first, second) == (ResourceOutcome.DOWNLOADED, ResourceOutcome.CACHED)
    assert session.calls == [BANNER]
    assert ResourceCache.load(tmp_path / "requests.log").lookup(BANNER) == len(b"decoded-bytes")

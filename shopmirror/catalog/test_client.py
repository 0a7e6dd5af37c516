from __future__ import annotations

import asyncio

import pytest

from shopmirror.catalog import client as catalog_client
from shopmirror.catalog.client import CatalogClient, FetchResult
from shopmirror.catalog.resilience import RetryPolicy
from shopmirror.catalog.types import Locale
from shopmirror.config import FetchConfig, ServiceConfig
from shopmirror.errors import FetchExhausted, FetchRejected


class _FakeResponseCtx:
    def __init__(
        self,
        *,
        status: int = 200,
        body: bytes = b"",
        headers: dict[str, str] | None = None,
        url: str = "https://samurai.example/",
    ) -> None:
        self.status = status
        self._body = body
        self.headers = headers if headers is not None else {"Content-Length": str(len(body))}
        self.url = url
        self.request_info = None
        self.history = ()

    @property
    def content_length(self) -> int | None:
        value = self.headers.get("Content-Length")
        return int(value) if value is not None else None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def read(self) -> bytes:
        return self._body

    async def text(self, errors: str = "strict") -> str:
        return self._body.decode("utf-8", errors=errors)


class _SequencedSession:
    def __init__(self, responses: list[_FakeResponseCtx]) -> None:
        self.closed = False
        self._responses = responses
        self.calls: list[tuple[str, dict | None]] = []

    def get(self, url, params=None):
        idx = min(len(self.calls), len(self._responses) - 1)
        self.calls.append((url, params))
        return self._responses[idx]

    async def close(self) -> None:
        self.closed = True


class _FakeLog:
    def __init__(self) -> None:
        self.retries: list[tuple[int, int | None]] = []
        self.failures: list[int] = []

    def api_request(self, *_args, **_kwargs) -> None:
        return None

    def api_response(self, *_args, **_kwargs) -> None:
        return None

    def api_retry(self, _url, attempt, max_attempts, _delay, _error) -> None:
        self.retries.append((attempt, max_attempts))

    def api_failed(self, _url, attempts) -> None:
        self.failures.append(attempts)

    def api_wait_debug(self, *_args, **_kwargs) -> None:
        return None

    def api_wait(self, *_args, **_kwargs) -> None:
        return None


def _client(
    monkeypatch: pytest.MonkeyPatch,
    session: _SequencedSession,
    sleeps: list[float] | None = None,
    **fetch_overrides,
) -> tuple[CatalogClient, _FakeLog]:
    client = CatalogClient(ServiceConfig(), FetchConfig(**fetch_overrides))
    log = _FakeLog()

    async def _fake_ensure_session():
        return session

    async def _fake_enforce(_url: str) -> None:
        return None

    async def _record_sleep(delay: float) -> None:
        if sleeps is not None:
            sleeps.append(delay)

    monkeypatch.setattr(client, "_ensure_session", _fake_ensure_session)
    monkeypatch.setattr(client, "_enforce_interval", _fake_enforce)
    monkeypatch.setattr(catalog_client.asyncio, "sleep", _record_sleep)
    monkeypatch.setattr(catalog_client.logger, "get_logger", lambda: log)
    return client, log


def test_samurai_request_carries_locale_and_offset(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _SequencedSession([_FakeResponseCtx(body=b"<eshop/>")])
    client, _ = _client(monkeypatch, session)

    result = asyncio.run(client.get_samurai(Locale("DE", "de"), "contents", offset=50))

    assert result.text == "<eshop/>"
    assert session.calls == [
        (
            "https://samurai.ctr.shop.nintendo.net/samurai/ws/DE/contents",
            {"offset": 50, "shop_id": 1, "lang": "de"},
        )
    ]


def test_ninja_request_passes_extra_query(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _SequencedSession([_FakeResponseCtx(body=b"<eshop><online_prices/></eshop>")])
    client, _ = _client(monkeypatch, session)

    asyncio.run(client.get_ninja(Locale("US", "en"), "titles/online_prices", **{"title[]": "50010000000001"}))

    url, params = session.calls[0]
    assert url == "https://ninja.ctr.shop.nintendo.net/ninja/ws/US/titles/online_prices"
    assert params == {"title[]": "50010000000001", "shop_id": 1, "lang": "en"}


def test_document_request_retries_http_429(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _SequencedSession(
        [
            _FakeResponseCtx(status=429, body=b"slow down"),
            _FakeResponseCtx(status=503, body=b"maintenance"),
            _FakeResponseCtx(status=200, body=b"<eshop><title id=\"1\"/></eshop>"),
        ]
    )
    sleeps: list[float] = []
    client, log = _client(monkeypatch, session, sleeps)

    result = asyncio.run(client.get_samurai(Locale("US", "en"), "title/1"))

    assert result.status == 200
    assert b"title id" in result.body
    assert len(session.calls) == 3
    assert sleeps == [10.0, 10.0]
    assert log.retries == [(1, None), (2, None)]


def test_document_request_does_not_retry_http_400(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _SequencedSession([_FakeResponseCtx(status=400, body=b"<error/>")])
    client, _ = _client(monkeypatch, session)

    with pytest.raises(FetchRejected) as exc_info:
        asyncio.run(client.get_samurai(Locale("US", "en"), "directory/abc"))

    assert exc_info.value.status == 400
    assert exc_info.value.body == "<error/>"
    assert len(session.calls) == 1


def test_bounded_policy_exhausts(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _SequencedSession([_FakeResponseCtx(status=502)])
    client, log = _client(monkeypatch, session, retry_delay_seconds=0.0)

    async def _read(response) -> bytes:
        return await response.read()

    with pytest.raises(FetchExhausted) as exc_info:
        asyncio.run(
            client.request("https://kanzashi-ctr.cdn.nintendo.net/i/a.jpg", None, _read, RetryPolicy.bounded(3, 0.0))
        )

    assert exc_info.value.attempts == 3
    assert len(session.calls) == 3
    assert log.failures == [3]


def test_resource_policy_follows_fetch_config() -> None:
    client = CatalogClient(ServiceConfig(), FetchConfig(resource_max_attempts=4, retry_delay_seconds=2.0))

    assert client.resource_policy == RetryPolicy(2.0, 4)
    assert client.document_policy == RetryPolicy(2.0, None)


def test_fetch_result_content_length() -> None:
    assert FetchResult("u", 200, b"abc", {"Content-Length": "3"}).content_length == 3
    assert FetchResult("u", 200, b"abc", {"Content-Length": "x"}).content_length is None
    assert FetchResult("u", 200, b"abc").content_length is None


def test_ssl_context_skips_verification() -> None:
    context = catalog_client.build_ssl_context()

    assert context.check_hostname is False
    assert context.verify_mode == catalog_client.ssl.CERT_NONE

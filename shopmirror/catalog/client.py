"""Retrying HTTP client for the catalog services; the only code that touches the network."""

from __future__ import annotations

import asyncio
import ssl
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import aiohttp

from shopmirror import logger
from shopmirror.__version__ import __version__
from shopmirror.catalog.resilience import RETRYABLE_HTTP_STATUSES, RetryPolicy, run_with_retries
from shopmirror.catalog.types import Locale
from shopmirror.config import FetchConfig, ServiceConfig
from shopmirror.errors import FetchRejected
from shopmirror.rate_limits import WAIT_LOG_THRESHOLD_SECONDS, enforce_min_interval, host_key

DEFAULT_USER_AGENT = f"shopmirror/{__version__}"
_T = TypeVar("_T")


@dataclass
class FetchResult:
    url: str
    status: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    @property
    def content_length(self) -> Optional[int]:
        value = self.headers.get("Content-Length")
        try:
            return int(value) if value is not None else None
        except ValueError:
            return None


def build_ssl_context(cert: Optional[str] = None) -> ssl.SSLContext:
    # The shop servers present a chain without a public root CA.
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    if cert:
        context.load_cert_chain(cert)
    return context


class CatalogClient:
    """Adapter for the listing/detail ("samurai") and pricing ("ninja") services."""

    def __init__(
        self,
        services: ServiceConfig,
        fetch: FetchConfig,
        session_factory: Callable[..., aiohttp.ClientSession] | None = None,
    ):
        self.services = services
        self.fetch = fetch
        self._session_factory = session_factory or aiohttp.ClientSession
        self._session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()

    @property
    def document_policy(self) -> RetryPolicy:
        return RetryPolicy(self.fetch.retry_delay_seconds, self.fetch.document_max_attempts)

    @property
    def resource_policy(self) -> RetryPolicy:
        return RetryPolicy.bounded(self.fetch.resource_max_attempts, self.fetch.retry_delay_seconds)

    def locale_params(self, locale: Locale, **extra: Any) -> Dict[str, Any]:
        params: Dict[str, Any] = dict(extra)
        params["shop_id"] = self.services.shop_id
        params["lang"] = locale.language
        return params

    def samurai_url(self, locale: Locale, path: str) -> str:
        return f"{self.services.samurai_url.rstrip('/')}/{locale.region}/{path}"

    def ninja_url(self, locale: Locale, path: str) -> str:
        return f"{self.services.ninja_url.rstrip('/')}/{locale.region}/{path}"

    async def get_samurai(self, locale: Locale, path: str, offset: Optional[int] = None) -> FetchResult:
        """Mandatory listing/detail document."""
        params = self.locale_params(locale) if offset is None else self.locale_params(locale, offset=offset)
        return await self.get_document(self.samurai_url(locale, path), params)

    async def get_ninja(self, locale: Locale, path: str, **extra: Any) -> FetchResult:
        """Mandatory pricing/id-mapping document."""
        return await self.get_document(self.ninja_url(locale, path), self.locale_params(locale, **extra))

    async def get_document(self, url: str, params: Dict[str, Any] | None = None) -> FetchResult:
        return await self.request(url, params, self._read_result, self.document_policy)

    async def request(
        self,
        url: str,
        params: Dict[str, Any] | None,
        parser: Callable[[aiohttp.ClientResponse], Awaitable[_T]],
        policy: RetryPolicy,
    ) -> _T:
        """
        GET ``url`` and hand the successful response to ``parser``.

        Transport errors, transient statuses and failures inside ``parser``
        (e.g. a truncated body) are retried per ``policy``; other 4xx statuses
        raise ``FetchRejected`` immediately.
        """
        log = logger.get_logger()
        log.api_request("GET", url, params or {})

        async def _attempt() -> _T:
            await self._enforce_interval(url)
            session = await self._ensure_session()
            started = time.time()
            async with session.get(url, params=params) as response:
                if response.status >= 400:
                    text = await response.text(errors="replace")
                    if response.status in RETRYABLE_HTTP_STATUSES:
                        raise aiohttp.ClientResponseError(
                            request_info=response.request_info,
                            history=response.history,
                            status=response.status,
                            message=text[:200],
                            headers=response.headers,
                        )
                    raise FetchRejected(url, response.status, text)
                value = await parser(response)
                size = response.content_length or 0
                log.api_response(response.status, size, (time.time() - started) * 1000)
                return value

        return await run_with_retries(
            _attempt,
            url=url,
            policy=policy,
            on_retry=lambda attempt, max_attempts, delay, exc: log.api_retry(url, attempt, max_attempts, delay, exc),
            on_exhausted=lambda attempts: log.api_failed(url, attempts),
        )

    @staticmethod
    async def _read_result(response: aiohttp.ClientResponse) -> FetchResult:
        body = await response.read()
        return FetchResult(
            url=str(response.url),
            status=response.status,
            body=body,
            headers=dict(response.headers),
        )

    async def _enforce_interval(self, url: str) -> None:
        wait = await enforce_min_interval(url, min_interval_seconds=self.fetch.min_interval_seconds)
        log = logger.get_logger()
        log.api_wait_debug(host_key(url), wait)
        if wait > WAIT_LOG_THRESHOLD_SECONDS:
            log.api_wait(host_key(url), wait)

    async def _ensure_session(self) -> aiohttp.ClientSession:
        session = self._session
        if session is not None and not session.closed:
            return session

        async with self._session_lock:
            session = self._session
            if session is None or session.closed:
                cert = str(self.services.cert) if self.services.cert else None
                self._session = self._session_factory(
                    headers={"User-Agent": DEFAULT_USER_AGENT},
                    timeout=aiohttp.ClientTimeout(
                        total=None,
                        sock_connect=self.fetch.timeout_seconds,
                        sock_read=self.fetch.timeout_seconds,
                    ),
                    connector=aiohttp.TCPConnector(ssl=build_ssl_context(cert)),
                )
            return self._session

    async def close(self) -> None:
        """Close any open connections."""
        async with self._session_lock:
            session = self._session
            self._session = None
        if session is not None and not session.closed:
            await session.close()

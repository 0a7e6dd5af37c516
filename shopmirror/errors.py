"""Typed failures raised by the crawl engine.

Two families matter to callers:

- ``FetchError`` subclasses abort the current locale (documents) or the
  current resource (media). They are never swallowed.
- ``ProtocolViolation`` means the remote API no longer matches the shape the
  crawler depends on. It always stops the process.
"""

from __future__ import annotations


class MirrorError(RuntimeError):
    """Base class for shopmirror failures."""


class FetchError(MirrorError):
    """A request could not produce a usable response."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(message)
        self.url = url


class FetchExhausted(FetchError):
    """A bounded retry policy ran out of attempts."""

    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(url, f"Giving up on {url} after {attempts} attempt(s)")
        self.attempts = attempts


class FetchRejected(FetchError):
    """The server answered with a definitive, non-retryable error status."""

    def __init__(self, url: str, status: int, body: str = "") -> None:
        super().__init__(url, f"{url} rejected with HTTP {status}")
        self.status = status
        self.body = body


class ProtocolViolation(MirrorError):
    """The remote API broke an invariant the crawler relies on."""


class UnknownResourceHost(ProtocolViolation):
    """A resource URL does not belong to any known content-delivery host."""

    def __init__(self, url: str) -> None:
        super().__init__(f"Unrecognized resource URL \"{url}\"")
        self.url = url


class TranscoderMissing(MirrorError):
    """The external transcoding tool is not installed."""


class TranscodeFailed(MirrorError):
    """The external transcoding tool exited with a non-zero status."""

    def __init__(self, source: str, returncode: int, stderr: str) -> None:
        super().__init__(f"Conversion of {source} failed with exit status {returncode}")
        self.source = source
        self.returncode = returncode
        self.stderr = stderr

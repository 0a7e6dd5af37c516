"""Cross-run record of resource URLs and their byte lengths.

The cache is append-only: every successful resource response adds one JSON
line ``{"url": ..., "headers": {...}}`` to the request log, flushed and
fsynced before ``record`` returns. At startup the log is replayed to rebuild
the in-memory map, so de-duplication survives abrupt termination.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import IO, Mapping, Optional

from shopmirror import logger

# Recorded when a response carried no Content-Length: present, size unknown.
UNKNOWN_LENGTH = 1


def _content_length(headers: Mapping[str, str]) -> Optional[int]:
    for key, value in headers.items():
        if key.lower() == "content-length":
            try:
                return int(value)
            except (TypeError, ValueError):
                return None
    return None


class ResourceCache:
    """URL → byte length map backed by an append-only request log."""

    def __init__(self, log_path: Optional[Path] = None) -> None:
        self.log_path = log_path
        self._lengths: dict[str, int] = {}
        self._lock = threading.Lock()
        self._handle: Optional[IO[str]] = None

    @classmethod
    def load(cls, log_path: Path) -> "ResourceCache":
        """Create a cache and hydrate it from ``log_path`` if it exists."""
        cache = cls(log_path)
        cache.replay()
        return cache

    def replay(self) -> int:
        if self.log_path is None or not self.log_path.exists():
            return 0
        replayed = 0
        with self._lock, open(self.log_path, "r", encoding="utf-8") as handle:
            for line_no, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                    url = record["url"]
                    headers = record.get("headers") or {}
                except (ValueError, KeyError, TypeError):
                    logger.warning(f"Skipping malformed request log line {line_no} in {self.log_path}")
                    continue
                length = _content_length(headers)
                self._lengths[url] = UNKNOWN_LENGTH if length is None else length
                replayed += 1
        logger.debug(f"Resource cache hydrated with {replayed} record(s) from {self.log_path}")
        return replayed

    def lookup(self, url: str) -> Optional[int]:
        with self._lock:
            return self._lengths.get(url)

    def is_current(self, url: str, on_disk_size: Optional[int]) -> bool:
        """True when the file on disk is known to match what the server last reported."""
        if on_disk_size is None:
            return False
        known = self.lookup(url)
        if known is None:
            return False
        return known == UNKNOWN_LENGTH or known == on_disk_size

    def record(self, url: str, length: Optional[int], headers: Optional[Mapping[str, str]] = None) -> int:
        """Remember ``url`` and append it to the request log; returns the stored length."""
        logged_headers = {key.lower(): str(value) for key, value in (headers or {}).items()}
        if length is not None:
            logged_headers["content-length"] = str(length)
        stored = UNKNOWN_LENGTH if length is None else length
        line = json.dumps({"url": url, "headers": logged_headers}, sort_keys=True)
        with self._lock:
            self._lengths[url] = stored
            handle = self._ensure_handle()
            if handle is not None:
                handle.write(line + "\n")
                handle.flush()
                os.fsync(handle.fileno())
        return stored

    def _ensure_handle(self) -> Optional[IO[str]]:
        if self._handle is None and self.log_path is not None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = open(self.log_path, "a", encoding="utf-8")
        return self._handle

    def __len__(self) -> int:
        with self._lock:
            return len(self._lengths)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._lengths

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None

"""
Minimal logging context for shopmirror.
Every crawl message goes through here: rich screen output plus a flushed run log.
"""
from __future__ import annotations

import json
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.text import Text

_PREFIX_STYLES: tuple[tuple[str, str], ...] = (
    ("[ERROR]", "red"),
    ("[WARNING]", "yellow"),
    ("[INFO]", "cyan"),
    ("[DEBUG]", "grey50"),
)
_LOCALE_TAG = re.compile(r"^\[[A-Z]{2}/[a-z]{2}\]")
_SKIP_LINE = re.compile(r"\.\.\. (already exists on disk|cached)")


class MirrorLogger:
    """Screen + run-log writer; every line is flushed and synced before returning"""

    def __init__(self, log_file: Optional[Path] = None, debug: bool = False):
        self.log_file = log_file
        self._file_handle = None
        self._start_time = datetime.now()
        self.debug_mode = debug
        self._console = Console(highlight=False)
        self._status_active = False
        self._rate_limit_note_hosts: set[str] = set()

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            self._file_handle = open(log_file, "w", buffering=1, encoding="utf-8")  # Line buffered, UTF-8

        from shopmirror.__version__ import __version__

        self.log(f"({self._start_time.strftime('%H:%M:%S')}  Started shopmirror {__version__})")

    def _screen_text(self, output: str) -> Text:
        text = Text(output)
        for marker, style in _PREFIX_STYLES:
            start = output.find(marker)
            if start != -1:
                text.stylize(style, start, start + len(marker))
        tag = _LOCALE_TAG.match(output)
        if tag:
            text.stylize("bold", 0, tag.end())
        skip = _SKIP_LINE.search(output)
        if skip:
            text.stylize("grey50", skip.start(), len(output))
        return text

    def _clear_status(self) -> None:
        if self._status_active:
            print("\r" + " " * 100 + "\r", end="", flush=True)
            self._status_active = False

    def log(self, msg: str, prefix: str = ""):
        """Log to screen and file"""
        output = f"{prefix}{msg}" if prefix else msg

        self._clear_status()
        self._console.print(self._screen_text(output))

        if self._file_handle:
            self._file_handle.write(output + "\n")
            self._file_handle.flush()
            os.fsync(self._file_handle.fileno())

    def status(self, msg: str) -> None:
        """Inline progress line, overwritten by the next status or log call (screen only)"""
        print(f"\r{msg[:100]:<100}", end="", flush=True)
        self._status_active = True

    def info(self, msg: str):
        self.log(msg)

    def warning(self, msg: str):
        self.log(msg, "[WARNING] ")

    def error(self, msg: str):
        self.log(msg, "[ERROR] ")

    def debug(self, msg: str):
        """Debug message (only shown in debug mode)"""
        if self.debug_mode:
            timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
            self.log(msg, f"[{timestamp}] [DEBUG] ")

    def api_wait(self, host: str, seconds: float):
        """Announce request pacing once per host"""
        _ = seconds
        host_key = host.lower()
        if host_key in self._rate_limit_note_hosts:
            return
        self._rate_limit_note_hosts.add(host_key)
        self.log(f"Request pacing active for {host_key}; waiting between requests.", "[INFO] ")

    def api_wait_debug(self, host: str, seconds: float):
        self.debug(f"Pacing detail: waiting {seconds:.3f}s before next {host} request")

    def api_retry(self, url: str, attempt: int, max_attempts: Optional[int], delay: float, error: object):
        """Log a retry notice; max_attempts is None for unbounded policies"""
        budget = f"{attempt}/{max_attempts}" if max_attempts else f"{attempt}, unbounded"
        self.log(f"  Got error {error}, retrying in {delay:g}s (attempt {budget}): {url}", "[WARNING] ")

    def api_failed(self, url: str, max_attempts: int):
        self.log(f"  Giving up on {url} after {max_attempts} attempts.", "[ERROR] ")

    def api_request(self, method: str, url: str, params: dict):
        """Log API request (debug mode only)"""
        if self.debug_mode:
            timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
            self.log(f"API Request: {method} {url}", f"[{timestamp}] ")
            if params:
                self.log(f"  Params: {json.dumps(params, default=str)}", f"[{timestamp}] ")

    def api_response(self, status: int, size: int, elapsed_ms: float):
        """Log API response (debug mode only)"""
        if self.debug_mode:
            timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
            self.log(f"API Response ({elapsed_ms:.0f}ms): Status {status}, {size:,} bytes", f"[{timestamp}] ")

    def close(self):
        """Write the session footer and close the run log"""
        if self._file_handle:
            end_time = datetime.now()
            elapsed = end_time - self._start_time
            self.log(f"({end_time.strftime('%H:%M:%S')}  Ended session, elapsed {elapsed.total_seconds():.1f}s)")
            self._file_handle.close()
            self._file_handle = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


# Global instance (set by the CLI)
_logger: Optional[MirrorLogger] = None


def set_logger(logger: MirrorLogger):
    global _logger
    _logger = logger


def get_logger() -> MirrorLogger:
    global _logger
    if _logger is None:
        # Fallback: create stdout-only logger
        _logger = MirrorLogger()
    return _logger


def next_run_path(output_dir: Path) -> Path:
    """Find next available runN.txt path in output directory."""
    output_dir.mkdir(parents=True, exist_ok=True)

    max_num = 0
    for path in output_dir.glob("run*.txt"):
        try:
            num = int(path.stem[3:])
            max_num = max(max_num, num)
        except (ValueError, IndexError):
            pass

    return output_dir / f"run{max_num + 1}.txt"


# Convenience functions
def log(msg: str):
    get_logger().log(msg)


def info(msg: str):
    get_logger().info(msg)


def warning(msg: str):
    get_logger().warning(msg)


def error(msg: str):
    get_logger().error(msg)


def debug(msg: str):
    get_logger().debug(msg)

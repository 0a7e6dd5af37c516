"""Conversion of downloaded video containers through an external ffmpeg."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Iterator

from shopmirror import logger
from shopmirror.errors import TranscodeFailed, TranscoderMissing

VIDEO_SUFFIX = ".moflex"
OUTPUT_SUFFIX = ".mp4"


def converted_path(source: Path) -> Path:
    return source.with_suffix(OUTPUT_SUFFIX)


def convert_to_mp4(source: Path, ffmpeg: str = "ffmpeg", strict: bool = False) -> bool:
    """
    Convert ``source`` next to itself, overwriting any previous output.

    Returns False when the tool is missing and ``strict`` is off. A missing
    tool in strict mode raises ``TranscoderMissing``; a non-zero exit always
    raises ``TranscodeFailed``.
    """
    target = converted_path(source)
    logger.info(f"  Converting {source.name} to MP4")
    try:
        completed = subprocess.run(
            [ffmpeg, "-y", "-i", str(source), str(target)],
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as exc:
        if strict:
            raise TranscoderMissing(f"{ffmpeg} is not installed; cannot convert {source}") from exc
        logger.warning(f"{ffmpeg} is not installed, skipping conversion")
        return False

    if completed.returncode != 0:
        logger.error(completed.stderr.strip() or f"{ffmpeg} exited with status {completed.returncode}")
        raise TranscodeFailed(str(source), completed.returncode, completed.stderr)
    return True


def pending_conversions(movie_dir: Path) -> Iterator[Path]:
    """Downloaded containers under ``movie_dir`` that have no converted companion."""
    if not movie_dir.is_dir():
        return
    for source in sorted(movie_dir.rglob(f"*{VIDEO_SUFFIX}")):
        if not converted_path(source).exists():
            yield source


def convert_pending(movie_dir: Path, ffmpeg: str = "ffmpeg") -> int:
    """Offline conversion pass; strict, since conversion is the whole point of the run."""
    converted = 0
    for source in pending_conversions(movie_dir):
        convert_to_mp4(source, ffmpeg=ffmpeg, strict=True)
        converted += 1
    logger.info(f"Converted {converted} video file(s) under {movie_dir}")
    return converted

"""Deterministic on-disk layout for raw documents and media."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from shopmirror.catalog.types import ContentKind, Locale

REQUEST_LOG_NAME = "requests.log"


class MirrorStore:
    """
    Layout (under ``root``):
      - samurai/<REGION>/<lang>/<endpoint>            single-document endpoints
      - samurai/<REGION>/<lang>/contents              merged root listing
      - samurai/<REGION>/<lang>/directory/<id>        merged directory listing
      - samurai/<REGION>/<lang>/ranking/<id>          merged ranking listing
      - samurai/<REGION>/<lang>/<title|movie|demo>/<id>
      - samurai/<REGION>/<lang>/title/aocs/<id>
      - ninja/<REGION>/<lang>/title/<id>/ec_info
      - ninja/<REGION>/<lang>/titles/online_prices%3Ftitle%5B%5D%3D<id>
      - kanzashi/..., kanzashi-movie/...              media, shared by all locales
      - requests.log                                  resource cache log
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    @property
    def request_log(self) -> Path:
        return self.root / REQUEST_LOG_NAME

    def samurai_dir(self, locale: Locale) -> Path:
        return self.root / "samurai" / locale.region / locale.language

    def ninja_dir(self, locale: Locale) -> Path:
        return self.root / "ninja" / locale.region / locale.language

    def endpoint_path(self, locale: Locale, endpoint: str) -> Path:
        return self.samurai_dir(locale) / endpoint

    def listing_path(self, locale: Locale, endpoint: str) -> Path:
        # "directory/123" and "ranking/4" map onto nested files
        return self.samurai_dir(locale).joinpath(*endpoint.split("/"))

    def detail_path(self, locale: Locale, kind: ContentKind, identifier: str) -> Path:
        return self.samurai_dir(locale) / kind.value / identifier

    def aoc_path(self, locale: Locale, title_id: str) -> Path:
        return self.samurai_dir(locale) / "title" / "aocs" / title_id

    def ec_info_path(self, locale: Locale, content_id: str) -> Path:
        return self.ninja_dir(locale) / "title" / content_id / "ec_info"

    def price_path(self, locale: Locale, title_id: str) -> Path:
        return self.ninja_dir(locale) / "titles" / f"online_prices%3Ftitle%5B%5D%3D{title_id}"

    def media_path(self, relative: str) -> Path:
        return self.root / relative

    def write_text(self, path: Path, text: str) -> Path:
        """Write a raw document; the file is replaced atomically."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".part")
        with open(tmp, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)
        os.replace(tmp, path)
        return path

    def read_text(self, path: Path) -> Optional[str]:
        if not path.is_file():
            return None
        with open(path, "r", encoding="utf-8", newline="") as handle:
            return handle.read()

    @staticmethod
    def size_on_disk(path: Path) -> Optional[int]:
        try:
            return path.stat().st_size
        except FileNotFoundError:
            return None

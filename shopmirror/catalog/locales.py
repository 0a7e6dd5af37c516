"""Runs one independent crawl per region × language combination."""

from __future__ import annotations

from itertools import product
from typing import Callable, Iterable, List, Sequence

from shopmirror import logger
from shopmirror.catalog.context import CrawlContext, CrawlOptions
from shopmirror.catalog.types import CrawlReport, Locale
from shopmirror.catalog.walker import ContentGraphWalker
from shopmirror.errors import FetchError

WalkerFactory = Callable[[CrawlContext, Locale, CrawlOptions], ContentGraphWalker]


def enumerate_locales(regions: Sequence[str], languages: Sequence[str]) -> List[Locale]:
    """Every region × language pair, de-duplicated, in input order."""
    seen: dict[Locale, None] = {}
    for region, language in product(regions, languages):
        seen.setdefault(Locale(region.strip().upper(), language.strip().lower()), None)
    return list(seen)


async def crawl_locales(
    context: CrawlContext,
    locales: Iterable[Locale],
    options: CrawlOptions,
    walker_factory: WalkerFactory = ContentGraphWalker,
) -> List[CrawlReport]:
    """
    Crawl each locale in turn with a fresh walker.

    A ``FetchError`` aborts only the locale it happened in; the report records
    why. Protocol violations and local I/O errors propagate and stop the run.
    """
    locales = list(locales)
    reports: List[CrawlReport] = []
    for position, locale in enumerate(locales, start=1):
        logger.info(f"[{locale}] Locale {position} of {len(locales)}")
        walker = walker_factory(context, locale, options)
        try:
            await walker.run()
        except FetchError as exc:
            walker.report.aborted = str(exc)
            logger.error(f"[{locale}] Aborting locale: {exc}")
        reports.append(walker.report)
        logger.info(walker.report.summary())
    return reports

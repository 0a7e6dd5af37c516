"""Typed extraction of identifiers and resource URLs from catalog XML.

Only what the crawl needs is read here; the raw documents are persisted
verbatim by the store and never re-serialized from these structures.
"""

from __future__ import annotations

from typing import List, Optional
from xml.etree import ElementTree as ET

from shopmirror.catalog.types import (
    ContentReference,
    DemoDetail,
    GroupDetail,
    ListingEntry,
    ListingPage,
    MovieDetail,
    MovieFile,
    MovieRef,
    Screenshot,
    TitleDetail,
    TitleRef,
)
from shopmirror.errors import ProtocolViolation


def parse_document(text: str, context: str) -> ET.Element:
    try:
        return ET.fromstring(text)
    except ET.ParseError as exc:
        raise ProtocolViolation(f"{context}: response is not well-formed XML ({exc})") from exc


def is_error_document(text: str) -> bool:
    """True for the service's error envelope (``<error>`` at or below the root)."""
    try:
        root = ET.fromstring(text)
    except ET.ParseError:
        return False
    return root.tag == "error" or root.find("error") is not None


def display_name(name: Optional[str]) -> str:
    return (name or "").replace("\n", " ").replace("<br>", "").strip()


def _required(parent: ET.Element, path: str, context: str) -> ET.Element:
    node = parent.find(path)
    if node is None:
        raise ProtocolViolation(f"{context}: missing <{path}> element")
    return node


def _text(parent: ET.Element, path: str) -> Optional[str]:
    node = parent.find(path)
    if node is None or node.text is None:
        return None
    value = node.text.strip()
    return value or None


def _flag(parent: ET.Element, path: str) -> bool:
    return (_text(parent, path) or "").lower() == "true"


def _optional_int(node: ET.Element, attribute: str, context: str) -> Optional[int]:
    value = node.get(attribute)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ProtocolViolation(f"{context}: attribute {attribute}={value!r} is not numeric") from exc


def _rating_icons(parent: ET.Element) -> List[str]:
    return [icon.get("url", "") for icon in parent.findall("rating_info/rating/icons/icon") if icon.get("url")]


def _content_reference(content: ET.Element, context: str) -> ContentReference:
    children = list(content)
    if len(children) != 1:
        raise ProtocolViolation(f"{context}: <content> must wrap exactly one title or movie")
    node = children[0]
    identifier = node.get("id")
    if not identifier:
        raise ProtocolViolation(f"{context}: <{node.tag}> without id")
    name = display_name(_text(node, "name"))
    if node.tag == "title":
        return TitleRef(identifier, name)
    if node.tag == "movie":
        return MovieRef(identifier, name)
    raise ProtocolViolation(f"{context}: unexpected <{node.tag}> inside a listing")


def parse_contents(contents: ET.Element, context: str) -> ListingPage:
    """Read one ``<contents>`` element; length/offset are absent on unpaginated lists."""
    total = _optional_int(contents, "total", context)
    total = 1 if total is None else total
    offset = _optional_int(contents, "offset", context)
    length = _optional_int(contents, "length", context)
    entries = [
        ListingEntry(index=content.get("index", ""), reference=_content_reference(content, context))
        for content in contents.findall("content")
    ]
    return ListingPage(
        offset=0 if offset is None else offset,
        length=total if length is None else length,
        total=total,
        entries=entries,
    )


def parse_listing_page(text: str, contents_path: str, context: str) -> ListingPage:
    root = parse_document(text, context)
    return parse_contents(_required(root, contents_path, context), context)


def _movie(node: ET.Element, context: str) -> MovieDetail:
    identifier = node.get("id")
    if not identifier:
        raise ProtocolViolation(f"{context}: <movie> without id")
    return MovieDetail(
        identifier=identifier,
        name=display_name(_text(node, "name")),
        banner_url=_text(node, "banner_url"),
        thumbnail_url=_text(node, "thumbnail_url"),
        rating_icons=_rating_icons(node),
        # <files> may be present but empty
        files=[MovieFile(url) for url in (_text(f, "movie_url") for f in node.findall("files/file")) if url],
    )


def parse_title(text: str, context: str = "title") -> TitleDetail:
    node = _required(parse_document(text, context), "title", context)
    identifier = node.get("id")
    if not identifier:
        raise ProtocolViolation(f"{context}: <title> without id")
    screenshots = [
        Screenshot(
            images=[(image.get("type"), (image.text or "").strip()) for image in shot.findall("image_url")],
            thumbnails=[(thumb.text or "").strip() for thumb in shot.findall("thumbnail_url")],
        )
        for shot in node.findall("screenshots/screenshot")
    ]
    return TitleDetail(
        identifier=identifier,
        name=display_name(_text(node, "name")),
        icon_url=_text(node, "icon_url"),
        banner_url=_text(node, "banner_url"),
        thumbnails=[t.get("url", "") for t in node.findall("thumbnails/thumbnail") if t.get("url")],
        rating_icons=_rating_icons(node),
        screenshots=screenshots,
        aoc_available=_flag(node, "aoc_available"),
        demo_available=_flag(node, "demo_available"),
        demo_ids=[demo.get("id", "") for demo in node.findall("demo_titles/demo_title") if demo.get("id")],
        movies=[_movie(movie, context) for movie in node.findall("movies/movie")],
    )


def parse_movie(text: str, context: str = "movie") -> MovieDetail:
    return _movie(_required(parse_document(text, context), "movie", context), context)


def parse_demo(text: str, context: str = "demo") -> DemoDetail:
    # Demo pages wrap the demo node in <content>
    node = _required(parse_document(text, context), "content/demo", context)
    identifier = node.get("id")
    if not identifier:
        raise ProtocolViolation(f"{context}: <demo> without id")
    return DemoDetail(
        identifier=identifier,
        name=display_name(_text(node, "name")),
        icon_url=_text(node, "icon_url"),
        rating_icons=_rating_icons(node),
    )


def parse_group(text: str, tag: str, context: str) -> GroupDetail:
    """Header fields of a directory or ranking page."""
    node = _required(parse_document(text, context), tag, context)
    return GroupDetail(
        identifier=node.get("id", ""),
        name=display_name(_text(node, "name")),
        icon_url=_text(node, "icon_url"),
        banner_url=_text(node, "banner_url"),
    )


def parse_group_list(text: str, list_tag: str, item_tag: str, context: str) -> List[GroupDetail]:
    """Identifiers from the ``directories`` / ``rankings`` list documents."""
    root = parse_document(text, context)
    return [
        GroupDetail(
            identifier=node.get("id", ""),
            name=display_name(_text(node, "name")),
            icon_url=_text(node, "icon_url"),
            banner_url=_text(node, "banner_url"),
        )
        for node in root.findall(f"{list_tag}/{item_tag}")
        if node.get("id")
    ]

"""Streaming readers for the three XML documents an EPUB is navigated by.

Each reader is an lxml parser *target*: lxml drives ``start``/``data``/``end``
callbacks and the target keeps only the small amount of state it needs, so no
element tree is ever built. Unknown elements and attributes are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from html.entities import name2codepoint
import logging
import re
from typing import Optional

from lxml import etree as LXML_ET

from .errors import InvalidEPUBStructure, XMLParsingFailed
from .models import EPUBManifestItem, EPUBMetadata

logger = logging.getLogger("quire.markup")

SINGLE_VALUE_FIELDS = ("title", "language", "publisher", "description", "identifier", "date")
METADATA_FIELDS = set(SINGLE_VALUE_FIELDS) | {"creator"}
XML_ENTITIES = {"amp", "lt", "gt", "quot", "apos"}
_ENTITY_REF = re.compile(rb"&([A-Za-z][A-Za-z0-9]*);")


def _local_name(name: object) -> str:
    if not name or not isinstance(name, str):
        return ""
    if "}" in name:
        name = name.split("}", 1)[1]
    # Undeclared prefixes survive recovery mode as "dc:title".
    return name.rsplit(":", 1)[-1]


def _local_attrs(attrib: object) -> dict[str, str]:
    return {_local_name(key): str(value) for key, value in dict(attrib).items()}


def _collapse(text: str) -> str:
    return " ".join(text.split())


def base_href(href: str) -> str:
    return (href or "").split("#", 1)[0]


def _numeric_entities(raw: bytes) -> bytes:
    """Rewrite HTML named entities such as ``&nbsp;`` as character references.

    XHTML documents lean on the DTD for these; without it recovery drops them.
    """

    def replace(match: re.Match) -> bytes:
        name = match.group(1).decode("ascii")
        codepoint = name2codepoint.get(name)
        if name in XML_ENTITIES or codepoint is None:
            return match.group(0)
        return b"&#%d;" % codepoint

    return _ENTITY_REF.sub(replace, raw)


class _Target:
    def __init__(self) -> None:
        self.saw_element = False
        self.depth = 0

    def start(self, tag: str, attrib: dict) -> None:
        self.saw_element = True
        self.depth += 1
        self.on_start(_local_name(tag), _local_attrs(attrib))

    def end(self, tag: str) -> None:
        self.on_end(_local_name(tag))
        self.depth -= 1

    def data(self, data: str) -> None:
        pass

    def on_start(self, name: str, attrs: dict[str, str]) -> None:
        pass

    def on_end(self, name: str) -> None:
        pass

    def close(self) -> object:
        return None


def _run(raw: bytes, target: _Target, label: str) -> object:
    if not raw or not raw.strip():
        raise XMLParsingFailed(f"{label}: empty document")
    parser = LXML_ET.XMLParser(target=target, recover=True, resolve_entities=False, no_network=True)
    try:
        parser.feed(_numeric_entities(raw))
        result = parser.close()
    except LXML_ET.XMLSyntaxError as exc:
        if not target.saw_element:
            raise XMLParsingFailed(f"{label}: {exc}") from exc
        logger.debug("keeping partial %s after syntax error: %s", label, exc)
        return target.close()
    if not target.saw_element:
        raise XMLParsingFailed(f"{label}: no elements found")
    return result


class _ContainerTarget(_Target):
    def __init__(self) -> None:
        super().__init__()
        self.full_path: Optional[str] = None

    def on_start(self, name: str, attrs: dict[str, str]) -> None:
        if name != "rootfile" or self.full_path is not None:
            return
        candidate = attrs.get("full-path", "").strip()
        if candidate:
            self.full_path = candidate

    def close(self) -> Optional[str]:
        return self.full_path


def parse_container(raw: bytes) -> str:
    """Return the package document path declared by META-INF/container.xml."""
    full_path = _run(raw, _ContainerTarget(), "container.xml")
    if not full_path:
        raise InvalidEPUBStructure("Could not find rootfile in container.xml")
    return full_path


@dataclass
class PackageDocument:
    metadata: EPUBMetadata = field(default_factory=EPUBMetadata)
    manifest_items: list[EPUBManifestItem] = field(default_factory=list)
    spine_idrefs: list[str] = field(default_factory=list)
    toc_id: Optional[str] = None
    nav_id: Optional[str] = None


class _PackageTarget(_Target):
    def __init__(self) -> None:
        super().__init__()
        self.package = PackageDocument()
        self.in_metadata = False
        self.cover_id: Optional[str] = None
        self.cover_href: Optional[str] = None
        self.values: dict[str, str] = {}
        self.authors: list[str] = []
        self._capture: Optional[str] = None
        self._capture_depth = 0
        self._buffer: list[str] = []

    def on_start(self, name: str, attrs: dict[str, str]) -> None:
        if name == "metadata":
            self.in_metadata = True
        elif name == "item":
            self._manifest_item(attrs)
        elif name == "itemref":
            idref = attrs.get("idref", "").strip()
            if idref:
                self.package.spine_idrefs.append(idref)
        elif name == "spine":
            toc = attrs.get("toc", "").strip()
            self.package.toc_id = toc or None
        elif name == "meta" and self.in_metadata:
            if attrs.get("name") == "cover" and attrs.get("content"):
                self.cover_id = attrs["content"].strip()

        if self.in_metadata and self._capture is None and name in METADATA_FIELDS:
            self._capture = name
            self._capture_depth = self.depth
            self._buffer = []

    def _manifest_item(self, attrs: dict[str, str]) -> None:
        item_id = attrs.get("id")
        href = attrs.get("href")
        media_type = attrs.get("media-type")
        if item_id is None or href is None or media_type is None:
            logger.debug("skipping incomplete manifest item %r", attrs)
            return
        self.package.manifest_items.append(EPUBManifestItem(id=item_id, href=href, media_type=media_type))
        properties = attrs.get("properties", "").split()
        if "cover-image" in properties and self.cover_href is None:
            self.cover_href = href
        if "nav" in properties and self.package.nav_id is None:
            self.package.nav_id = item_id

    def data(self, data: str) -> None:
        if self._capture is not None:
            self._buffer.append(data)

    def on_end(self, name: str) -> None:
        if self._capture is not None and self.depth == self._capture_depth:
            self._commit(self._capture, "".join(self._buffer).strip())
            self._capture = None
        if name == "metadata":
            self.in_metadata = False

    def _commit(self, name: str, text: str) -> None:
        if not text:
            return
        if name == "creator":
            self.authors.append(text)
        else:
            # First wins: an EPUB 3 subtitle must not replace the title.
            self.values.setdefault(name, text)

    def close(self) -> PackageDocument:
        cover_path = self.cover_href
        if cover_path is None and self.cover_id is not None:
            by_id = {item.id: item for item in self.package.manifest_items}
            cover_item = by_id.get(self.cover_id)
            if cover_item is not None:
                cover_path = cover_item.href
        self.package.metadata = EPUBMetadata(
            authors=tuple(self.authors),
            cover_image_path=cover_path,
            **self.values,
        )
        return self.package


def parse_package(raw: bytes) -> PackageDocument:
    return _run(raw, _PackageTarget(), "package document")


@dataclass
class _NavPointFrame:
    href: Optional[str] = None
    title: Optional[str] = None
    recorded: bool = False


class _TocTarget(_Target):
    """Collects href -> title from an NCX navMap or an XHTML nav document."""

    def __init__(self) -> None:
        super().__init__()
        self.ncx_titles: dict[str, str] = {}
        self.toc_links: dict[str, str] = {}
        self.all_links: dict[str, str] = {}
        self._frames: list[_NavPointFrame] = []
        self._label_depth: Optional[int] = None
        self._text_depth: Optional[int] = None
        self._navs: list[bool] = []
        self._link_href: Optional[str] = None
        self._link_depth: Optional[int] = None
        self._link_in_toc = False
        self._buffer: list[str] = []

    def on_start(self, name: str, attrs: dict[str, str]) -> None:
        if name == "navPoint":
            self._frames.append(_NavPointFrame())
        elif name == "navLabel" and self._frames and self._label_depth is None:
            self._label_depth = self.depth
        elif name == "text" and self._label_depth is not None and self._text_depth is None:
            self._text_depth = self.depth
            self._buffer = []
        elif name == "content" and self._frames:
            src = base_href(attrs.get("src", "").strip())
            if src:
                self._frames[-1].href = src
                self._record(self._frames[-1])
        elif name == "nav":
            self._navs.append("toc" in attrs.get("type", "").lower().split())
        elif name == "a" and self._link_depth is None and "href" in attrs:
            self._link_href = base_href(attrs["href"].strip())
            self._link_depth = self.depth
            self._link_in_toc = any(self._navs)
            self._buffer = []

    def data(self, data: str) -> None:
        if self._text_depth is not None or self._link_depth is not None:
            self._buffer.append(data)

    def on_end(self, name: str) -> None:
        if self._text_depth == self.depth:
            title = _collapse("".join(self._buffer))
            if title and self._frames and self._frames[-1].title is None:
                self._frames[-1].title = title
            self._text_depth = None
        elif self._label_depth == self.depth:
            self._label_depth = None
        elif self._link_depth == self.depth:
            self._finish_link(_collapse("".join(self._buffer)))
        elif name == "navPoint" and self._frames:
            frame = self._frames.pop()
            self._record(frame)
        elif name == "nav" and self._navs:
            self._navs.pop()

    def _record(self, frame: _NavPointFrame) -> None:
        if frame.recorded or not frame.href or not frame.title:
            return
        # First wins so an outer navPoint keeps its title over nested sections.
        self.ncx_titles.setdefault(frame.href, frame.title)
        frame.recorded = True

    def _finish_link(self, title: str) -> None:
        href = self._link_href
        if href and title:
            self.all_links.setdefault(href, title)
            if self._link_in_toc:
                self.toc_links.setdefault(href, title)
        self._link_href = None
        self._link_depth = None

    def close(self) -> dict[str, str]:
        titles = dict(self.ncx_titles)
        for href, title in (self.toc_links or self.all_links).items():
            titles.setdefault(href, title)
        return titles


def parse_toc(raw: bytes) -> dict[str, str]:
    """Map fragment-stripped hrefs to chapter titles."""
    return _run(raw, _TocTarget(), "table of contents")

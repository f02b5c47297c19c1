from __future__ import annotations

import logging
import os
import posixpath
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Optional, Union

from .archive import ZipArchive, canonical_member
from .errors import EPUBError, ExtractionFailed, InvalidEPUBStructure, MissingContent, XMLParsingFailed
from .markup import PackageDocument, base_href, parse_container, parse_package, parse_toc
from .models import EPUBBook, EPUBManifestItem, EPUBMetadata, EPUBSpineItem

logger = logging.getLogger("quire.epub")

CONTAINER_PATH = "META-INF/container.xml"

PathLike = Union[str, Path]


def _opf_directory(opf_path: str) -> str:
    parent = PurePosixPath(opf_path).parent.as_posix()
    return "" if parent in {"", "."} else parent


def _join_opf(opf_directory: str, href: str) -> str:
    return f"{opf_directory}/{href}" if opf_directory else href


def _lookup_key(href: str) -> str:
    base = base_href(href)
    return posixpath.normpath(base) if base else ""


def _read_container(raw: bytes) -> str:
    try:
        return parse_container(raw)
    except XMLParsingFailed as exc:
        raise InvalidEPUBStructure(f"Unparseable {CONTAINER_PATH}: {exc.detail}") from exc


def _read_package(raw: bytes, opf_path: str) -> PackageDocument:
    try:
        return parse_package(raw)
    except XMLParsingFailed as exc:
        raise InvalidEPUBStructure(f"Unparseable package document {opf_path}: {exc.detail}") from exc


def _build_spine(
    idrefs: list[str], manifest: dict[str, EPUBManifestItem]
) -> tuple[list[tuple[str, str]], list[str]]:
    resolved: list[tuple[str, str]] = []
    skipped: list[str] = []
    for idref in idrefs:
        item = manifest.get(idref)
        if item is None:
            skipped.append(idref)
            continue
        resolved.append((idref, item.href))
    return resolved, skipped


def _toc_item(package: PackageDocument, manifest: dict[str, EPUBManifestItem]) -> Optional[EPUBManifestItem]:
    if package.toc_id:
        return manifest.get(package.toc_id)
    if package.nav_id:
        return manifest.get(package.nav_id)
    return None


def _toc_titles(toc_file: Path, toc_href: str) -> dict[str, str]:
    """Chapter titles keyed by OPF-relative, fragment-free href."""
    if not toc_file.is_file():
        raise MissingContent(toc_href)
    raw = toc_file.read_bytes()
    toc_dir = posixpath.dirname(base_href(toc_href))
    titles: dict[str, str] = {}
    for href, title in parse_toc(raw).items():
        key = _lookup_key(posixpath.join(toc_dir, href))
        if key:
            titles.setdefault(key, title)
    return titles


def parse_epub(epub_file: PathLike, extract_to: PathLike) -> EPUBBook:
    """Unpack ``epub_file`` into ``extract_to`` and read its reading order.

    The destination is created when missing and is never removed here; the
    caller owns it once the book is returned.
    """
    epub_file = Path(epub_file)
    destination = Path(extract_to)
    logger.info("parsing EPUB %s", epub_file.name)

    archive = ZipArchive.from_path(epub_file)
    try:
        destination.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ExtractionFailed(f"Failed to create {destination}: {exc}") from exc
    archive.extract_all(destination)
    logger.info("extracted EPUB to %s", destination)

    container_file = destination / CONTAINER_PATH
    if not container_file.is_file():
        raise InvalidEPUBStructure(f"Missing {CONTAINER_PATH}")
    declared_opf = _read_container(container_file.read_bytes())
    opf_path = canonical_member(declared_opf) or declared_opf
    logger.info("found package document at %s", opf_path)

    opf_file = destination / opf_path
    if not opf_file.is_file():
        raise MissingContent(opf_path)
    package = _read_package(opf_file.read_bytes(), opf_path)
    opf_directory = _opf_directory(opf_path)

    manifest: dict[str, EPUBManifestItem] = {}
    for item in package.manifest_items:
        manifest[item.id] = item

    resolved, skipped = _build_spine(package.spine_idrefs, manifest)
    if skipped:
        logger.warning(
            "dropped %d spine reference(s) without manifest entries in %s: %s",
            len(skipped),
            epub_file.name,
            ", ".join(skipped),
        )
    if not resolved:
        raise InvalidEPUBStructure("Empty spine in OPF")

    titles: dict[str, str] = {}
    toc_item = _toc_item(package, manifest)
    if toc_item is not None:
        toc_file = destination / _join_opf(opf_directory, toc_item.href)
        try:
            titles = _toc_titles(toc_file, toc_item.href)
        except (EPUBError, OSError) as exc:
            logger.warning("table of contents unusable in %s, using default titles: %s", epub_file.name, exc)

    spine = tuple(
        EPUBSpineItem(
            id=idref,
            href=href,
            title=titles.get(_lookup_key(href)) or f"Chapter {index + 1}",
            index=index,
        )
        for index, (idref, href) in enumerate(resolved)
    )

    book = EPUBBook(
        metadata=package.metadata,
        spine=spine,
        manifest=MappingProxyType(manifest),
        extracted_root=destination,
        opf_directory=opf_directory,
        skipped_idrefs=tuple(skipped),
    )
    logger.info(
        "parsed EPUB %r with %d chapters",
        book.metadata.title or "Untitled",
        len(book.spine),
    )
    return book


def _check_source(epub_file: Path) -> None:
    if not epub_file.exists():
        logger.error("EPUB file does not exist at path: %s", epub_file)
        raise InvalidEPUBStructure("File not found")
    if not os.access(epub_file, os.R_OK):
        logger.error("EPUB file is not readable: %s", epub_file)
        raise InvalidEPUBStructure("File not readable")


def _read_package_in_memory(archive: ZipArchive) -> tuple[str, PackageDocument]:
    opf_path = _read_container(archive.extract_file(CONTAINER_PATH))
    return opf_path, _read_package(archive.extract_file(opf_path), opf_path)


def extract_epub_metadata(epub_file: PathLike) -> EPUBMetadata:
    """Read metadata straight from the archive bytes; nothing touches disk."""
    epub_file = Path(epub_file)
    logger.info("extracting metadata from %s", epub_file.name)
    _check_source(epub_file)
    try:
        archive = ZipArchive.from_path(epub_file)
        opf_path, package = _read_package_in_memory(archive)
    except EPUBError as exc:
        logger.error("failed to extract EPUB metadata from %s: %s", epub_file.name, exc)
        raise
    logger.info("read metadata from %s: title=%r", opf_path, package.metadata.title)
    return package.metadata


def extract_cover_image(epub_file: PathLike) -> Optional[bytes]:
    """Raw bytes of the declared cover image, or ``None`` when there is none."""
    archive = ZipArchive.from_path(Path(epub_file))
    opf_path, package = _read_package_in_memory(archive)
    cover_path = package.metadata.cover_image_path
    if not cover_path:
        return None

    full_path = _join_opf(_opf_directory(opf_path), cover_path)
    try:
        return archive.extract_file(full_path)
    except EPUBError as exc:
        logger.warning("cover image %s could not be extracted: %s", full_path, exc)
        return None

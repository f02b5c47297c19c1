from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Union


@dataclass(frozen=True)
class EPUBMetadata:
    title: Optional[str] = None
    authors: tuple[str, ...] = ()
    language: Optional[str] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    cover_image_path: Optional[str] = None
    identifier: Optional[str] = None
    date: Optional[str] = None


@dataclass(frozen=True)
class EPUBManifestItem:
    id: str
    href: str
    media_type: str


@dataclass(frozen=True)
class EPUBSpineItem:
    id: str
    href: str
    title: Optional[str]
    index: int


@dataclass(frozen=True)
class EPUBBook:
    metadata: EPUBMetadata
    spine: tuple[EPUBSpineItem, ...]
    manifest: Mapping[str, EPUBManifestItem]
    extracted_root: Path
    opf_directory: str
    skipped_idrefs: tuple[str, ...] = ()

    def resolved_path(self, target: Union[EPUBSpineItem, EPUBManifestItem, str]) -> Path:
        """Filesystem location of an href declared by the package document.

        Hrefs in the OPF are relative to its own directory, so ``opf_directory``
        is always prefixed.
        """
        href = target if isinstance(target, str) else target.href
        if not self.opf_directory:
            return self.extracted_root / href
        return self.extracted_root / self.opf_directory / href


def metadata_to_dict(metadata: EPUBMetadata) -> dict:
    return {
        "title": metadata.title,
        "authors": list(metadata.authors),
        "language": metadata.language,
        "publisher": metadata.publisher,
        "description": metadata.description,
        "cover_image_path": metadata.cover_image_path,
        "identifier": metadata.identifier,
        "date": metadata.date,
    }


def spine_item_to_dict(item: EPUBSpineItem) -> dict:
    return {"id": item.id, "href": item.href, "title": item.title, "index": item.index}


def book_to_dict(book: EPUBBook) -> dict:
    return {
        "metadata": metadata_to_dict(book.metadata),
        "spine": [spine_item_to_dict(item) for item in book.spine],
        "manifest": {
            item_id: {"id": item.id, "href": item.href, "media_type": item.media_type}
            for item_id, item in book.manifest.items()
        },
        "extracted_root": str(book.extracted_root),
        "opf_directory": book.opf_directory,
        "skipped_idrefs": list(book.skipped_idrefs),
    }

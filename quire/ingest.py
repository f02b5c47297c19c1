from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

from .epub import extract_epub_metadata
from .errors import EPUBError
from .models import EPUBMetadata

logger = logging.getLogger("quire.ingest")


def import_metadata(epub_file: Union[str, Path]) -> EPUBMetadata:
    """Metadata for the import pipeline, never failing on a bad archive.

    Any parse error is logged and replaced by the file name as title with
    every other field absent.
    """
    path = Path(epub_file)
    try:
        return extract_epub_metadata(path)
    except EPUBError as exc:
        logger.error("EPUB metadata extraction failed for %s: %s", path.name, exc)
        return EPUBMetadata(title=path.stem)

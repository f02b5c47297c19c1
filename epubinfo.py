#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from quire.env import read_env
from quire.epub import extract_cover_image, extract_epub_metadata, parse_epub
from quire.errors import EPUBError
from quire.models import book_to_dict, metadata_to_dict


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect the metadata and reading order of an EPUB file.")
    parser.add_argument("input", help="Input EPUB file path")
    parser.add_argument("-x", "--extract", help="Unpack into this directory and print the spine too")
    parser.add_argument("-c", "--cover", help="Write the cover image bytes to this path")
    return parser.parse_args(argv)


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=(read_env("QUIRE_LOG_LEVEL", "WARNING") or "WARNING").upper())
    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Input file not found: {input_path}", file=sys.stderr)
        return 1

    try:
        if args.extract:
            payload = book_to_dict(parse_epub(input_path, Path(args.extract)))
        else:
            payload = metadata_to_dict(extract_epub_metadata(input_path))
        cover = extract_cover_image(input_path) if args.cover else None
    except EPUBError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    if args.cover:
        if cover is None:
            print("No cover image declared", file=sys.stderr)
        else:
            Path(args.cover).write_bytes(cover)
            print(f"Cover saved to: {args.cover}", file=sys.stderr)

    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))

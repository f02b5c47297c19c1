from __future__ import annotations


class EPUBError(Exception):
    pass


class InvalidZIPFile(EPUBError):
    def __init__(self) -> None:
        super().__init__("Not a valid ZIP/EPUB file")


class CorruptEntry(EPUBError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Corrupt ZIP entry: {path}")


class DecompressionFailed(EPUBError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Decompression failed: {detail}")


class InvalidEPUBStructure(EPUBError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Invalid EPUB structure: {detail}")


class MissingContent(EPUBError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Missing EPUB content: {path}")


class ExtractionFailed(EPUBError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"EPUB extraction failed: {detail}")


class XMLParsingFailed(EPUBError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"XML parsing failed: {detail}")

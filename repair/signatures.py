"""
Container Signature Database — ZIP records, Office parts, file types.

DESIGN RATIONALE
────────────────
Office Open XML documents (DOCX, XLSX, PPTX) are ZIP archives holding
XML parts.  Recovery needs three kinds of lookup:
  • ZIP record signatures  — local file header, central directory,
                             end-of-central-directory, data descriptor
  • Part classification    — which text extractor applies to a part,
                             decided from its archive-relative path
  • File-type detection    — MIME type, then file name, then content

Exported:
  • LOCAL_FILE_HEADER, CENTRAL_DIRECTORY, END_OF_CENTRAL_DIR, DATA_DESCRIPTOR
  • CompressionMethod      — Store / Deflate / Unknown
  • PartKind               — Word / Sheet / Slide / Generic
  • classify_part(path)    — PartKind for an XML part, None for binaries
  • detect_file_type(...)  — "docx", "xlsx", "pptx", "zip", "pdf" or ""
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Optional


# ══════════════════════════════════════════════════════════════
#  Z I P   R E C O R D S
# ══════════════════════════════════════════════════════════════

LOCAL_FILE_HEADER = b"PK\x03\x04"
CENTRAL_DIRECTORY = b"PK\x01\x02"
END_OF_CENTRAL_DIR = b"PK\x05\x06"
DATA_DESCRIPTOR = b"PK\x07\x08"

# Any of these ends the data of the entry before it.
RECORD_SIGNATURES = (
    LOCAL_FILE_HEADER,
    CENTRAL_DIRECTORY,
    END_OF_CENTRAL_DIR,
    DATA_DESCRIPTOR,
)

LOCAL_HEADER_SIZE = 30
EOCD_MIN_SIZE = 22


class CompressionMethod(enum.Enum):
    STORE = 0
    DEFLATE = 8
    UNKNOWN = -1

    @classmethod
    def from_code(cls, code: int) -> "CompressionMethod":
        if code == 0:
            return cls.STORE
        if code == 8:
            return cls.DEFLATE
        return cls.UNKNOWN


# ══════════════════════════════════════════════════════════════
#  O F F I C E   P A R T S
# ══════════════════════════════════════════════════════════════

class PartKind(enum.Enum):
    WORD = "word"
    SHEET = "sheet"
    SLIDE = "slide"
    GENERIC = "generic"


_XML_EXTENSIONS = (".xml", ".rels", ".vml")

# Checked in order; first match wins.
_PART_PATTERNS = [
    (re.compile(r"^word/(document|header\d*|footer\d*|footnotes|endnotes|"
                r"comments)\.xml$", re.I), PartKind.WORD),
    (re.compile(r"^xl/(worksheets/sheet\d*|sharedStrings)\.xml$", re.I),
     PartKind.SHEET),
    (re.compile(r"^ppt/(slides/slide\d*|notesSlides/notesSlide\d*)\.xml$",
                re.I), PartKind.SLIDE),
]


def is_xml_part(path: str) -> bool:
    """True if the path extension marks an XML part."""
    return path.lower().endswith(_XML_EXTENSIONS)


def classify_part(path: str) -> Optional[PartKind]:
    """Return the extractor kind for an XML part, or None for non-XML."""
    if not is_xml_part(path):
        return None
    for pattern, kind in _PART_PATTERNS:
        if pattern.match(path):
            return kind
    return PartKind.GENERIC


# ══════════════════════════════════════════════════════════════
#  F I L E   T Y P E S
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FileTypeInfo:
    """Describes one repairable container type."""
    extension: str
    description: str
    mime_type: str
    is_archive: bool = True
    # Parts a usable document of this type must contain
    required_parts: tuple = ()


FILE_TYPES = {
    "docx": FileTypeInfo(
        "docx", "Word Document (DOCX)",
        "application/vnd.openxmlformats-officedocument."
        "wordprocessingml.document",
        required_parts=("[Content_Types].xml", "word/document.xml"),
    ),
    "xlsx": FileTypeInfo(
        "xlsx", "Excel Spreadsheet (XLSX)",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        required_parts=("[Content_Types].xml", "xl/workbook.xml"),
    ),
    "pptx": FileTypeInfo(
        "pptx", "PowerPoint Presentation (PPTX)",
        "application/vnd.openxmlformats-officedocument."
        "presentationml.presentation",
        required_parts=("[Content_Types].xml", "ppt/presentation.xml"),
    ),
    "zip": FileTypeInfo("zip", "ZIP Archive", "application/zip"),
    "pdf": FileTypeInfo("pdf", "PDF Document", "application/pdf",
                        is_archive=False),
}

_MIME_MAP = {info.mime_type: ext for ext, info in FILE_TYPES.items()}


def detect_file_type(mime_type: str = "", file_name: str = "",
                     data: bytes = b"") -> str:
    """Determine the container type of an upload.

    MIME type wins, then the file-name extension, then the leading bytes.
    Returns "" when nothing matches.
    """
    if mime_type in _MIME_MAP:
        return _MIME_MAP[mime_type]

    if "." in file_name:
        ext = file_name.rsplit(".", 1)[-1].lower()
        if ext in FILE_TYPES:
            return ext

    return sniff_file_type(data)


def sniff_file_type(data: bytes) -> str:
    """Guess the container type from content alone."""
    if not data:
        return ""
    head = bytes(data[:1024])
    if head.startswith(LOCAL_FILE_HEADER):
        # Peek at the first entry name (offset 30) like the carving scanner
        if len(head) >= LOCAL_HEADER_SIZE:
            fn_len = int.from_bytes(head[26:28], "little")
            name = head[30:30 + fn_len].decode("utf-8", errors="replace")
            if name.startswith("word/"):
                return "docx"
            if name.startswith("xl/"):
                return "xlsx"
            if name.startswith("ppt/"):
                return "pptx"
        # Entry names are stored uncompressed, so the main part is visible
        blob = bytes(data)
        for marker, ext in ((b"word/document.xml", "docx"),
                            (b"xl/workbook.xml", "xlsx"),
                            (b"ppt/presentation.xml", "pptx")):
            if marker in blob:
                return ext
        return "zip"
    if b"%PDF-" in head:
        return "pdf"
    if LOCAL_FILE_HEADER in bytes(data):
        return "zip"
    return ""

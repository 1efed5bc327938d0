"""
XML Salvage — Best-effort text recovery from damaged Office XML parts.

Steps for one part:
  1. Lenient UTF-8 decode (invalid sequences replaced, never fatal)
  2. Anchor on the FIRST known root element; if its closing tag is
     missing, cut back to the last complete "safe" close for the part
     kind and append closing tags for every element still open
  3. Extract text with the part kind's extractor:
       • Word   — every w:t run, joined by a space
       • Sheet  — every t / v cell value that is not purely numeric
       • Slide  — every a:t run
       • Generic — strip markup, keep alphabetic words of 4+ letters
  4. Fewer than MIN_TEXT_CHARS readable characters → a placeholder
     sentence naming the part, never an empty string

salvage_text() never raises: the pipeline relies on it as the leaf that
always produces something, even for the worst-damaged part.

Balancing is tag-counting only, enough for regex extraction.  It is not
a validating parser.
"""

from __future__ import annotations

import re
import logging
from dataclasses import dataclass
from typing import Optional
from xml.sax.saxutils import escape

from .signatures import PartKind

logger = logging.getLogger(__name__)

MIN_TEXT_CHARS = 10
PLACEHOLDER_TEMPLATE = "[{part}: content could not be recovered]"

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'

_NS_WORD = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
_NS_SHEET = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
_NS_DRAWING = "http://schemas.openxmlformats.org/drawingml/2006/main"
_NS_PRESENTATION = ("http://schemas.openxmlformats.org/"
                    "presentationml/2006/main")

# Any start, end or empty-element tag (not <? ?>, not <! >)
_TAG = re.compile(r"<(/?)([A-Za-z_][\w:.\-]*)([^<>]*?)(/?)>")
_PROLOG = re.compile(r"<\?xml[^>]*\?>")
_MARKUP = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")
_ENTITY = re.compile(r"&(#x[0-9A-Fa-f]+|#\d+|lt|gt|amp|quot|apos);")
_NUMERIC = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_EDGE_PUNCTUATION = "\"'()[]{}<>.,;:!?-_/\\*&%$#@"

_NAMED_ENTITIES = {
    "lt": "<", "gt": ">", "amp": "&", "quot": '"', "apos": "'",
}


# ─────────────────────────────────────────────────────────────
#  Text helpers
# ─────────────────────────────────────────────────────────────

def decode_entities(text: str) -> str:
    """Decode the five XML entities and numeric character references."""
    def _sub(m: re.Match) -> str:
        ref = m.group(1)
        if ref in _NAMED_ENTITIES:
            return _NAMED_ENTITIES[ref]
        try:
            code = int(ref[2:], 16) if ref[1] in "xX" else int(ref[1:])
            if 0xD800 <= code <= 0xDFFF:
                return m.group(0)
            return chr(code)
        except (ValueError, OverflowError):
            return m.group(0)
    return _ENTITY.sub(_sub, text)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def readable_chars(text: str) -> int:
    """Count of characters that are not whitespace."""
    return sum(1 for ch in text if not ch.isspace())


def placeholder_text(part: str) -> str:
    return PLACEHOLDER_TEMPLATE.format(part=part)


def open_elements(xml: str) -> list[str]:
    """Names of elements opened but not closed, outermost first."""
    stack: list[str] = []
    for m in _TAG.finditer(xml):
        closing, name, _attrs, empty = m.groups()
        if empty:
            continue
        if closing:
            if name in stack:
                # Tolerate mis-nesting: close back to the named element
                while stack and stack.pop() != name:
                    pass
            continue
        stack.append(name)
    return stack


# ══════════════════════════════════════════════════════════════
#  Part-kind extractors
# ══════════════════════════════════════════════════════════════

class PartExtractor:
    """Text extraction and repair rules for one kind of part."""
    kind = PartKind.GENERIC
    # Root element names this kind can start with (None → first element)
    roots: Optional[tuple] = None
    safe_close = re.compile(r"</[A-Za-z_][\w:.\-]*\s*>")
    # Opening tag of a text run (None: runs are not tracked)
    run_open: Optional[re.Pattern] = None

    def find_root(self, text: str) -> Optional[re.Match]:
        """First opening tag of a known root element."""
        start = 0
        if self.roots is None:
            # Unknown vocabulary: only trust markup that starts the
            # document or follows a prolog, not a stray "<x>" in garbage
            prolog = _PROLOG.search(text)
            if prolog:
                start = prolog.end()
            elif not text.lstrip("\ufeff \t\r\n").startswith("<"):
                return None
        for m in _TAG.finditer(text, start):
            closing, name, _attrs, _empty = m.groups()
            if closing:
                continue
            if self.roots is None or _local(name, self.roots):
                return m
        return None

    def last_safe_close(self, region: str, floor: int) -> int:
        """End offset of the last complete safe-close marker after *floor*."""
        end = -1
        for m in self.safe_close.finditer(region, floor):
            end = m.end()
        if end == -1:
            for m in _TAG.finditer(region, floor):
                end = m.end()
        return end if end != -1 else floor

    def open_run_end(self, region: str, floor: int) -> int:
        """End of the character data of a text run left open at the end of
        *region*, or -1 when the region does not stop inside a run."""
        if self.run_open is None:
            return -1
        last = None
        for last in self.run_open.finditer(region, floor):
            pass
        if last is None:
            return -1
        tail = region[last.end():]
        lt = tail.rfind("<")
        if lt != -1 and ">" not in tail[lt:]:
            tail = tail[:lt]                # half-written tag
        if "<" in tail:
            return -1
        amp = tail.rfind("&")
        if amp != -1 and ";" not in tail[amp:]:
            tail = tail[:amp]               # half-written entity
        if not tail.strip():
            return -1
        return last.end() + len(tail)

    def extract(self, xml: str) -> str:
        text = _MARKUP.sub(" ", xml)
        text = collapse_whitespace(decode_entities(text))
        words = []
        for token in text.split(" "):
            token = token.strip(_EDGE_PUNCTUATION)
            if len(token) >= 4 and token.isalpha():
                words.append(token)
        return " ".join(words)

    def wrap(self, text: str, path: str = "") -> str:
        """A minimal well-formed part carrying *text*."""
        return f"{XML_DECLARATION}<recovered>{escape(text)}</recovered>"


class _RunExtractor(PartExtractor):
    """Extractors that read text out of named run elements."""
    text_pattern: re.Pattern

    def runs(self, xml: str) -> list[str]:
        values = []
        for m in self.text_pattern.finditer(xml):
            value = collapse_whitespace(decode_entities(m.group("text")))
            if value:
                values.append(value)
        return values

    def extract(self, xml: str) -> str:
        return collapse_whitespace(" ".join(self.runs(xml)))


class WordExtractor(_RunExtractor):
    kind = PartKind.WORD
    roots = ("document", "hdr", "ftr", "footnotes", "endnotes", "comments")
    safe_close = re.compile(r"</w:p\s*>")
    run_open = re.compile(r"<w:t(?:\s[^>]*)?(?<!/)>")
    text_pattern = re.compile(
        r"<w:t(?:\s[^>]*)?(?<!/)>(?P<text>.*?)</w:t\s*>", re.S)

    def wrap(self, text: str, path: str = "") -> str:
        return (f'{XML_DECLARATION}<w:document xmlns:w="{_NS_WORD}">'
                f'<w:body><w:p><w:r><w:t xml:space="preserve">{escape(text)}'
                f'</w:t></w:r></w:p></w:body></w:document>')


class SheetExtractor(_RunExtractor):
    kind = PartKind.SHEET
    roots = ("worksheet", "sst")
    safe_close = re.compile(r"</(?:\w+:)?(?:c|si)\s*>")
    run_open = re.compile(r"<(?:\w+:)?[tv](?:\s[^>]*)?(?<!/)>")
    text_pattern = re.compile(
        r"<(?P<tag>(?:\w+:)?[tv])(?:\s[^>]*)?(?<!/)>(?P<text>.*?)"
        r"</(?P=tag)\s*>", re.S)

    def runs(self, xml: str) -> list[str]:
        return [v for v in super().runs(xml) if not _NUMERIC.match(v)]

    def wrap(self, text: str, path: str = "") -> str:
        if path.lower().endswith("sharedstrings.xml"):
            return (f'{XML_DECLARATION}<sst xmlns="{_NS_SHEET}" count="1" '
                    f'uniqueCount="1"><si><t xml:space="preserve">'
                    f'{escape(text)}</t></si></sst>')
        return (f'{XML_DECLARATION}<worksheet xmlns="{_NS_SHEET}">'
                f'<sheetData><row r="1"><c r="A1" t="inlineStr"><is>'
                f'<t xml:space="preserve">{escape(text)}</t></is></c></row>'
                f'</sheetData></worksheet>')


class SlideExtractor(_RunExtractor):
    kind = PartKind.SLIDE
    roots = ("sld", "notes")
    safe_close = re.compile(r"</a:p\s*>")
    run_open = re.compile(r"<a:t(?:\s[^>]*)?(?<!/)>")
    text_pattern = re.compile(
        r"<a:t(?:\s[^>]*)?(?<!/)>(?P<text>.*?)</a:t\s*>", re.S)

    def wrap(self, text: str, path: str = "") -> str:
        return (f'{XML_DECLARATION}<p:sld xmlns:a="{_NS_DRAWING}" '
                f'xmlns:p="{_NS_PRESENTATION}"><p:cSld><p:spTree>'
                f'<p:nvGrpSpPr><p:cNvPr id="1" name=""/><p:cNvGrpSpPr/>'
                f'<p:nvPr/></p:nvGrpSpPr><p:grpSpPr/><p:sp><p:nvSpPr>'
                f'<p:cNvPr id="2" name="Recovered Text"/><p:cNvSpPr/>'
                f'<p:nvPr/></p:nvSpPr><p:spPr/><p:txBody><a:bodyPr/>'
                f'<a:p><a:r><a:t>{escape(text)}</a:t></a:r></a:p>'
                f'</p:txBody></p:sp></p:spTree></p:cSld></p:sld>')


EXTRACTORS = {
    PartKind.WORD: WordExtractor(),
    PartKind.SHEET: SheetExtractor(),
    PartKind.SLIDE: SlideExtractor(),
    PartKind.GENERIC: PartExtractor(),
}


def extractor_for(kind: Optional[PartKind]) -> PartExtractor:
    return EXTRACTORS.get(kind, EXTRACTORS[PartKind.GENERIC])


def _local(name: str, roots: tuple) -> bool:
    return name.rsplit(":", 1)[-1] in roots


# ══════════════════════════════════════════════════════════════
#  Salvage
# ══════════════════════════════════════════════════════════════

@dataclass
class SalvageResult:
    """Repaired XML plus the text extracted from it."""
    xml: str
    text: str
    repaired: bool = False          # Closing tags were synthesized
    anchored: bool = False          # A known root element was found
    recovered: bool = False         # Text reached the readable threshold


def repair_xml(text: str, kind: Optional[PartKind]) -> tuple[str, bool, bool]:
    """Balance a truncated part.  Returns (xml, repaired, anchored)."""
    extractor = extractor_for(kind)
    root = extractor.find_root(text)
    if root is None:
        return text, False, False

    start = root.start()
    end = _region_end(text, root)
    prolog_match = _PROLOG.search(text, 0, start)
    prolog = prolog_match.group(0) + "\n" if prolog_match else ""
    region = text[start:end]

    root_name = root.group(2)
    close = re.compile(r"</%s\s*>" % re.escape(root_name))
    closes = list(close.finditer(region))
    if closes:
        return prolog + region[:closes[-1].end()], end != len(text), True

    if root.group(4):
        # <root/> — nothing inside to salvage
        return prolog + region[:root.end() - start], False, True

    cut = extractor.last_safe_close(region, root.end() - start)
    # Keep the character data of a run the truncation cut through
    cut = max(cut, extractor.open_run_end(region, root.end() - start))
    body = region[:cut]
    missing = open_elements(body)
    logger.debug("Closing %d unclosed element(s) under <%s>",
                 len(missing), root_name)
    closing = "".join(f"</{name}>" for name in reversed(missing))
    return prolog + body + closing, True, True


def salvage_part(data, kind: Optional[PartKind], part: str = "part",
                 min_chars: int = MIN_TEXT_CHARS) -> SalvageResult:
    """Repair a part and extract its text.  Never raises."""
    try:
        text = _decode(data)
        xml, repaired, anchored = repair_xml(text, kind)
        extractor = extractor_for(kind)
        extracted = extractor.extract(xml)
    except Exception as e:
        # Last-resort leaf: regex work over hostile input must not abort
        logger.warning("Salvage of %s failed: %s", part, e)
        return SalvageResult(xml="", text=placeholder_text(part))

    if readable_chars(extracted) < min_chars:
        return SalvageResult(xml=xml if anchored else "",
                             text=placeholder_text(part),
                             repaired=repaired, anchored=anchored)
    return SalvageResult(xml=xml, text=extracted, repaired=repaired,
                         anchored=anchored, recovered=True)


def salvage_text(data, kind: Optional[PartKind], part: str = "part",
                 min_chars: int = MIN_TEXT_CHARS) -> str:
    """ExtractedText for one part; a placeholder sentence if too little."""
    return salvage_part(data, kind, part, min_chars).text


def _decode(data) -> str:
    if isinstance(data, str):
        return data
    return bytes(data).decode("utf-8", errors="replace")


def _region_end(text: str, root: re.Match) -> int:
    """Where the first root's region ends: a repeated prolog or root."""
    end = len(text)
    prolog = _PROLOG.search(text, root.end())
    if prolog:
        end = prolog.start()
    name = root.group(2)
    again = re.compile(r"<%s[\s/>]" % re.escape(name)).search(
        text, root.end(), end)
    if again:
        end = again.start()
    return end


# ══════════════════════════════════════════════════════════════
#  Raw printable text (non-archive input)
# ══════════════════════════════════════════════════════════════

_PRINTABLE_RUN = re.compile(rb"[\x20-\x7E]{16,}")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_LETTERS = re.compile(r"[A-Za-z]")


def extract_printable_text(data: bytes, limit: int = 3000,
                           chunk_size: int = 50000) -> str:
    """Readable sentences scraped from arbitrary bytes.

    Keeps sentences longer than 15 characters that are mostly letters;
    returns "" unless at least three are found.
    """
    pieces: list[str] = []
    gathered = 0
    for i in range(0, len(data), chunk_size):
        chunk = bytes(data[i:i + chunk_size])
        for m in _PRINTABLE_RUN.finditer(chunk):
            run = m.group(0).decode("ascii")
            if len(re.findall(r"[A-Za-z]{3,}", run)) < 2:
                continue
            pieces.append(run)
            gathered += len(run)
        if gathered > 2000:
            break

    text = collapse_whitespace(" ".join(pieces))
    sentences = []
    for s in _SENTENCE_SPLIT.split(text):
        s = s.strip()
        if len(s) <= 15:
            continue
        if len(_LETTERS.findall(s)) <= len(s) * 0.6:
            continue
        sentences.append(s)

    if len(sentences) < 3:
        return ""
    return ". ".join(sentences[:20])[:limit]

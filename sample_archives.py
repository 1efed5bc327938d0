"""
Builders for the synthetic Office containers the tests repair.

Everything is built in memory with zipfile; corruption helpers work on the
raw bytes the way real damage does (zeroed regions, cut streams, garbage).
"""
import io
import struct
import zipfile

from PIL import Image

CONTENT_TYPES = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
    '<Types xmlns="http://schemas.openxmlformats.org/package/2006/'
    'content-types"><Default Extension="xml" ContentType="application/xml"/>'
    '</Types>'
)
RELS = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
    '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/'
    'relationships"><Relationship Id="rId1" Type="officeDocument" '
    'Target="word/document.xml"/></Relationships>'
)

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
S_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
A_NS = "http://schemas.openxmlformats.org/drawingml/2006/main"
P_NS = "http://schemas.openxmlformats.org/presentationml/2006/main"


def document_xml(paragraphs):
    body = "".join(f"<w:p><w:r><w:t>{p}</w:t></w:r></w:p>" for p in paragraphs)
    return (f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
            f'<w:document xmlns:w="{W_NS}"><w:body>{body}</w:body>'
            f'</w:document>')


def shared_strings_xml(strings):
    items = "".join(f"<si><t>{s}</t></si>" for s in strings)
    return (f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
            f'<sst xmlns="{S_NS}" count="{len(strings)}" '
            f'uniqueCount="{len(strings)}">{items}</sst>')


def sheet_xml(values):
    cells = "".join(f'<c r="A{i}"><v>{v}</v></c>'
                    for i, v in enumerate(values, 1))
    return (f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
            f'<worksheet xmlns="{S_NS}"><sheetData><row r="1">{cells}</row>'
            f'</sheetData></worksheet>')


def slide_xml(texts):
    paras = "".join(f"<a:p><a:r><a:t>{t}</a:t></a:r></a:p>" for t in texts)
    return (f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
            f'<p:sld xmlns:a="{A_NS}" xmlns:p="{P_NS}"><p:cSld><p:spTree>'
            f'<p:sp><p:txBody>{paras}</p:txBody></p:sp></p:spTree></p:cSld>'
            f'</p:sld>')


def build_zip(parts, method=zipfile.ZIP_DEFLATED):
    """parts: list of (path, str|bytes) in archive order."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for path, content in parts:
            if isinstance(content, str):
                content = content.encode("utf-8")
            zf.writestr(zipfile.ZipInfo(path, (2020, 1, 1, 0, 0, 0)),
                        content, compress_type=method)
    return buf.getvalue()


def build_docx(paragraphs=("Hello world.",), extra_parts=()):
    return build_zip([
        ("[Content_Types].xml", CONTENT_TYPES),
        ("_rels/.rels", RELS),
        ("word/document.xml", document_xml(paragraphs)),
        *extra_parts,
    ])


def build_xlsx(strings=("Quarterly revenue", "Regional totals"),
               values=("42", "3.14")):
    return build_zip([
        ("[Content_Types].xml", CONTENT_TYPES),
        ("xl/workbook.xml",
         f'<workbook xmlns="{S_NS}"><sheets><sheet name="Sheet1" '
         f'sheetId="1"/></sheets></workbook>'),
        ("xl/sharedStrings.xml", shared_strings_xml(strings)),
        ("xl/worksheets/sheet1.xml", sheet_xml(values)),
    ])


def build_pptx(texts=("Project kickoff agenda", "Milestones and owners")):
    return build_zip([
        ("[Content_Types].xml", CONTENT_TYPES),
        ("ppt/presentation.xml",
         f'<p:presentation xmlns:p="{P_NS}"/>'),
        ("ppt/slides/slide1.xml", slide_xml(texts)),
    ])


def make_png(width=8, height=8, color=(200, 30, 30)):
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


# ─── Damage ──────────────────────────────────────────────────

def entry_data_span(data, path):
    """(start, end) of an entry's compressed bytes, via its central record."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        info = zf.getinfo(path)
    off = info.header_offset
    fn_len, extra_len = struct.unpack_from("<HH", data, off + 26)
    start = off + 30 + fn_len + extra_len
    return start, start + info.compress_size


def zero_central_directory(data):
    """Overwrite everything from the first central record to the end."""
    cd = data.find(b"PK\x01\x02")
    return data[:cd] + b"\x00" * (len(data) - cd)


def strip_central_directory(data):
    return data[:data.find(b"PK\x01\x02")]


def corrupt_entry(data, path, at=0.5, length=16):
    """Overwrite bytes in the middle of one entry's compressed stream."""
    start, end = entry_data_span(data, path)
    pos = start + int((end - start) * at)
    length = min(length, end - pos)
    return data[:pos] + b"\xff" * length + data[pos + length:]


def truncate_entry(data, path, cut=200):
    """Drop the last *cut* bytes of one entry's compressed data."""
    start, end = entry_data_span(data, path)
    cut = min(cut, end - start - 1)
    return data[:end - cut] + data[end:]

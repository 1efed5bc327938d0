"""
Tests for the caller layer: type detection, damage analysis, per-type
repair dispatch, PDF trimming and image validation.
"""
import io
import zipfile

from repair.damage_detector import analyze_damage
from repair.file_repair import build_preview, repair_file
from repair.media_check import is_image_part, validate_image
from repair.signatures import FILE_TYPES, detect_file_type, sniff_file_type
from sample_archives import (
    build_docx,
    build_pptx,
    build_xlsx,
    build_zip,
    make_png,
    zero_central_directory,
)

PDF = (b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\n"
       b"trailer\n<< /Root 1 0 R >>\n%%EOF\n")


# ─── Type detection ──────────────────────────────────────────

def test_detect_by_mime():
    mime = FILE_TYPES["xlsx"].mime_type
    assert detect_file_type(mime_type=mime, file_name="x.docx") == "xlsx"
    assert detect_file_type(mime_type="application/pdf") == "pdf"


def test_detect_by_file_name():
    assert detect_file_type(file_name="Report.DOCX") == "docx"
    assert detect_file_type(file_name="notes.txt", data=PDF) == "pdf"


def test_sniff_content():
    assert sniff_file_type(build_docx()) == "docx"
    assert sniff_file_type(build_xlsx()) == "xlsx"
    assert sniff_file_type(build_pptx()) == "pptx"
    assert sniff_file_type(build_zip([("a.txt", "x")])) == "zip"
    assert sniff_file_type(PDF) == "pdf"
    assert sniff_file_type(b"\x00" * 10 + build_docx()) == "zip"
    assert sniff_file_type(b"plain text") == ""
    assert sniff_file_type(b"") == ""


# ─── Damage analysis ─────────────────────────────────────────

def test_healthy_archive():
    report = analyze_damage("docx", build_docx())
    assert not report.is_damaged
    assert report.damage_level == "healthy"
    assert report.local_header_count == 3
    assert report.declared_entry_count == 3


def test_leading_garbage_is_minor():
    report = analyze_damage("docx", b"\x00" * 40 + build_docx())
    assert report.header_damaged
    assert report.leading_garbage_bytes == 40
    assert not report.structure_broken
    assert report.damage_level == "minor"


def test_trailing_garbage_detected():
    report = analyze_damage("zip", build_docx() + b"junk")
    assert report.trailing_garbage
    assert report.trailing_garbage_bytes == 4


def test_missing_end_record():
    report = analyze_damage("docx", zero_central_directory(build_docx()))
    assert report.footer_missing
    assert "rebuild_central_directory" in report.repair_actions
    assert report.damage_level in ("moderate", "severe")
    assert report.repairable


def test_not_an_archive_is_fatal():
    report = analyze_damage("docx", b"this is not a zip file at all")
    assert report.header_damaged
    assert report.damage_level == "fatal"
    assert not report.repairable


def test_pdf_damage():
    report = analyze_damage("pdf", b"junk" + PDF + b"more junk")
    assert report.header_damaged
    assert report.leading_garbage_bytes == 4
    assert report.trailing_garbage
    assert analyze_damage("pdf", PDF).damage_level == "healthy"


# ─── Archive repair ──────────────────────────────────────────

def test_repair_healthy_docx():
    data = build_docx(["Hello world."])
    result = repair_file("docx", data)
    assert result.success
    assert result.status == "success"
    assert result.corruption_level == "healthy"
    assert result.preview == "Hello world."
    assert result.md5_before and result.md5_after
    with zipfile.ZipFile(io.BytesIO(result.repaired_data)) as zf:
        assert "word/document.xml" in zf.namelist()


def test_repair_damaged_docx():
    data = zero_central_directory(build_docx(["Recovered paragraph text"]))
    result = repair_file("docx", data)
    assert result.success
    assert result.corruption_level != "healthy"
    assert any("central directory" in a for a in result.actions_taken)
    assert result.preview == "Recovered paragraph text"
    d = result.to_dict()
    assert d["archive_report"]["scan_fallback"] is True
    assert d["recovery_stats"]["original_size"] == len(data)


def test_missing_required_part_is_partial():
    data = build_zip([("[Content_Types].xml", "<Types/>"),
                      ("xl/sharedStrings.xml",
                       "<sst><si><t>Orphaned strings table</t></si></sst>")])
    result = repair_file("xlsx", data)
    assert result.status == "partial"
    assert "Required part missing: xl/workbook.xml" in result.actions_failed
    assert result.preview == "Orphaned strings table"


def test_type_is_sniffed_when_not_given():
    result = repair_file("", build_pptx())
    assert result.file_type == "pptx"
    assert "Project kickoff agenda" in result.preview


def test_unrecoverable_archive_fails():
    result = repair_file("docx", b"\x13\x37" * 40)
    assert not result.success
    assert result.status == "failed"
    assert result.summary == "Repair failed"
    # A valid (empty) archive still comes back
    with zipfile.ZipFile(io.BytesIO(result.repaired_data)) as zf:
        assert zf.namelist() == []


def test_unsupported_type():
    result = repair_file("txt", b"just some words in a plain text file")
    assert not result.success
    assert result.repaired_data is None
    assert result.actions_failed


def test_empty_file():
    result = repair_file("docx", b"")
    assert not result.success
    assert result.original_size == 0


def test_build_preview_limit():
    data = build_docx(["word " * 200])
    result = repair_file("docx", data)
    assert len(result.preview) == 300
    assert len(build_preview([], limit=10)) == 0


def test_preview_keeps_bracketed_text():
    result = repair_file("docx", build_docx(["[Draft] Budget summary"]))
    assert result.preview == "[Draft] Budget summary"


# ─── PDF repair ──────────────────────────────────────────────

def test_pdf_trims_both_ends():
    result = repair_file("pdf", b"\x00\x01garbage" + PDF + b"\x00trailing")
    assert result.status == "success"
    assert result.repaired_data == PDF
    assert len(result.actions_taken) == 2
    assert result.size_change < 0


def test_pdf_missing_eof_is_appended():
    truncated = PDF[:PDF.index(b"%%EOF")]
    result = repair_file("pdf", truncated)
    assert result.status == "partial"
    assert result.repaired_data.endswith(b"\n%%EOF\n")
    assert result.repaired_data.startswith(b"%PDF-1.4")


def test_pdf_without_header_fails():
    result = repair_file("pdf", b"no header here %%EOF")
    assert result.status == "failed"
    assert not result.success


def test_healthy_pdf_unchanged():
    result = repair_file("pdf", PDF)
    assert result.repaired_data == PDF
    assert result.summary.startswith("Fixed: No damage detected")


def test_pdf_padding_after_eof_is_left_alone():
    padded = PDF + b"\r\n\x00\x00 "
    assert not analyze_damage("pdf", padded).trailing_garbage
    result = repair_file("pdf", padded)
    assert result.repaired_data == padded
    assert not any("after the last %%EOF" in a for a in result.actions_taken)


# ─── Media check ─────────────────────────────────────────────

def test_validate_image():
    png = make_png()
    ok, reason = validate_image(png)
    assert ok, reason
    assert "8x8" in reason

    ok, reason = validate_image(png[:40])
    assert not ok

    ok, reason = validate_image(b"not an image")
    assert not ok
    assert validate_image(b"") == (False, "empty image data")


def test_is_image_part():
    assert is_image_part("word/media/image1.png")
    assert is_image_part("ppt/media/photo.JPEG")
    assert not is_image_part("word/document.xml")
    assert not is_image_part("README")

"""
End-to-end tests of the repair pipeline over healthy and damaged
containers.

Run directly for a verbose walk through the damage scenarios:
    python test_pipeline.py
"""
import io
import zipfile

import pytest

from repair import RepairConfig, RepairPipeline, repair
from repair.entry_recovery import SourceKind
from repair.pipeline import PipelineState
from repair.signatures import classify_part
from repair.xml_salvage import salvage_text
from sample_archives import (
    build_docx,
    build_pptx,
    build_xlsx,
    build_zip,
    corrupt_entry,
    document_xml,
    entry_data_span,
    make_png,
    strip_central_directory,
    truncate_entry,
    zero_central_directory,
)

LONG_DOC = [f"Paragraph {i} describes the findings of section {i * 3}"
            for i in range(150)]


def _entry(outcome, path):
    return next(e for e in outcome.entries if e.path == path)


def _read(data, path):
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return zf.read(path)


def _assert_no_entry_loss(outcome):
    r = outcome.report
    assert r.recovered_count + r.placeholder_count == r.total_entries_found
    assert len(outcome.entries) == r.total_entries_found
    with zipfile.ZipFile(io.BytesIO(outcome.repaired_bytes)) as zf:
        assert zf.testzip() is None
        assert zf.namelist() == [e.path for e in outcome.entries]


# ─── Damage scenarios ────────────────────────────────────────

def test_healthy_docx():
    print("── Test: healthy DOCX ──")
    data = build_docx(["Hello world."])
    outcome = repair(data)
    report = outcome.report
    print(f"  {report.summary}")

    assert report.structured_open and not report.scan_fallback
    assert report.placeholder_count == 0
    assert report.recovered_count == 3
    assert report.status == "success"
    assert _read(outcome.repaired_bytes, "word/document.xml") == \
        _read(data, "word/document.xml")
    _assert_no_entry_loss(outcome)


def test_zeroed_central_directory_falls_back_to_scan():
    print("── Test: zeroed central directory ──")
    data = zero_central_directory(build_docx(["Hello world."]))
    outcome = repair(data)
    report = outcome.report
    print(f"  {report.summary}")

    assert report.scan_fallback and not report.structured_open
    assert any("Central directory unusable" in n
               for n in report.per_entry_notes)
    doc = _entry(outcome, "word/document.xml")
    assert doc.source_kind is SourceKind.DECOMPRESSED
    assert doc.content == document_xml(["Hello world."]).encode()
    _assert_no_entry_loss(outcome)


def test_missing_central_directory():
    data = strip_central_directory(build_xlsx())
    outcome = repair(data)
    assert outcome.report.scan_fallback
    assert outcome.report.recovered_count == 4
    _assert_no_entry_loss(outcome)


def test_random_bytes_is_total_failure():
    print("── Test: not an archive ──")
    data = bytes((i * 37 + 11) % 256 for i in range(50))
    outcome = repair(data)
    report = outcome.report
    print(f"  {report.summary}")

    assert report.total_entries_found == 0
    assert report.recovered_count == 0
    assert report.total_failure
    assert report.status == "failed"
    assert any("Total recovery failure" in n for n in report.per_entry_notes)
    with zipfile.ZipFile(io.BytesIO(outcome.repaired_bytes)) as zf:
        assert zf.namelist() == []


def test_empty_input_is_total_failure():
    outcome = repair(b"")
    assert outcome.report.total_failure
    assert outcome.report.total_entries_found == 0


def test_corrupted_stream_isolated_to_one_entry():
    print("── Test: one corrupted deflate stream ──")
    data = corrupt_entry(build_docx(LONG_DOC), "word/document.xml")
    outcome = repair(data)
    report = outcome.report
    print(f"  {report.summary}")
    for note in report.per_entry_notes:
        print(f"    {note}")

    doc = _entry(outcome, "word/document.xml")
    assert doc.source_kind in (SourceKind.PLACEHOLDER,
                               SourceKind.XML_SALVAGED)
    assert doc.content
    for e in outcome.entries:
        if e.path != "word/document.xml":
            assert e.source_kind is SourceKind.DECOMPRESSED
    assert any(n.startswith("word/document.xml:")
               for n in report.per_entry_notes)
    assert report.status in ("partial", "failed")
    _assert_no_entry_loss(outcome)


def test_truncated_entry_keeps_content():
    data = truncate_entry(build_docx(LONG_DOC), "word/document.xml", 200)
    outcome = repair(data)
    doc = _entry(outcome, "word/document.xml")
    assert doc.content
    assert doc.truncated
    if doc.source_kind is SourceKind.XML_SALVAGED:
        text = salvage_text(doc.content, classify_part(doc.path))
        assert text.startswith("Paragraph 0 describes")
    _assert_no_entry_loss(outcome)


def test_truncated_archive_tail():
    data = build_docx(LONG_DOC)
    cut = data[:data.find(b"PK\x01\x02") - 200]
    outcome = repair(cut)
    assert outcome.report.scan_fallback
    doc = _entry(outcome, "word/document.xml")
    assert doc.content
    assert _entry(outcome, "_rels/.rels").source_kind is \
        SourceKind.DECOMPRESSED
    _assert_no_entry_loss(outcome)


def test_garbage_prefix_still_opens():
    data = b"\x00" * 64 + build_docx(["Prefixed document body"])
    outcome = repair(data)
    assert outcome.report.placeholder_count == 0
    assert outcome.report.recovered_count == 3


def test_truncated_xml_inside_valid_zip_is_salvaged():
    full = document_xml(["Complete first paragraph", "Second paragraph"])
    cut = full[:full.index("Second")]
    data = build_zip([("word/document.xml", cut)])
    outcome = repair(data)
    doc = _entry(outcome, "word/document.xml")
    assert doc.source_kind is SourceKind.XML_SALVAGED
    assert not doc.truncated
    assert salvage_text(doc.content, classify_part(doc.path)) == \
        "Complete first paragraph"


def test_undecodable_binary_part_becomes_empty_placeholder():
    png = make_png()
    data = build_zip([("word/media/image1.png", png),
                      ("word/document.xml", document_xml(["Body text here"]))])
    # Nothing in an all-0xff stream inflates
    data = corrupt_entry(data, "word/media/image1.png", at=0.0, length=1 << 16)
    outcome = repair(data)
    image = _entry(outcome, "word/media/image1.png")
    assert image.source_kind is SourceKind.PLACEHOLDER
    assert image.content == b""
    assert _entry(outcome, "word/document.xml").source_kind is \
        SourceKind.DECOMPRESSED
    _assert_no_entry_loss(outcome)


def test_binary_part_with_bad_crc_keeps_its_bytes():
    png = make_png()
    data = bytearray(build_zip([("word/media/image1.png", png)],
                               method=zipfile.ZIP_STORED))
    start, end = entry_data_span(bytes(data), "word/media/image1.png")
    data[(start + end) // 2] ^= 0x55
    damaged = bytes(data[start:end])
    assert damaged != png

    outcome = repair(bytes(data))
    image = _entry(outcome, "word/media/image1.png")
    assert image.source_kind is SourceKind.DECOMPRESSED
    assert image.content == damaged
    assert image.truncated
    assert any(n.startswith("word/media/image1.png: CRC mismatch")
               for n in outcome.report.per_entry_notes)
    assert outcome.report.recovered_count == 1
    assert outcome.report.status == "partial"
    _assert_no_entry_loss(outcome)


def test_binary_part_with_cut_stream_keeps_prefix():
    blob = bytes(range(256)) * 64
    data = truncate_entry(build_zip([("customXml/item.bin", blob)]),
                          "customXml/item.bin", cut=40)
    outcome = repair(strip_central_directory(data))
    item = _entry(outcome, "customXml/item.bin")
    assert item.source_kind is SourceKind.DECOMPRESSED
    assert item.truncated
    assert item.content
    assert blob.startswith(item.content)


def test_skeleton_without_text_is_a_placeholder():
    cut = ('<?xml version="1.0" encoding="UTF-8"?>\n'
           '<w:document><w:body><w:p><w:r><w:t>')
    data = build_zip([("word/document.xml", cut)])
    outcome = repair(data)
    doc = _entry(outcome, "word/document.xml")
    assert doc.source_kind is SourceKind.PLACEHOLDER
    assert b"[word/document.xml: content could not be recovered]" in \
        doc.content
    assert outcome.report.recovered_count == 0
    assert outcome.report.placeholder_count == 1


def test_paragraph_cut_before_close_is_salvaged():
    cut = ('<?xml version="1.0" encoding="UTF-8"?>\n'
           '<w:document><w:body><w:p><w:r><w:t>Important findings')
    outcome = repair(build_zip([("word/document.xml", cut)]))
    doc = _entry(outcome, "word/document.xml")
    assert doc.source_kind is SourceKind.XML_SALVAGED
    assert salvage_text(doc.content, classify_part(doc.path)) == \
        "Important findings"


def test_bad_image_gets_note_but_keeps_content():
    data = build_docx(extra_parts=[("word/media/image1.png",
                                    b"\x89PNG\r\n\x1a\nnot really")])
    outcome = repair(data)
    image = _entry(outcome, "word/media/image1.png")
    assert image.source_kind is SourceKind.DECOMPRESSED
    assert image.content == b"\x89PNG\r\n\x1a\nnot really"
    assert any(n.startswith("word/media/image1.png:")
               for n in outcome.report.per_entry_notes)

    quiet = repair(data, RepairConfig(check_media=False))
    assert not quiet.report.per_entry_notes


def test_stored_entries_stay_stored():
    data = build_zip([("a.txt", "stored text")], method=zipfile.ZIP_STORED)
    outcome = repair(strip_central_directory(data))
    with zipfile.ZipFile(io.BytesIO(outcome.repaired_bytes)) as zf:
        assert zf.getinfo("a.txt").compress_type == zipfile.ZIP_STORED
        assert zf.read("a.txt") == b"stored text"


# ─── Properties ──────────────────────────────────────────────

@pytest.mark.parametrize("builder", [build_docx, build_xlsx, build_pptx])
def test_round_trip_on_healthy_input(builder):
    data = builder()
    outcome = repair(data)
    report = outcome.report
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        names = zf.namelist()
        assert report.recovered_count == len(names)
        assert report.placeholder_count == 0
        for name in names:
            original = zf.read(name)
            recovered = _entry(outcome, name).content
            assert recovered == original
            kind = classify_part(name)
            if kind is not None:
                assert salvage_text(recovered, kind) == \
                    salvage_text(original, kind)


def test_parallel_workers_keep_discovery_order():
    parts = [(f"xl/worksheets/sheet{i}.xml",
              f"<worksheet><sheetData><c><v>Value {i}</v></c></sheetData>"
              f"</worksheet>") for i in range(40)]
    data = strip_central_directory(build_zip(parts))
    serial = repair(data)
    parallel = repair(data, RepairConfig(workers=3))
    assert [e.path for e in parallel.entries] == [p for p, _ in parts]
    assert parallel.repaired_bytes == serial.repaired_bytes
    assert parallel.report == serial.report


def test_pipeline_instances_are_single_use():
    pipeline = RepairPipeline()
    pipeline.run(build_docx())
    assert pipeline.state is PipelineState.DONE
    with pytest.raises(RuntimeError):
        pipeline.run(build_docx())


def test_repair_rejects_non_bytes():
    with pytest.raises(TypeError):
        repair(None)
    with pytest.raises(TypeError):
        repair("PK\x03\x04")


def test_bytearray_and_memoryview_accepted():
    data = build_docx()
    assert repair(bytearray(data)).report.recovered_count == 3
    assert repair(memoryview(data)).report.recovered_count == 3


def test_report_to_dict():
    d = repair(zero_central_directory(build_docx())).report.to_dict()
    assert d["scan_fallback"] is True
    assert d["total_entries_found"] == 3
    assert isinstance(d["per_entry_notes"], list)


def main():
    print("=" * 60)
    print("  Repair Pipeline — Damage Scenarios")
    print("=" * 60)
    print()

    test_healthy_docx()
    test_zeroed_central_directory_falls_back_to_scan()
    test_random_bytes_is_total_failure()
    test_corrupted_stream_isolated_to_one_entry()

    print()
    print("=" * 60)
    print("  ALL SCENARIOS PASSED ✅")
    print("=" * 60)


if __name__ == "__main__":
    main()

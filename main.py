#!/usr/bin/env python3
"""
Damaged Office Document Repair — Entry Point.

Usage:
    python main.py report.docx                  # → report_repaired.docx
    python main.py broken.bin --type xlsx -o fixed.xlsx
    python main.py deck.pptx --json repair_log.json --workers 0
"""

APP_VERSION = "1.0.0"

import os
import sys
import json
import time
import logging
import argparse

from repair.config import RepairConfig
from repair.file_repair import repair_file
from repair.signatures import FILE_TYPES, detect_file_type

logger = logging.getLogger(__name__)


def cli_mode(args):
    print("=" * 60)
    print(f"  🛠️  Office Document Repair  v{APP_VERSION}")
    print("  Rebuilds damaged DOCX / XLSX / PPTX / ZIP / PDF files")
    print("=" * 60)
    print()

    try:
        with open(args.input, "rb") as f:
            data = f.read()
    except OSError as e:
        print(f"❌ Cannot read {args.input}: {e}")
        sys.exit(1)

    ext = args.type.lower().lstrip(".") if args.type else \
        detect_file_type(file_name=args.input, data=data)
    info = FILE_TYPES.get(ext)

    if args.output:
        output_path = args.output
    else:
        stem, orig_ext = os.path.splitext(args.input)
        out_ext = f".{ext}" if ext else orig_ext
        output_path = f"{stem}_repaired{out_ext}"

    print(f"Input:   {args.input} ({_fmt(len(data))})")
    print(f"Type:    {info.description if info else ext or 'unknown'}")
    print(f"Output:  {output_path}")
    print()

    config = RepairConfig(
        probe_budget=args.probe_budget,
        workers=args.workers,
        check_media=not args.no_media_check,
    )

    print("⚡ Repairing...")
    start = time.time()
    result = repair_file(ext, data, config=config)
    elapsed = time.time() - start
    print()

    dmg = result.damage_before
    print("─" * 60)
    if dmg is not None:
        print(f"  Damage:  {dmg.status_icon} {dmg.status_text} — "
              f"{dmg.short_summary}")
    icon = {"success": "✅", "partial": "⚠️", "failed": "❌"}[result.status]
    print(f"  Status:  {icon} {result.status}")
    if result.archive_report is not None:
        print(f"  Entries: {result.archive_report.summary}")
    for action in result.actions_taken:
        print(f"    ✔ {action}")
    for issue in result.actions_failed:
        print(f"    ✘ {issue}")
    print("─" * 60)

    if result.preview:
        print("\n  Preview:")
        print(f"    {result.preview[:200]}")

    if result.repaired_data is not None:
        with open(output_path, "wb") as f:
            f.write(result.repaired_data)
        print(f"\n  Saved to: {output_path} ({_fmt(result.repaired_size)})")
    else:
        print("\n  Nothing written.")

    if args.json:
        log = result.to_dict()
        log["input"] = os.path.abspath(args.input)
        log["output"] = (os.path.abspath(output_path)
                         if result.repaired_data is not None else None)
        log["elapsed_seconds"] = round(elapsed, 3)
        with open(args.json, "w") as f:
            json.dump(log, f, indent=2, default=str)
        print(f"  Log: {args.json}")

    print(f"\n  Done in {elapsed:.1f}s")
    print()
    return 0 if result.success else 2


def _fmt(n):
    s = float(n)
    for u in ("B", "KB", "MB", "GB"):
        if s < 1024:
            return f"{s:.1f} {u}"
        s /= 1024
    return f"{s:.1f} TB"


def main():
    parser = argparse.ArgumentParser(
        description="Repair damaged Office documents and ZIP archives.")
    parser.add_argument("input", help="Damaged file")
    parser.add_argument("-o", "--output", default="",
                        help="Repaired file (default: <name>_repaired.<ext>)")
    parser.add_argument("--json", default="", help="Write a JSON repair log")
    parser.add_argument("--type", default="",
                        help="Force the container type (docx, xlsx, pptx, "
                             "zip, pdf)")
    parser.add_argument("--workers", type=int, default=1,
                        help="Worker processes (0 = auto)")
    parser.add_argument("--probe-budget", type=int,
                        default=RepairConfig.probe_budget,
                        help="Inflate attempts per damaged entry")
    parser.add_argument("--no-media-check", action="store_true",
                        help="Skip Pillow decode checks on images")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    sys.exit(cli_mode(args))


if __name__ == "__main__":
    main()

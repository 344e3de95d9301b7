"""Load chapter text files into the syllabus_chapters table.

Each ``*.txt`` file in the directory becomes one chapter; the chapter name is
the file name without extension. Existing chapters are overwritten.

Usage:
  Run from the project root with the virtual environment activated, e.g.:
    python scripts/import_chapter_text.py --class-number 9 --subject Physics ./syllabus/physics_9
"""

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

# Ensure project root is on the import path when running as a script
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from db import SessionLocal, init_db
from utils.chapter_text import SyllabusChapterTextProvider


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Load chapter text files into syllabus_chapters")
    parser.add_argument("directory", type=Path, help="Directory containing one <chapter>.txt file per chapter")
    parser.add_argument("--class-number", type=int, required=True, help="Class (grade) number")
    parser.add_argument("--subject", type=str, required=True, help="Subject name")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables first (local development without alembic)",
    )
    return parser


def import_directory(provider: SyllabusChapterTextProvider, directory: Path, class_number: int, subject: str) -> int:
    imported = 0
    for path in sorted(directory.glob("*.txt")):
        content = path.read_text(encoding="utf-8").strip()
        if not content:
            print(f"Skipping empty file {path.name}")
            continue
        provider.upsert_chapter(class_number, subject, path.stem, content)
        print(f"Imported '{path.stem}' ({len(content)} chars)")
        imported += 1
    return imported


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    if not args.directory.is_dir():
        print(f"{args.directory} is not a directory")
        return 1

    if args.create_tables:
        init_db()

    db = SessionLocal()
    try:
        count = import_directory(SyllabusChapterTextProvider(db), args.directory, args.class_number, args.subject)
    finally:
        db.close()

    print(f"Imported {count} chapters for Class {args.class_number} {args.subject}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

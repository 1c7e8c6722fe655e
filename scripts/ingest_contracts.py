#!/usr/bin/env python3
"""
Bulk-ingest contracts from the command line (no API server needed).

Copies each file into data/uploads/, registers it in the upload DB and indexes
it in the vector store. Directories are scanned for .pdf and .txt files.
Use --reset to clear the knowledge base, uploads and registry first.

Run from project root:

    python scripts/ingest_contracts.py contracts/
    python scripts/ingest_contracts.py msa.pdf nda.txt --reset
"""

import argparse
import logging
import sys
from pathlib import Path

# Project root on path so "app" resolves
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from app.core.config import ALLOWED_EXTENSIONS
from app.core.upload_db import clear_all
from app.services.ingestion_service import (
    InvalidFileTypeError,
    clear_upload_dir,
    process_documents_sync,
    save_uploaded_files,
)
from app.services.vector_store import clear_knowledge_base


def collect_files(targets: list[str]) -> list[Path]:
    files: list[Path] = []
    for target in targets:
        path = Path(target)
        if path.is_dir():
            files.extend(sorted(p for p in path.rglob("*") if p.suffix.lower() in ALLOWED_EXTENSIONS))
        elif path.is_file():
            files.append(path)
        else:
            print(f"  skipped (not found): {target}", file=sys.stderr)
    return files


def main() -> int:
    parser = argparse.ArgumentParser(description="Ingest contracts into the knowledge base.")
    parser.add_argument("paths", nargs="+", help="Contract files or directories to scan.")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Clear the knowledge base, uploaded files and upload registry before ingesting.",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)

    if args.reset:
        clear_knowledge_base()
        removed = clear_upload_dir()
        clear_all()
        print(f"Cleared knowledge base ({removed} uploaded files removed).")

    files = collect_files(args.paths)
    if not files:
        print("No .pdf or .txt contracts found.")
        return 1
    try:
        saved = save_uploaded_files([(f.name, f.read_bytes()) for f in files])
    except InvalidFileTypeError as e:
        print(f"Rejected: {', '.join(e.invalid)}", file=sys.stderr)
        return 1

    failures = 0
    for result in process_documents_sync(saved.paths):
        if result.error:
            failures += 1
            print(f"  FAILED {result.source}: {result.error}")
        else:
            print(f"  indexed {result.source}: {result.chunks} chunks")
    print(f"Done. {len(saved.paths) - failures}/{len(saved.paths)} contracts indexed.")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())

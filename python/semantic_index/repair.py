"""
Repair - Drop and recreate the vector store tables.

Each table is dropped through LanceDB first. If that fails (corrupt
manifest, half-written directory, stale lock) the table directory and
any lock files are removed from disk directly. Tables come back empty
the next time they are opened.

Usage:
    semantic-index-repair --db-path ~/.semantic_index/lancedb
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from .config import IndexerConfig, get_config
from .errors import DatabaseError
from .models import TableKind
from .store import VectorStore


logger = logging.getLogger(__name__)


@dataclass
class RepairReport:
    dropped: List[str] = field(default_factory=list)     # dropped through the API
    removed: List[Path] = field(default_factory=list)    # deleted from disk
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _remove_table_files(db_path: Path, name: str, report: RepairReport):
    table_dir = db_path / f"{name}.lance"
    if table_dir.exists():
        try:
            shutil.rmtree(table_dir)
            report.removed.append(table_dir)
            logger.info(f"Removed table directory {table_dir}")
        except OSError as e:
            report.errors.append(f"Cannot remove {table_dir}: {e}")


def _remove_lock_files(db_path: Path, report: RepairReport):
    for lock in db_path.rglob("*.lock"):
        try:
            lock.unlink()
            report.removed.append(lock)
            logger.info(f"Removed stale lock {lock}")
        except OSError as e:
            report.errors.append(f"Cannot remove {lock}: {e}")


def repair_database(store: VectorStore) -> RepairReport:
    """Drop every table, falling back to filesystem removal per table."""
    report = RepairReport()
    fell_back = False

    for kind in TableKind:
        try:
            if store.force_drop(kind):
                report.dropped.append(kind.value)
        except DatabaseError as e:
            logger.warning(f"API drop of {kind.value} failed, removing files: {e}")
            fell_back = True
            _remove_table_files(store.db_path, kind.value, report)

    if fell_back and store.db_path.exists():
        _remove_lock_files(store.db_path, report)
        # Force a fresh connection after files were pulled out from under it
        store.close()

    logger.info(
        f"Repair finished: {len(report.dropped)} dropped, "
        f"{len(report.removed)} removed, {len(report.errors)} errors"
    )
    return report


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Drop and recreate the semantic index tables")
    parser.add_argument("--db-path", help="LanceDB directory (default: from environment)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s"
    )

    config = get_config()
    if args.db_path:
        config = IndexerConfig(db_path=Path(args.db_path))

    report = repair_database(VectorStore(config))
    for name in report.dropped:
        print(f"dropped  {name}")
    for path in report.removed:
        print(f"removed  {path}")
    for error in report.errors:
        print(f"error    {error}")

    raise SystemExit(0 if report.ok else 1)


if __name__ == "__main__":
    main()

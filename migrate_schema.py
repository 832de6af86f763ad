#!/usr/bin/env python3
"""
Standalone script to upgrade SQLite gallery databases from the legacy schema
(INTEGER image ids used as the primary key) to the current schema.

Legacy image ids are rewritten as 'img_<id>'. Each migrated file keeps a
byte-for-byte backup of its previous contents next to it, named
'<name>_backup_pre_migration.db'. Databases already on the current schema are
left untouched, so running this twice is safe.

This script should only be run when the server is NOT using the databases.
"""

import argparse
import os
import sys

from gallery.errors import GalleryStoreError
from gallery.migrator import migrate_directory, migrate_file


def _report(name, result) -> bool:
    if isinstance(result, GalleryStoreError):
        print(f"  - [ERROR]   {name}: {result}")
        return False
    if result.migrated:
        counts = ", ".join(f"{table}={count}" for table, count in result.counts.items())
        print(f"  - [MIGRATED] {name}: {counts}")
        print(f"               backup: {result.backup_path}")
    else:
        print(f"  - [SKIPPED] {name}: already uses the current schema")
    return True


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Migrates gallery databases to the current schema.",
        formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument("target", help="A .db file, or a directory whose .db files should be migrated.")
    args = parser.parse_args()

    target = args.target
    if not os.path.exists(target):
        print(f"Error: Target path does not exist: {target}")
        return 1

    if os.path.isdir(target):
        print(f"Scanning directory: {target}")
        results = migrate_directory(target, progress=True)
    elif target.endswith(".db"):
        try:
            results = [(os.path.basename(target), migrate_file(target))]
        except GalleryStoreError as e:
            results = [(os.path.basename(target), e)]
    else:
        print("Error: Invalid target, must be a .db file or directory.")
        return 1

    print("\n--- Migration Results ---")
    ok = all([_report(name, result) for name, result in results])
    migrated = sum(1 for _, r in results if not isinstance(r, GalleryStoreError) and r.migrated)
    print(f"\nDatabases checked: {len(results)}, migrated: {migrated}")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())

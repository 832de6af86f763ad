#!/usr/bin/env python3
"""
Standalone command-line script to convert a JSON image gallery into a SQLite
database.

The JSON file may be either {"images": [...], "metadata": {...}} or a bare list
of images. The database is created from scratch (an existing file at the output
path is replaced) and records when and from which file it was converted.
"""

import argparse
import os
import sys

from gallery.convert import convert_json_to_sqlite, default_db_path
from gallery.errors import GalleryStoreError


def main() -> int:
    """Main function to orchestrate the conversion."""
    print("--- Image Gallery JSON -> SQLite Converter ---")
    parser = argparse.ArgumentParser(
        description="Converts a JSON image gallery file into a SQLite database.",
        formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument("json_file", help="Path to the source JSON file.")
    parser.add_argument(
        "db_file",
        nargs="?",
        help="Path for the output database.\n(default: the JSON path with a .db extension)"
    )
    args = parser.parse_args()

    if not os.path.exists(args.json_file):
        print(f"Error: JSON file not found at '{args.json_file}'.")
        return 1

    db_file = args.db_file or default_db_path(args.json_file)
    print(f"Starting conversion of {args.json_file} to {db_file}")

    try:
        result = convert_json_to_sqlite(args.json_file, db_file, progress=True)
    except GalleryStoreError as e:
        print(f"\nError: Conversion failed ({e.kind.value}): {e}")
        return 1

    print("\n-----------------------------")
    print(" Conversion completed successfully!")
    print(f" Database created:   {result.db_path}")
    print(f" Images converted:   {result.converted}")
    print(f" Images skipped:     {result.skipped}")
    print(f" Total tags:         {result.stats.total_tags}")
    print(f" Major images:       {result.stats.major_images}")
    print("-----------------------------")
    return 0


if __name__ == "__main__":
    sys.exit(main())

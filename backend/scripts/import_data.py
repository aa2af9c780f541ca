#!/usr/bin/env python3
"""
Import NYC Open Data (PLUTO, rolling sales, HPD/DOB violations) into the database.

Usage:
    python scripts/import_data.py                      # Default bounding box (Flatiron to Hudson Yards)
    python scripts/import_data.py --bbox 40.70 40.72 -74.02 -74.00
    python scripts/import_data.py --json-backup data/combined.json
"""

import sys
import json
import argparse
import logging
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cre_explorer.core.config import settings
from cre_explorer.core.database import create_tables, session_scope
from cre_explorer.core.exceptions import UpstreamFailure
from cre_explorer.services.data_import import run_import
from cre_explorer.services.nyc_open_data import BoundingBox, NYCOpenDataClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("import_data")


def main():
    parser = argparse.ArgumentParser(description="Import NYC Open Data into the CRE database")
    parser.add_argument("--bbox", type=float, nargs=4, metavar=("MIN_LAT", "MAX_LAT", "MIN_LNG", "MAX_LNG"),
                        help="Bounding box to import (defaults to INGEST_* settings)")
    parser.add_argument("--batch-size", type=int, help="Rows per upsert batch")
    parser.add_argument("--json-backup", type=str, help="Also write the run statistics to this JSON file")

    args = parser.parse_args()

    if args.batch_size:
        settings.INGEST_BATCH_SIZE = args.batch_size

    bbox = BoundingBox(*args.bbox) if args.bbox else BoundingBox.from_settings()

    create_tables()

    try:
        print(f"Importing lots in {bbox}...")
        with session_scope() as db, NYCOpenDataClient() as client:
            stats = run_import(db, client, bbox=bbox)

        print("\n=== Import Summary ===")
        print(f"  Properties: {stats.properties_upserted} upserted, {stats.properties_failed} failed")
        print(f"  Sales: {stats.sales_upserted}/{stats.sales_matched} matched rows written, {stats.sales_failed} failed")
        print(f"  Violations: {stats.violations_upserted}/{stats.violations_matched} matched rows written, "
              f"{stats.violations_failed} failed, {stats.violations_closed} closed as no longer open")
        if stats.failed_fetch_chunks:
            print(f"  Skipped upstream chunks: {', '.join(stats.failed_fetch_chunks)}")
        print(f"  Time: {stats.elapsed_seconds:.1f}s")

        if args.json_backup:
            path = Path(args.json_backup)
            path.parent.mkdir(parents=True, exist_ok=True)
            summary = {k: v for k, v in vars(stats).items() if k not in ("start_time", "end_time")}
            summary["elapsed_seconds"] = stats.elapsed_seconds
            path.write_text(json.dumps(summary, indent=2))
            print(f"  Saved statistics to {path}")

        if stats.total_failed:
            sys.exit(2)

    except UpstreamFailure as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Example: Basic usage of Bucket Sync

This example syncs a directory to a bucket twice. The second run finds every
file in the hash cache and on the remote, so nothing is rehashed or uploaded.
"""

import logging
import os
from pathlib import Path

from bucket_sync import BucketSyncAPI, BucketSyncError
from bucket_sync.core.api import load_config

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


def main():
    """Sync ./test_project to the bucket named by BUCKET_SYNC_BUCKET."""
    bucket = os.getenv("BUCKET_SYNC_BUCKET")
    if not bucket:
        print("❌ Set BUCKET_SYNC_BUCKET (and BUCKET_SYNC_ENDPOINT_URL for non-AWS stores)")
        return

    test_dir = Path("test_project")
    (test_dir / "src").mkdir(parents=True, exist_ok=True)
    (test_dir / "src" / "main.py").write_text("print('Hello, World!')")
    (test_dir / "README.md").write_text("# Test Project\n")

    paths = [str(p) for p in sorted(test_dir.rglob("*")) if p.is_file()]

    try:
        api = BucketSyncAPI(
            load_config(
                bucket=bucket,
                endpoint_url=os.getenv("BUCKET_SYNC_ENDPOINT_URL"),
                state_file="example-state.txt",
            )
        )
        for run in (1, 2):
            summary = api.sync(paths)
            print(
                f"Run {run}: {summary.uploaded} uploaded, "
                f"{summary.skipped} skipped, {summary.failed} failed"
            )
    except BucketSyncError as e:
        print(f"❌ Error: {e}")


if __name__ == "__main__":
    main()

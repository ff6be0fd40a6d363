# reconcile_orphans.py
#
# Finds blobs that have no row in the images table. These are left behind
# when an upload fails after the store step (queue or database error) or
# when a client disconnects mid-upload.
#
# Usage:
#   python -m tools.reconcile_orphans            # report only
#   python -m tools.reconcile_orphans --delete   # also remove them

import argparse
import logging
import time
from typing import List, Optional

from ingest.config import LOG_LEVEL
from ingest.metadata import MetadataStore
from ingest.storage import create_blob_store

logger = logging.getLogger(__name__)

# Blobs younger than this may belong to an upload that is still between the
# store and record steps.
DEFAULT_MIN_AGE_SECONDS = 15 * 60


def key_timestamp(key: str) -> Optional[float]:
    """Epoch seconds encoded in a storage key, or None for foreign blobs."""
    prefix, sep, _ = key.partition("-")
    if not sep or not prefix.isdigit():
        return None
    return int(prefix) / 1000


def find_orphan_blobs(blob_store, metadata_store, min_age_seconds: float = DEFAULT_MIN_AGE_SECONDS, now: Optional[float] = None) -> List[str]:
    now = time.time() if now is None else now
    recorded = metadata_store.list_filenames()
    orphans = []
    for key in blob_store.list_keys():
        if key in recorded:
            continue
        created = key_timestamp(key)
        if created is None:
            # Not written by the ingest pipeline; leave it alone.
            continue
        if now - created < min_age_seconds:
            continue
        orphans.append(key)
    return orphans


def main(argv=None):
    parser = argparse.ArgumentParser(description="Report (and optionally delete) blobs without a job record.")
    parser.add_argument("--delete", action="store_true", help="delete orphan blobs after reporting them")
    parser.add_argument("--min-age", type=int, default=DEFAULT_MIN_AGE_SECONDS, help="ignore blobs younger than this many seconds")
    args = parser.parse_args(argv)

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    blob_store = create_blob_store()
    metadata_store = MetadataStore()
    metadata_store.create_schema()

    orphans = find_orphan_blobs(blob_store, metadata_store, min_age_seconds=args.min_age)
    failed = 0
    for key in orphans:
        logger.info("Orphan blob %s", key)
        if args.delete:
            try:
                blob_store.delete(key)
            except Exception as exc:
                failed += 1
                logger.error("Failed to delete %s: %s", key, exc)
                continue
            logger.info("Deleted %s", key)

    logger.info("Found %d orphan blob(s)", len(orphans))
    if failed:
        logger.warning("%d orphan blob(s) could not be deleted", failed)
    return len(orphans)


if __name__ == "__main__":
    main()

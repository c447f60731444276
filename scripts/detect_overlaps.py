#!/usr/bin/env python3
"""
Detect people who appear in more than one workspace of the same organization.

Replaces the stored overlap set with a fresh one. Run nightly, never from a
request path.
"""
import sys
import logging
import signal
import threading
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import settings
from rhizome.services.graph_store import GraphStore
from rhizome.services.overlap_detector import OverlapDetector
from rhizome.services.resilience import SweepCancelledError

logging.basicConfig(level=settings.log_level, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Detect cross-workspace overlaps')
    parser.add_argument('--execute', action='store_true', help='Actually apply changes')
    args = parser.parse_args()

    store = GraphStore()
    detector = OverlapDetector(store)

    if not args.execute:
        logger.info("DRY RUN - use --execute to apply changes")
        current = detector.get_all_overlaps()
        logger.info(f"Would replace {len(current)} active overlaps "
                    f"across {len(store.list_workspaces())} workspaces")
        return

    cancel_event = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: cancel_event.set())

    try:
        overlaps = detector.detect_overlaps(cancel_event=cancel_event)
    except SweepCancelledError as e:
        logger.warning(str(e))
        sys.exit(1)

    by_basis: dict[str, int] = {}
    for o in overlaps:
        by_basis[o.basis] = by_basis.get(o.basis, 0) + 1

    logger.info(f"\n=== Overlap Detection Summary ===")
    logger.info(f"Total: {len(overlaps)}")
    for basis, count in sorted(by_basis.items()):
        logger.info(f"  {basis}: {count}")


if __name__ == '__main__':
    main()

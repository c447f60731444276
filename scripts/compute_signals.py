#!/usr/bin/env python3
"""
Recompute contact signals for every contact in one or all workspaces.

Run periodically (e.g. hourly) so decay, sentiment and capacity reflect the
passage of time even for contacts with no new encounters.
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
from rhizome.services.layers import layer_populations
from rhizome.services.signals import recompute_signals

logging.basicConfig(level=settings.log_level, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Recompute contact signals')
    parser.add_argument('--execute', action='store_true', help='Actually apply changes')
    parser.add_argument('--workspace', help='Only recompute this workspace')
    parser.add_argument('--force', action='store_true', help='Recompute even fresh signals')
    parser.add_argument('--workers', type=int, default=None, help='Thread pool size')
    args = parser.parse_args()

    store = GraphStore()

    if not args.execute:
        workspaces = [args.workspace] if args.workspace else [w.id for w in store.list_workspaces()]
        total = sum(len(store.list_people(w)) for w in workspaces)
        logger.info("DRY RUN - use --execute to apply changes")
        logger.info(f"Would recompute signals for {total} contacts in {len(workspaces)} workspace(s)")
        return

    cancel_event = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: cancel_event.set())

    stats = recompute_signals(
        store,
        tenant_id=args.workspace,
        force=args.force,
        cancel_event=cancel_event,
        max_workers=args.workers,
    )
    logger.info(f"\n=== Signals Sweep Summary ===")
    logger.info(f"Updated: {stats['updated']}")
    logger.info(f"Skipped (fresh): {stats['skipped']}")
    logger.info(f"Failed: {stats['failed']}")
    logger.info(f"Cancelled: {stats['cancelled']}")

    if args.workspace:
        report = layer_populations(store.list_signals(args.workspace))
        for name, row in report.items():
            flag = " (over capacity)" if row['over_capacity'] else ""
            logger.info(f"  {name}: {row['count']}/{row['max_size']}{flag}")


if __name__ == '__main__':
    main()

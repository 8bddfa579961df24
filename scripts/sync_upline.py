#!/usr/bin/env python3
"""
Operator CLI for the upline sync: backfill after an outage, drain the retry queue.

Usage:
    python scripts/sync_upline.py chain                                  # show every tenant's upline
    python scripts/sync_upline.py backfill creditprenuers --since 2025-01-01T00:00:00Z
    python scripts/sync_upline.py backfill coyslogistics --kind booking --limit 200
    python scripts/sync_upline.py retry                                  # re-walk due failures now
    python scripts/sync_upline.py failures --status abandoned

Runs synchronously in this process (no RQ worker needed).
Requires: tenant URLs / keys in the environment, DATABASE_URL for the retry queue.
"""
import sys
import os
import json
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from command_center.config import SYNC_BATCH_LIMIT, SYNC_TABLES
from command_center.database import init_db
from command_center.logging_config import configure_logging
from command_center.services.registry import get_registry
from command_center.services.sync import get_sync_service
from command_center.services.sync_queue import list_sync_failures, retry_due_failures


def cmd_chain(args):
    registry = get_registry()
    for key in registry:
        chain = ' → '.join((key,) + registry.upline(key))
        print(f'{registry.display_name(key):<28} {chain}')
    return 0


def cmd_backfill(args):
    summary = get_sync_service().batch_sync_upline(args.kind, args.tenant, since=args.since, limit=args.limit)
    print(json.dumps(summary, indent=2, default=str))
    return 1 if summary['failed'] else 0


def cmd_retry(args):
    print(json.dumps(retry_due_failures(limit=args.limit), indent=2))
    return 0


def cmd_failures(args):
    status = None if args.status == 'all' else args.status
    for row in list_sync_failures(status=status, limit=args.limit):
        print(f"#{row['id']:<6} {row['status']:<10} {row['origin']}/{row['kind']} {row['record_id']} "
              f"→ {row['failed_db']} (attempts={row['attempts']}): {row['error']}")
    return 0


def main():
    parser = argparse.ArgumentParser(description='Upline sync operations')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('chain', help='Print each database and its upline chain')

    p = sub.add_parser('backfill', help='Re-sync local records of a tenant upline')
    p.add_argument('tenant')
    p.add_argument('--kind', choices=sorted(SYNC_TABLES), default='lead')
    p.add_argument('--since', help='ISO timestamp; only records created at/after it')
    p.add_argument('--limit', type=int, default=SYNC_BATCH_LIMIT)

    p = sub.add_parser('retry', help='Re-walk retry-queue entries that are due')
    p.add_argument('--limit', type=int, default=100)

    p = sub.add_parser('failures', help='List retry-queue entries')
    p.add_argument('--status', choices=['pending', 'resolved', 'abandoned', 'all'], default='pending')
    p.add_argument('--limit', type=int, default=50)

    args = parser.parse_args()

    configure_logging()
    init_db()

    handlers = {
        'chain': cmd_chain,
        'backfill': cmd_backfill,
        'retry': cmd_retry,
        'failures': cmd_failures,
    }
    sys.exit(handlers[args.command](args))


if __name__ == '__main__':
    main()

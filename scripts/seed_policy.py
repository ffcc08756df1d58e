#!/usr/bin/env python3
"""
Install the default catalog policy on a fresh database.

Creates version 1 from catalog_policy/engine/default_policy.yaml and activates
it. Does nothing when an active policy already exists.

Usage:
    python scripts/seed_policy.py             # seed if needed
    python scripts/seed_policy.py --show      # print the active policy

Requires: DATABASE_URL set (or defaults to sqlite:///local.db) and migrations applied.
"""
import argparse
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from catalog_policy.logging_config import configure_logging
from catalog_policy.services import policy_store


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument('--show', action='store_true', help='print the active policy and exit')
    args = parser.parse_args()

    configure_logging()

    if args.show:
        active = policy_store.get_active()
        print(json.dumps(active.to_dict() if active else None, indent=2))
        return

    active = policy_store.ensure_seeded()
    print(f"Active policy: id={active.id} version={active.version}")


if __name__ == '__main__':
    main()

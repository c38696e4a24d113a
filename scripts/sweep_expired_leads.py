#!/usr/bin/env python3
"""
Expired Lead Sweep

Marks open leads whose 7-day window has passed as expired and corrects the
active-lead counter. Browsing and purchasing already skip expired leads, so
this is housekeeping only.

Usage:
    python sweep_expired_leads.py
    python sweep_expired_leads.py --as-of "2026-01-15T00:00:00+00:00"

Schedule via cron (hourly):
    0 * * * * cd /app && python scripts/sweep_expired_leads.py
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.time import parse_utc_datetime, utc_now
from services.marketplace_service import LeadMarketplace


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Expire open leads past their expiry time",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--as-of",
        type=str,
        help="ISO timestamp to sweep at (default: now; naive values are UTC)"
    )

    args = parser.parse_args()

    try:
        as_of = parse_utc_datetime(args.as_of) if args.as_of else utc_now()
    except ValueError as e:
        print(f"Invalid --as-of value: {e}", file=sys.stderr)
        return 2

    marketplace = LeadMarketplace.from_config()
    try:
        expired = marketplace.expire_stale_leads(as_of)
        print(f"Expired {expired} lead(s) as of {as_of.isoformat()}")
        return 0

    except Exception as e:
        print(f"\nFATAL ERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1

    finally:
        marketplace.close()


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Marketplace Rollup Report

Recomputes the batch analytics (weekly trends, demographics, provider
leaderboard) from the stored leads and purchases and prints them.

Usage:
    python refresh_rollups.py
    python refresh_rollups.py --weeks 12
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.analytics import MarketplaceRollups
from services.marketplace_service import LeadMarketplace


def print_rollups(rollups: MarketplaceRollups) -> None:
    trends = rollups.trends
    demographics = rollups.demographics

    print("=" * 60)
    print(f"ROLLUPS AS OF {rollups.computed_at.isoformat()}")
    print("=" * 60)

    print("Weekly trends (week start, leads, sales, revenue, conversion):")
    for i, start in enumerate(trends.week_starts):
        print(
            f"  {start.date()}  {trends.leads_per_week[i]:>4}  {trends.sales_per_week[i]:>4}  "
            f"${trends.revenue_per_week[i]:>8}  {trends.conversion_trend[i]:>5.1f}%"
        )

    print()
    print("Age distribution:")
    for bucket, count in demographics.age_distribution.items():
        print(f"  {bucket:<6} {count}")

    print()
    print("Top zip codes:")
    for stats in demographics.location_heatmap[:5]:
        print(f"  {stats.zip_code}  {stats.leads:>4} leads  avg ${stats.avg_price}")

    print()
    print("Top purchasers:")
    for metrics in rollups.top_purchasers:
        print(f"  {metrics.provider_id:<28} {metrics.leads_per_month:>3}/month  {metrics.conversion_rate:>5.1f}%")

    if rollups.satisfaction_scores:
        print()
        print(f"Lead quality rating: {rollups.satisfaction_scores['lead_quality']:.2f} / 5")
    print("=" * 60)


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(description="Recompute and print marketplace rollups")

    parser.add_argument(
        "--weeks",
        type=int,
        default=7,
        help="Trend window in weeks (default: 7)"
    )

    args = parser.parse_args()

    if args.weeks < 1:
        print("--weeks must be at least 1", file=sys.stderr)
        return 2

    marketplace = LeadMarketplace.from_config()
    try:
        print_rollups(marketplace.refresh_rollups(weeks=args.weeks))
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

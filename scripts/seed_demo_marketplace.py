#!/usr/bin/env python3
"""
Demo Marketplace Seeding Script

Captures a batch of synthetic AAC usage events, lets the demo providers buy
some of the resulting leads, advances a few conversion funnels and prints the
marketplace analytics.

With MARKETPLACE_STORAGE=memory (the default) everything lives in this process
and is a dry demo. With MARKETPLACE_STORAGE=supabase the leads and purchases
are written to the database.

Usage:
    python scripts/seed_demo_marketplace.py
    python scripts/seed_demo_marketplace.py --leads 50 --seed 7
"""

from __future__ import annotations

import argparse
import random
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.purchase import Milestone
from services.marketplace_service import LeadMarketplace, demo_provider_directory

DIAGNOSES = ("autism", "apraxia", "cerebral_palsy", "down_syndrome", "delayed_speech", "stuttering")
ZIP_CODES = {
    "78701": (30.2672, -97.7431),
    "78664": (30.5083, -97.6789),
    "78666": (29.8833, -97.9414),
    "78745": (30.2063, -97.7956),
}
PROVIDER_IDS = (
    "demo-slp-austin",
    "demo-slp-round-rock",
    "demo-slp-san-marcos",
    "demo-practice-enterprise",
)


def synthetic_event(rng: random.Random, index: int) -> dict:
    zip_code, (lat, lng) = rng.choice(sorted(ZIP_CODES.items()))
    return {
        "userId": f"demo-aac-user-{index:04d}",
        "childAge": rng.randint(2, 14),
        "diagnosisFromUsage": rng.choice(DIAGNOSES),
        "usageDuration": rng.randint(0, 60),
        "location": {
            "lat": lat + rng.uniform(-0.05, 0.05),
            "lng": lng + rng.uniform(-0.05, 0.05),
            "zipCode": zip_code,
        },
        "parentEmail": f"parent{index:04d}@example.com",
        "appEngagement": rng.randint(10, 100),
    }


def seed(marketplace: LeadMarketplace, leads: int, rng: random.Random) -> dict[str, int]:
    stats = {"captured": 0, "purchased": 0, "rejected": 0, "converted": 0}

    for index in range(leads):
        marketplace.capture_lead_from_aac(synthetic_event(rng, index))
        stats["captured"] += 1

    for provider_id in PROVIDER_IDS:
        available = marketplace.get_available_leads(provider_id)
        for ranked in available.leads[: rng.randint(1, max(1, len(available.leads)))]:
            result = marketplace.purchase_lead(provider_id, ranked.lead_id, "card")
            if not result.success:
                stats["rejected"] += 1
                continue
            stats["purchased"] += 1

            for milestone in Milestone:
                if rng.random() > 0.6:
                    break
                marketplace.track_conversion(result.purchase_id, milestone)
                if milestone == Milestone.CONVERTED:
                    stats["converted"] += 1

            marketplace.record_feedback(result.purchase_id, rng.randint(3, 5))

    return stats


def print_summary(stats: dict[str, int], marketplace: LeadMarketplace) -> None:
    overview = marketplace.get_marketplace_analytics().overview
    rollups = marketplace.refresh_rollups()

    print("=" * 60)
    print("DEMO MARKETPLACE SUMMARY")
    print("=" * 60)
    print(f"Leads captured:       {stats['captured']}")
    print(f"Purchases:            {stats['purchased']}")
    print(f"Rejected purchases:   {stats['rejected']}")
    print(f"Conversions:          {stats['converted']}")
    print()
    print(f"Active leads:         {overview.active_leads}")
    print(f"Total revenue:        ${overview.total_revenue}")
    print(f"Average lead price:   ${overview.avg_lead_price}")
    print(f"Conversion rate:      {overview.conversion_rate:.1f}%")
    print()
    print("Top purchasers:")
    for metrics in rollups.top_purchasers:
        print(
            f"  {metrics.provider_id:<28} {metrics.leads_purchased:>3} leads  "
            f"{metrics.conversion_rate:>5.1f}% converted  ROI {metrics.avg_roi:>8.1f}%"
        )
    print("=" * 60)


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Seed the lead marketplace with synthetic AAC usage events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # 25 leads, random purchases
  python seed_demo_marketplace.py

  # Reproducible run
  python seed_demo_marketplace.py --leads 50 --seed 7
        """
    )

    parser.add_argument(
        "--leads",
        type=int,
        default=25,
        help="Number of usage events to capture (default: 25)"
    )

    parser.add_argument(
        "--seed",
        type=int,
        help="Random seed for reproducible runs"
    )

    args = parser.parse_args()

    if args.leads < 1:
        print("--leads must be at least 1", file=sys.stderr)
        return 2

    marketplace = LeadMarketplace.from_config(directory=demo_provider_directory())
    try:
        stats = seed(marketplace, args.leads, random.Random(args.seed))
        print_summary(stats, marketplace)
        return 0

    except KeyboardInterrupt:
        print("\n\nSeeding interrupted by user")
        return 130

    except Exception as e:
        print(f"\nFATAL ERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1

    finally:
        marketplace.close()


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Print the order tag histogram for a shop.

Walks every page of the shop's orders (same aggregation the dashboard's
tag-counts endpoint uses) and prints one line per tag.

Usage:
    cd dashboard-commerce-proxy
    python scripts/tag_report.py [--shop my-store.myshopify.com] [--token shpat_...] [--json]

Options:
    --shop       Shop domain (default: SHOPIFY_SHOP_DOMAIN)
    --token      Access token (default: SHOPIFY_TOKEN)
    --max-pages  Stop with an error after this many pages
    --json       Print the result as JSON
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from dashproxy.services.credentials import StaticCredentialResolver
from dashproxy.services.errors import AggregationError
from dashproxy.services.models import TagCountResult
from dashproxy.services.pagination import OrderAggregator
from dashproxy.services.upstream import UpstreamClient


async def build_report(shop_domain: str, token: str, api_version: str, max_pages: int | None) -> TagCountResult:
    """Run the aggregation against one shop."""
    shop = StaticCredentialResolver(shop_domain, token, api_version).resolve()
    async with UpstreamClient() as client:
        aggregator = OrderAggregator(client, max_pages=max_pages)
        return await aggregator.aggregate_tag_counts(shop)


def print_report(shop_domain: str, result: TagCountResult):
    """Print the histogram, most frequent tag first."""
    print()
    print("=" * 60)
    print(f"  Order Tags: {shop_domain}")
    print("=" * 60)
    print(f"  Orders: {result.total}  (pages fetched: {result.pages})")
    print("-" * 60)
    for tag, count in sorted(result.counts.items(), key=lambda item: (-item[1], item[0])):
        print(f"  {tag:<40} {count:>10}")
    print("=" * 60)
    print()


def main():
    parser = argparse.ArgumentParser(description="Print the order tag histogram for a shop")
    parser.add_argument("--shop", default=os.environ.get("SHOPIFY_SHOP_DOMAIN", ""))
    parser.add_argument("--token", default=os.environ.get("SHOPIFY_TOKEN", ""))
    parser.add_argument("--api-version", default=os.environ.get("SHOPIFY_API_VERSION", "2024-01"))
    parser.add_argument("--max-pages", type=int, default=None)
    parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not args.shop or not args.token:
        print("ERROR: shop domain and token required (--shop/--token or SHOPIFY_SHOP_DOMAIN/SHOPIFY_TOKEN)")
        sys.exit(1)

    try:
        result = asyncio.run(build_report(args.shop, args.token, args.api_version, args.max_pages))
    except AggregationError as e:
        print(f"ERROR: {e} (after {e.pages_fetched} pages)")
        sys.exit(1)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, sort_keys=True))
    else:
        print_report(args.shop, result)


if __name__ == "__main__":
    main()

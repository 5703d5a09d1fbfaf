"""
Sandbox Shop Dataset Generator
Writes a Shopify-shaped JSON dataset for `profit-pipeline sync --fixtures`.
"""

import argparse
from pathlib import Path

from profit_pipeline.data.generators import ShopifyPayloadGenerator

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "generated"


# ==========================================
# MAIN
# ==========================================
def main():
    parser = argparse.ArgumentParser(description="Generate a sandbox shop dataset")
    parser.add_argument("--products", type=int, default=50)
    parser.add_argument("--customers", type=int, default=200)
    parser.add_argument("--orders", type=int, default=1000)
    parser.add_argument("--refund-rate", type=float, default=0.05)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--output", type=Path, default=OUTPUT_DIR / "shop.json")
    args = parser.parse_args()

    print("=" * 60)
    print("🛒 Sandbox Shop Dataset Generator")
    print("=" * 60 + "\n")

    print(f"📊 Generating {args.products:,} products, {args.customers:,} customers, {args.orders:,} orders...")
    dataset = ShopifyPayloadGenerator(seed=args.seed).generate(
        products=args.products,
        customers=args.customers,
        orders=args.orders,
        refund_rate=args.refund_rate,
    )
    path = dataset.save(args.output)

    refunds = sum(len(items) for items in dataset.refunds.values())
    line_items = sum(len(order["line_items"]) for order in dataset.orders)
    size = path.stat().st_size / 1024 / 1024

    print("\n" + "=" * 60)
    print("✅ Dataset Generation Complete!")
    print("=" * 60)
    print(f"\n📁 Output: {path} ({size:.2f} MB)\n")
    print(f"   📄 products: {len(dataset.products):,}")
    print(f"   📄 customers: {len(dataset.customers):,}")
    print(f"   📄 orders: {len(dataset.orders):,} ({line_items:,} line items)")
    print(f"   📄 refunds: {refunds:,}")


if __name__ == "__main__":
    main()

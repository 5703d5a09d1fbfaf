"""
Synthetic Shopify Payload Generator

Generates Shopify Admin REST shaped payloads for sandbox runs and tests.
Includes:
- Products with variants and inventory costs
- Customers with addresses
- Orders with embedded line items
- Refunds with refund line items and transactions
"""

import json
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from faker import Faker

from profit_pipeline.ingestion.source import InMemorySourceClient, Payload

# =============================================================================
# CONFIGURATION
# =============================================================================

PRODUCT_TYPES = ["Apparel", "Accessories", "Home", "Beauty", "Outdoor", "Stationery"]
VARIANT_OPTIONS = ["Small", "Medium", "Large", "Red", "Blue", "Black"]
FINANCIAL_STATUSES = [("paid", 0.85), ("partially_refunded", 0.05), ("refunded", 0.05), ("pending", 0.05)]
RESTOCK_TYPES = ["no_restock", "return", "cancel"]


def _money(value: float) -> str:
    return str(Decimal(str(value)).quantize(Decimal("0.01")))


def _timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


@dataclass
class ShopifyDataset:
    """A generated store: payload lists plus refunds keyed by order id"""
    products: List[Payload] = field(default_factory=list)
    customers: List[Payload] = field(default_factory=list)
    orders: List[Payload] = field(default_factory=list)
    refunds: Dict[str, List[Payload]] = field(default_factory=dict)

    def to_source_client(self, page_size: int = 250) -> InMemorySourceClient:
        return InMemorySourceClient(
            products=self.products,
            customers=self.customers,
            orders=self.orders,
            refunds=self.refunds,
            page_size=page_size,
        )

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.__dict__, indent=2))
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ShopifyDataset":
        data = json.loads(Path(path).read_text())
        return cls(
            products=data.get("products", []),
            customers=data.get("customers", []),
            orders=data.get("orders", []),
            refunds=data.get("refunds", {}),
        )


class ShopifyPayloadGenerator:
    """
    Generate a consistent synthetic store.

    Ids are sequential so datasets are reproducible for a given seed.

    Example:
        dataset = ShopifyPayloadGenerator(seed=7).generate(products=20, customers=50, orders=200)
        client = dataset.to_source_client(page_size=50)
    """

    def __init__(self, seed: int = 42, now: Optional[datetime] = None):
        self.fake = Faker()
        self.fake.seed_instance(seed)
        self.random = random.Random(seed)
        self.now = now or datetime.now(timezone.utc)
        self._next_id = 1000

    def _id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _past(self, max_days: int = 365) -> datetime:
        return self.now - timedelta(days=self.random.randint(0, max_days), minutes=self.random.randint(0, 1440))

    def product(self, variants: int = 2, with_cost: bool = True) -> Payload:
        created = self._past(730)
        title = f"{self.fake.color_name()} {self.fake.word().title()}"
        base_price = round(self.random.uniform(10, 200), 2)
        return {
            "id": self._id(),
            "title": title,
            "handle": title.lower().replace(" ", "-"),
            "body_html": f"<p>{self.fake.sentence()}</p>",
            "vendor": self.fake.company(),
            "product_type": self.random.choice(PRODUCT_TYPES),
            "tags": ", ".join(self.fake.words(nb=self.random.randint(0, 3))),
            "status": "active",
            "images": [{"src": self.fake.image_url(), "alt": title, "position": 1}],
            "variants": [
                {
                    "id": self._id(),
                    "title": option,
                    "price": _money(base_price),
                    "compare_at_price": None,
                    "sku": f"SKU-{self._next_id:08d}",
                    "inventory_quantity": self.random.randint(0, 500),
                    "inventory_policy": "deny",
                    "inventory_management": "shopify",
                    "weight": round(self.random.uniform(0.1, 5.0), 2),
                    "weight_unit": "kg",
                    "requires_shipping": True,
                    "taxable": True,
                    "cost": _money(base_price * self.random.uniform(0.3, 0.7)) if with_cost else None,
                }
                for option in self.random.sample(VARIANT_OPTIONS, k=max(1, min(variants, len(VARIANT_OPTIONS))))
            ],
            "created_at": _timestamp(created),
            "updated_at": _timestamp(created),
            "published_at": _timestamp(created),
        }

    def customer(self) -> Payload:
        created = self._past(900)
        return {
            "id": self._id(),
            "email": self.fake.email(),
            "first_name": self.fake.first_name(),
            "last_name": self.fake.last_name(),
            "phone": self.fake.phone_number(),
            "default_address": {
                "address1": self.fake.street_address(),
                "city": self.fake.city(),
                "province": self.fake.state(),
                "country": "United States",
                "zip": self.fake.postcode(),
                "country_code": "US",
                "province_code": self.fake.state_abbr(),
            },
            "state": "enabled",
            "accepts_marketing": self.random.random() < 0.4,
            "orders_count": 0,
            "total_spent": "0.00",
            "tags": "",
            "note": None,
            "created_at": _timestamp(created),
            "updated_at": _timestamp(created),
        }

    def order(self, products: List[Payload], customer: Optional[Payload] = None) -> Payload:
        created = self._past(365)
        line_items = []
        for product in self.random.sample(products, k=self.random.randint(1, min(3, len(products)))):
            variant = self.random.choice(product["variants"])
            line_items.append({
                "id": self._id(),
                "product_id": product["id"],
                "variant_id": variant["id"],
                "title": product["title"],
                "variant_title": variant["title"],
                "sku": variant["sku"],
                "vendor": product["vendor"],
                "product_type": product["product_type"],
                "quantity": self.random.randint(1, 4),
                "price": variant["price"],
                "total_discount": "0.00",
                "grams": int(float(variant["weight"]) * 1000),
                "requires_shipping": True,
                "taxable": True,
                "fulfillment_status": self.random.choice([None, "fulfilled"]),
                "fulfillment_service": "manual",
                "properties": [],
            })

        subtotal = sum(Decimal(item["price"]) * item["quantity"] for item in line_items)
        tax = (subtotal * Decimal("0.08")).quantize(Decimal("0.01"))
        statuses, weights = zip(*FINANCIAL_STATUSES)
        return {
            "id": self._id(),
            "order_number": self._next_id,
            "name": f"#{self._next_id}",
            "email": customer["email"] if customer else None,
            "total_price": str(subtotal + tax),
            "subtotal_price": str(subtotal),
            "total_tax": str(tax),
            "total_discounts": "0.00",
            "currency": "USD",
            "financial_status": self.random.choices(statuses, weights=weights)[0],
            "fulfillment_status": None,
            "customer": {"id": customer["id"], "email": customer["email"]} if customer else None,
            "line_items": line_items,
            "tags": "",
            "note": None,
            "source_url": None,
            "created_at": _timestamp(created),
            "updated_at": _timestamp(created),
            "processed_at": _timestamp(created),
        }

    def refund(self, order: Payload) -> Payload:
        item = self.random.choice(order["line_items"])
        quantity = self.random.randint(1, item["quantity"])
        amount = Decimal(item["price"]) * quantity
        created = datetime.fromisoformat(order["created_at"]) + timedelta(days=self.random.randint(1, 20))
        return {
            "id": self._id(),
            "order_id": order["id"],
            "note": self.fake.sentence(),
            "refund_line_items": [{
                "id": self._id(),
                "line_item_id": item["id"],
                "quantity": quantity,
                "restock_type": self.random.choice(RESTOCK_TYPES),
                "subtotal": str(amount),
                "total_tax": "0.00",
                "line_item": {
                    "id": item["id"],
                    "product_id": item["product_id"],
                    "variant_id": item["variant_id"],
                    "title": item["title"],
                    "variant_title": item["variant_title"],
                    "sku": item["sku"],
                    "price": item["price"],
                },
            }],
            "transactions": [{
                "id": self._id(),
                "amount": str(amount),
                "currency": "USD",
                "kind": "refund",
                "gateway": "manual",
                "status": "success",
                "processed_at": _timestamp(created),
            }],
            "created_at": _timestamp(created),
            "processed_at": _timestamp(created),
        }

    def generate(
        self,
        products: int = 20,
        customers: int = 50,
        orders: int = 200,
        refund_rate: float = 0.05,
        guest_rate: float = 0.1,
    ) -> ShopifyDataset:
        """Generate a full store; a share of orders are guest checkouts"""
        dataset = ShopifyDataset()
        dataset.products = [self.product(variants=self.random.randint(1, 3)) for _ in range(products)]
        dataset.customers = [self.customer() for _ in range(customers)]

        for _ in range(orders):
            customer = None
            if dataset.customers and self.random.random() >= guest_rate:
                customer = self.random.choice(dataset.customers)
            order = self.order(dataset.products, customer)
            dataset.orders.append(order)
            if self.random.random() < refund_rate:
                dataset.refunds[str(order["id"])] = [self.refund(order)]

        return dataset


def generate_dataset(seed: int = 42, **counts: Any) -> ShopifyDataset:
    return ShopifyPayloadGenerator(seed=seed).generate(**counts)

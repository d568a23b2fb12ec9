from decimal import Decimal

import pytest

from storefront.db import PriceConflictError


class MemoryCatalog:
    """Каталог в памяти с тем же поведением поиска, что и PgCatalog."""

    def __init__(self, products=()):
        self.products = [dict(p) for p in products]
        self.history = []
        self.broken_ids = set()
        self.lookups = 0

    def _get(self, product_id):
        for p in self.products:
            if str(p["id"]) == str(product_id):
                return p
        return None

    def find_by_article(self, article):
        self.lookups += 1
        for p in self.products:
            if p.get("article") == article:
                return dict(p)
        matches = [p for p in self.products if p.get("article") and p["article"].lower() == article.lower()]
        matches.sort(key=lambda p: p["article"])
        return dict(matches[0]) if matches else None

    def find_by_name(self, name):
        self.lookups += 1
        needle = name.lower()
        matches = [p for p in self.products if needle in p["name"].lower()]
        matches.sort(key=lambda p: (len(p["name"]), p["name"], str(p["id"])))
        return dict(matches[0]) if matches else None

    def apply_price(self, product, new_price):
        if str(product["id"]) in self.broken_ids:
            raise RuntimeError("connection lost")
        stored = self._get(product["id"])
        if stored is None or stored["price"] != product["price"]:
            raise PriceConflictError("price changed concurrently")
        self.history.append({"product_id": stored["id"], "price": stored["price"]})
        stored["price"] = new_price

    def price_of(self, product_id):
        return self._get(product_id)["price"]


@pytest.fixture()
def catalog():
    return MemoryCatalog(
        [
            {"id": "p-iphone", "article": "IPHONE15PRO", "name": "iPhone 15 Pro", "price": Decimal("130000")},
            {"id": "p-case", "article": "CASE-SIL", "name": "Чехол силиконовый для iPhone", "price": Decimal("1500")},
            {"id": "p-case-long", "article": "CASE-SIL-MAX", "name": "Чехол силиконовый для iPhone 15 Pro Max", "price": Decimal("1700")},
            {"id": "p-cable", "article": "CABLE-USBC", "name": "Кабель USB-C 1 м", "price": Decimal("990")},
            {"id": "p-glass", "article": None, "name": "Защитное стекло", "price": Decimal("700")},
        ]
    )

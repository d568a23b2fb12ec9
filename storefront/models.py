"""
Структуры данных загрузки прайс-листа.

PriceListEntry — одна распознанная строка прайса,
MatchResult — результат сопоставления строки с товаром каталога,
PriceUpdateResult — итог применения прайса (успешно / ошибки по строкам).

Товары каталога остаются обычными dict-строками из psycopg (dict_row):
{"id": ..., "article": ..., "name": ..., "price": Decimal}.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class PriceListEntry:
    article: Optional[str]
    name: Optional[str]
    price: Decimal

    @property
    def key(self) -> str:
        """Ключ для поиска дублей: артикул, если есть, иначе название."""
        return self.article or self.name or ""

    def to_dict(self) -> Dict[str, Any]:
        return {"article": self.article, "name": self.name, "price": self.price}


@dataclass(frozen=True)
class MatchResult:
    entry: PriceListEntry
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    current_price: Optional[Decimal] = None

    @property
    def found(self) -> bool:
        return self.product_id is not None

    @property
    def price_delta(self) -> Optional[Decimal]:
        if not self.found or self.current_price is None:
            return None
        return self.entry.price - self.current_price

    def to_dict(self) -> Dict[str, Any]:
        item = self.entry.to_dict()
        item.update(
            {
                "product_id": self.product_id,
                "product_name": self.product_name,
                "current_price": self.current_price,
                "price_change": self.price_delta,
                "found": self.found,
            }
        )
        return item


@dataclass
class PriceUpdateError:
    line: int
    article: Optional[str]
    name: Optional[str]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"line": self.line}
        if self.article:
            d["article"] = self.article
        if self.name:
            d["name"] = self.name
        d["reason"] = self.reason
        return d


@dataclass
class PriceUpdateResult:
    success: int = 0
    failed: int = 0
    errors: List[PriceUpdateError] = field(default_factory=list)

    def add_error(self, line: int, entry: PriceListEntry, reason: str) -> None:
        self.failed += 1
        self.errors.append(PriceUpdateError(line=line, article=entry.article, name=entry.name, reason=reason))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
        }

"""
Сопоставление строк прайса с каталогом и применение новых цен.

``catalog`` — любой объект с методами:

    find_by_article(article) -> dict | None
    find_by_name(name) -> dict | None
    apply_price(product, new_price) -> None

В продакшене это storefront.db.PgCatalog. Товар — dict с ключами
id, article, name, price.

Превью и применение используют один и тот же match_entry(), поэтому
превью показывает ровно то, что будет записано (если каталог не менялся
между вызовами).
"""

import logging
from typing import Dict, Iterable, List, Tuple

from .models import MatchResult, PriceListEntry, PriceUpdateResult

log = logging.getLogger("storefront.prices")

NOT_FOUND_REASON = "product not found"


def match_entry(catalog, entry: PriceListEntry) -> MatchResult:
    product = None
    if entry.article:
        product = catalog.find_by_article(entry.article)
    if product is None and entry.name:
        product = catalog.find_by_name(entry.name)

    if product is None:
        return MatchResult(entry=entry)
    return MatchResult(
        entry=entry,
        product_id=str(product["id"]),
        product_name=product.get("name"),
        current_price=product.get("price"),
    )


def summarize(matches: Iterable[MatchResult]) -> Dict[str, int]:
    summary = {
        "total": 0,
        "found": 0,
        "not_found": 0,
        "price_increased": 0,
        "price_decreased": 0,
        "price_unchanged": 0,
    }
    for m in matches:
        summary["total"] += 1
        if not m.found:
            summary["not_found"] += 1
            continue
        summary["found"] += 1
        delta = m.price_delta
        if delta is None:
            continue
        if delta > 0:
            summary["price_increased"] += 1
        elif delta < 0:
            summary["price_decreased"] += 1
        else:
            summary["price_unchanged"] += 1
    return summary


def preview_prices(catalog, entries: List[PriceListEntry]) -> Tuple[List[MatchResult], Dict[str, int]]:
    """Сопоставляет все строки без записи в базу."""
    matches = [match_entry(catalog, e) for e in entries]
    return matches, summarize(matches)


def update_prices(catalog, entries: List[PriceListEntry]) -> PriceUpdateResult:
    """
    Применяет прайс построчно, в порядке файла. Каждая строка независима:
    ошибка одной строки попадает в result.errors и не останавливает остальные,
    уже применённые строки не откатываются.
    """
    result = PriceUpdateResult()

    for line, entry in enumerate(entries, start=1):
        try:
            # заново ищем товар: каталог мог измениться после превью
            match = match_entry(catalog, entry)
            if not match.found:
                log.warning("line %s: product not found (article=%r, name=%r)", line, entry.article, entry.name)
                result.add_error(line, entry, NOT_FOUND_REASON)
                continue

            product = {"id": match.product_id, "name": match.product_name, "price": match.current_price}
            catalog.apply_price(product, entry.price)
        except Exception as e:
            log.warning("line %s: price update failed: %s", line, e)
            result.add_error(line, entry, str(e) or e.__class__.__name__)
            continue

        result.success += 1

    log.info("price list applied: success=%s failed=%s", result.success, result.failed)
    return result

"""
Разбор прайс-листов.

Поддерживаемые форматы (определяются автоматически по содержимому):

    артикул;название;цена      (разделитель ``;``, TAB или ``,``)
    артикул;цена / название;цена
    Название: цена / Название - цена

Строки, которые не удалось разобрать, молча пропускаются.
Дубли и прочие проблемы ловит validate_entries().
"""

import re
from decimal import Decimal
from typing import Iterator, List, Optional

from .models import PriceListEntry

HEADER_KEYWORDS = ("артикул", "article", "название", "name")

CURRENCY_RE = re.compile(r"₽|\$|€|руб\.?|rub\.?|р\.", re.IGNORECASE)
SPACES_RE = re.compile(r"\s+")
PLAIN_NUMBER_RE = re.compile(r"^\d+(\.\d+)?$")
ARTICLE_RE = re.compile(r"^[A-Za-z0-9_-]+$")
# "Название: цена", "Название - цена", "Название-цена" — первый подошедший шаблон
FREEFORM_PATTERNS = (
    re.compile(r"^(.+?)\s*:\s*(.+)$"),
    re.compile(r"^(.+?)\s+[–—-]\s+(.+)$"),
    re.compile(r"^(.+?)\s*[–—-]\s*(.+)$"),
)

# products.price — NUMERIC(12,2)
MAX_PRICE = Decimal("10000000000")

EMPTY_INPUT_MESSAGE = "could not recognize data; check file format"


def parse_price(raw) -> Optional[Decimal]:
    """
    "125 000 руб." -> Decimal("125000"), "12,50€" -> Decimal("12.50").
    Возвращает None для нечисловых, бесконечных и неположительных значений.
    """
    if raw is None:
        return None
    cleaned = SPACES_RE.sub("", CURRENCY_RE.sub("", str(raw)))

    if "," in cleaned and "." in cleaned:
        # правый разделитель — десятичный, левый — разряды
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif cleaned.count(",") > 1:
        cleaned = cleaned.replace(",", "")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")
    else:
        cleaned = cleaned.replace(",", ".")

    # только цифры и точка: без экспоненты, знака, NaN и Infinity
    if not PLAIN_NUMBER_RE.match(cleaned):
        return None
    price = Decimal(cleaned)
    if price <= 0 or price >= MAX_PRICE:
        return None
    return price


def detect_delimiter(content: str) -> Optional[str]:
    """
    Порядок проверки фиксирован: ``;`` > TAB > ``,`` > свободный текст (None).
    Точка с запятой побеждает, даже если в полях есть запятые (1 250,50).
    """
    text = (content or "").strip()
    if ";" in text:
        return ";"
    if "\t" in text:
        return "\t"
    first_line = text.splitlines()[0] if text else ""
    if "," in first_line and len(first_line.split(",")) >= 2:
        return ","
    return None


def looks_like_header(line: str) -> bool:
    low = line.lower()
    return any(word in low for word in HEADER_KEYWORDS)


def iter_delimited(content: str, delimiter: str) -> Iterator[PriceListEntry]:
    lines = (content or "").strip().splitlines()
    if not lines:
        return
    start = 1 if looks_like_header(lines[0]) else 0

    for line in lines[start:]:
        line = line.strip()
        if not line:
            continue
        parts = [p.strip() for p in line.split(delimiter)]
        if len(parts) < 2:
            continue

        if len(parts) >= 3:
            price = parse_price(parts[2])
            article = parts[0] or None
            name = parts[1] or None
        else:
            price = parse_price(parts[1])
            if ARTICLE_RE.match(parts[0]):
                article, name = parts[0], None
            else:
                article, name = None, parts[0] or None

        if price is None or not (article or name):
            continue
        yield PriceListEntry(article=article, name=name, price=price)


def iter_freeform(content: str) -> Iterator[PriceListEntry]:
    for line in (content or "").strip().splitlines():
        line = line.strip()
        if not line:
            continue
        m = None
        for pattern in FREEFORM_PATTERNS:
            m = pattern.match(line)
            if m:
                break
        if not m:
            continue
        price = parse_price(m.group(2))
        name = m.group(1).strip()
        if price is None or not name:
            continue
        yield PriceListEntry(article=None, name=name, price=price)


def parse_price_list(content: str) -> Iterator[PriceListEntry]:
    """Определяет формат и лениво отдаёт распознанные строки в порядке файла."""
    text = (content or "").strip()
    delimiter = detect_delimiter(text)
    if delimiter is None:
        return iter_freeform(text)
    return iter_delimited(text, delimiter)


def validate_entries(entries: List[PriceListEntry]) -> List[str]:
    """
    Предупреждения по уже разобранному списку; список не меняется.
    Номер строки — позиция в разобранном списке (с 1), а не в исходном файле.
    Пустой список — блокирующая ошибка.
    """
    if not entries:
        return [EMPTY_INPUT_MESSAGE]

    errors = []
    seen = set()
    for i, entry in enumerate(entries, start=1):
        if not entry.article and not entry.name:
            errors.append(f"line {i}: missing article or name")
        if entry.price <= 0:
            errors.append(f"line {i}: invalid price")
        key = entry.key
        if key in seen:
            errors.append(f"line {i}: duplicate entry '{key}'")
        seen.add(key)
    return errors

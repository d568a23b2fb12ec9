import os
import uuid

import psycopg
from psycopg.rows import dict_row

DATABASE_URL = os.getenv("DATABASE_URL", "").strip()


class PriceConflictError(RuntimeError):
    """Цена товара изменилась между чтением и записью."""


# =========================
# Connection
# =========================
def get_conn():
    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not set")
    return psycopg.connect(DATABASE_URL, row_factory=dict_row)


# =========================
# Init / migrations (safe)
# =========================
def init_db():
    """
    Создаёт таблицы каталога и истории цен (если их нет).
    Можно вызывать на старте приложения сколько угодно раз.
    """

    create_sql = """
    -- Товары (каталог витрины)
    CREATE TABLE IF NOT EXISTS products (
      id UUID PRIMARY KEY,
      article TEXT UNIQUE,
      name TEXT NOT NULL,
      price NUMERIC(12,2) NOT NULL DEFAULT 0,
      updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );

    -- История цен: только вставка, старая цена перед каждым изменением
    CREATE TABLE IF NOT EXISTS price_history (
      id UUID PRIMARY KEY,
      product_id UUID NOT NULL REFERENCES products(id) ON DELETE CASCADE,
      price NUMERIC(12,2) NOT NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );

    CREATE INDEX IF NOT EXISTS idx_price_history_product ON price_history(product_id, created_at DESC);
    """

    migrate_products_sql = [
        # таблица products может прийти от витрины без этих колонок
        "ALTER TABLE products ADD COLUMN IF NOT EXISTS article TEXT;",
        "ALTER TABLE products ADD COLUMN IF NOT EXISTS updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW();",
        "CREATE INDEX IF NOT EXISTS idx_products_article_lower ON products(lower(article));",
    ]

    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(create_sql)
            for stmt in migrate_products_sql:
                cur.execute(stmt)
        conn.commit()


# =========================
# Products
# =========================
def escape_like(value):
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def get_product_by_article(article):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, article, name, price
                FROM products
                WHERE article = %s
                """,
                (article,),
            )
            return cur.fetchone()


def get_product_by_article_ci(article):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, article, name, price
                FROM products
                WHERE lower(article) = lower(%s)
                ORDER BY article ASC
                LIMIT 1
                """,
                (article,),
            )
            return cur.fetchone()


def find_product_by_name(name):
    """
    Товар, в названии которого встречается name (без учёта регистра).
    При нескольких совпадениях берём самое короткое название, затем по алфавиту.
    """
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, article, name, price
                FROM products
                WHERE name ILIKE %s
                ORDER BY length(name) ASC, name ASC, id ASC
                LIMIT 1
                """,
                (f"%{escape_like(name)}%",),
            )
            return cur.fetchone()


def record_price_change(product_id, old_price, new_price):
    """
    В одной транзакции: запись старой цены в price_history и обновление товара.
    UPDATE срабатывает только если цена всё ещё old_price, иначе откат.
    """
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO price_history (id, product_id, price)
                VALUES (%s, %s, %s)
                """,
                (uuid.uuid4(), product_id, old_price),
            )
            cur.execute(
                """
                UPDATE products
                SET price = %s,
                    updated_at = NOW()
                WHERE id = %s AND price = %s
                """,
                (new_price, product_id, old_price),
            )
            if cur.rowcount != 1:
                raise PriceConflictError("price changed concurrently")
        conn.commit()


def list_price_history(product_id, limit=10):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT price, created_at
                FROM price_history
                WHERE product_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (product_id, limit),
            )
            return cur.fetchall()


class PgCatalog:
    """Каталог для сопоставления прайса: поиск товаров и запись новой цены."""

    def find_by_article(self, article):
        # сначала точное совпадение, потом без учёта регистра
        return get_product_by_article(article) or get_product_by_article_ci(article)

    def find_by_name(self, name):
        return find_product_by_name(name)

    def apply_price(self, product, new_price):
        record_price_change(product["id"], product["price"], new_price)

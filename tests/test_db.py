import uuid
from decimal import Decimal

import pytest

from storefront import db


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rowcount = -1

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.conn.executed.append((" ".join(sql.split()), params))
        self.rowcount = self.conn.rowcounts.pop(0) if self.conn.rowcounts else 1

    def fetchone(self):
        return self.conn.rows.pop(0) if self.conn.rows else None

    def fetchall(self):
        rows, self.conn.rows = self.conn.rows, []
        return rows


class FakeConn:
    def __init__(self):
        self.executed = []
        self.rows = []
        self.rowcounts = []
        self.commits = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1


@pytest.fixture()
def conn(monkeypatch):
    fake = FakeConn()
    monkeypatch.setattr(db, "get_conn", lambda: fake)
    return fake


def test_get_conn_requires_database_url(monkeypatch):
    monkeypatch.setattr(db, "DATABASE_URL", "")

    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        db.get_conn()


def test_init_db_runs_schema_and_commits(conn):
    db.init_db()

    statements = [sql for sql, _ in conn.executed]
    assert "CREATE TABLE IF NOT EXISTS price_history" in statements[0]
    assert any("idx_products_article_lower" in s for s in statements)
    assert conn.commits == 1


def test_record_price_change_writes_history_then_guarded_update(conn):
    product_id = uuid.uuid4()

    db.record_price_change(product_id, Decimal("1500"), Decimal("1800"))

    (insert_sql, insert_params), (update_sql, update_params) = conn.executed
    assert insert_sql.startswith("INSERT INTO price_history")
    assert isinstance(insert_params[0], uuid.UUID)
    assert insert_params[1:] == (product_id, Decimal("1500"))
    assert "WHERE id = %s AND price = %s" in update_sql
    assert update_params == (Decimal("1800"), product_id, Decimal("1500"))
    assert conn.commits == 1


def test_record_price_change_conflict_is_not_committed(conn):
    conn.rowcounts = [1, 0]

    with pytest.raises(db.PriceConflictError, match="price changed concurrently"):
        db.record_price_change(uuid.uuid4(), Decimal("1500"), Decimal("1800"))

    assert len(conn.executed) == 2
    assert conn.commits == 0


def test_escape_like():
    assert db.escape_like("50%_a\\b") == "50\\%\\_a\\\\b"
    assert db.escape_like("Чехол") == "Чехол"


def test_find_product_by_name_escapes_and_orders(conn):
    conn.rows = [{"id": "p1", "article": None, "name": "Скидка 50% на чехол", "price": Decimal("1")}]

    product = db.find_product_by_name("50%")

    sql, params = conn.executed[0]
    assert params == ("%50\\%%",)
    assert "name ILIKE %s" in sql
    assert "ORDER BY length(name) ASC, name ASC, id ASC LIMIT 1" in sql
    assert product["id"] == "p1"


def test_find_by_article_exact_hit_skips_fallback(conn):
    conn.rows = [{"id": "p1", "article": "CASE-SIL", "name": "Чехол", "price": Decimal("1500")}]

    product = db.PgCatalog().find_by_article("CASE-SIL")

    assert product["id"] == "p1"
    assert len(conn.executed) == 1
    assert "WHERE article = %s" in conn.executed[0][0]


def test_find_by_article_falls_back_to_case_insensitive(conn):
    # первый SELECT ничего не находит, второй отдаёт товар
    conn.rows = [None, {"id": "p1", "article": "CASE-SIL", "name": "Чехол", "price": Decimal("1500")}]

    product = db.PgCatalog().find_by_article("case-sil")

    assert product["article"] == "CASE-SIL"
    assert [params for _, params in conn.executed] == [("case-sil",), ("case-sil",)]
    assert "lower(article) = lower(%s)" in conn.executed[1][0]


def test_apply_price_uses_stored_price_as_guard(conn):
    product = {"id": "p1", "article": "A1", "name": "Item", "price": Decimal("10")}

    db.PgCatalog().apply_price(product, Decimal("12"))

    assert conn.executed[1][1] == (Decimal("12"), "p1", Decimal("10"))


def test_list_price_history_newest_first(conn):
    conn.rows = [{"price": Decimal("10"), "created_at": None}]

    rows = db.list_price_history("p1", limit=5)

    sql, params = conn.executed[0]
    assert "ORDER BY created_at DESC" in sql
    assert params == ("p1", 5)
    assert rows == [{"price": Decimal("10"), "created_at": None}]

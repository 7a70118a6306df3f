import pytest
import sqlalchemy as sa

from storeledger.errors import MigrationError
from storeledger.extensions import db
from storeledger import models  # noqa: F401
from storeledger.services.schema_guard import (
    MIGRATION_STEPS,
    MigrationStep,
    applied_steps,
    rebuild_table,
    run_schema_guard,
)


LEGACY_CUSTOMERS = """
CREATE TABLE customers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    full_name VARCHAR(255) NOT NULL,
    phone_number VARCHAR(32),
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

LEGACY_SALES_ORDERS = """
CREATE TABLE sales_orders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    customer_id INTEGER NOT NULL REFERENCES customers(id),
    payment_method VARCHAR(16) NOT NULL,
    discount BIGINT NOT NULL,
    tax_rate_bps INTEGER NOT NULL,
    subtotal BIGINT NOT NULL,
    items_discount BIGINT NOT NULL,
    tax_amount BIGINT NOT NULL,
    grand_total BIGINT NOT NULL,
    transaction_date DATE NOT NULL,
    notes TEXT,
    status VARCHAR(16) NOT NULL,
    canceled_at DATETIME,
    cancel_reason VARCHAR(255),
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

LEGACY_SALES_ORDER_LINES = """
CREATE TABLE sales_order_lines (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id INTEGER NOT NULL REFERENCES sales_orders(id),
    item_type VARCHAR(16) NOT NULL,
    item_id INTEGER,
    description VARCHAR(255) NOT NULL,
    quantity INTEGER NOT NULL,
    unit_price BIGINT NOT NULL,
    discount_per_item BIGINT NOT NULL,
    total_price BIGINT NOT NULL
)
"""

LEGACY_INSTALLMENT_PAYMENTS = """
CREATE TABLE installment_payments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    installment_sale_id INTEGER NOT NULL REFERENCES installment_sales_old(id),
    installment_number INTEGER NOT NULL,
    due_date DATE NOT NULL,
    amount_due BIGINT NOT NULL,
    paid_date DATE,
    status VARCHAR(16) NOT NULL
)
"""

LEGACY_LEDGER = """
CREATE TABLE customer_ledger_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    "customerId" INTEGER NOT NULL REFERENCES customers_old(id),
    entry_date DATETIME NOT NULL,
    description VARCHAR(255) NOT NULL,
    debit BIGINT NOT NULL,
    credit BIGINT NOT NULL,
    balance BIGINT NOT NULL,
    order_id INTEGER,
    installment_sale_id INTEGER,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


@pytest.fixture
def engine(tmp_path):
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'legacy.sqlite3'}")
    yield engine
    engine.dispose()


def _execute(engine, *statements):
    with engine.begin() as conn:
        for statement in statements:
            conn.exec_driver_sql(statement)


def _execute_unchecked(engine, *statements):
    """Run DDL/DML with foreign keys off, for legacy tables that point at missing parents."""
    with engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        for statement in statements:
            conn.exec_driver_sql(statement)
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")


def _seed_legacy_orders(engine):
    _execute(
        engine,
        LEGACY_CUSTOMERS,
        LEGACY_SALES_ORDERS,
        LEGACY_SALES_ORDER_LINES,
        "CREATE INDEX ix_sales_orders_customer_id ON sales_orders (customer_id)",
        "INSERT INTO customers (id, full_name) VALUES (1, 'Sara')",
        "INSERT INTO sales_orders (id, customer_id, payment_method, discount, tax_rate_bps, subtotal, "
        "items_discount, tax_amount, grand_total, transaction_date, status) "
        "VALUES (1, 1, 'credit', 0, 900, 100000, 0, 9000, 109000, '2024-03-01', 'active')",
        "INSERT INTO sales_orders (id, customer_id, payment_method, discount, tax_rate_bps, subtotal, "
        "items_discount, tax_amount, grand_total, transaction_date, status) "
        "VALUES (2, 1, 'cash', 0, 0, 50000, 0, 0, 50000, '2024-03-02', 'active')",
        "INSERT INTO sales_order_lines (order_id, item_type, item_id, description, quantity, unit_price, "
        "discount_per_item, total_price) VALUES (1, 'service', NULL, 'Repair', 1, 100000, 0, 100000)",
    )


def _column(engine, table, name):
    for col in sa.inspect(engine).get_columns(table):
        if col["name"] == name:
            return col
    return None


def _count(engine, table):
    with engine.connect() as conn:
        return conn.execute(sa.text(f"SELECT COUNT(*) FROM {table}")).scalar()


def test_fresh_database_records_every_step(engine):
    recorded = run_schema_guard(engine, db.metadata)

    assert recorded == [step.name for step in MIGRATION_STEPS]
    assert applied_steps(engine) == recorded
    assert _column(engine, "sales_orders", "customer_id")["nullable"] is True


def test_nullable_customer_rebuild_keeps_rows(engine):
    _seed_legacy_orders(engine)
    assert _column(engine, "sales_orders", "customer_id")["nullable"] is False

    run_schema_guard(engine, db.metadata)

    assert _column(engine, "sales_orders", "customer_id")["nullable"] is True
    assert _count(engine, "sales_orders") == 2
    assert _count(engine, "sales_order_lines") == 1
    with engine.connect() as conn:
        row = conn.execute(sa.text("SELECT grand_total, version_id FROM sales_orders WHERE id = 1")).one()
        assert row.grand_total == 109000
        # Column missing from the legacy table gets its model default
        assert row.version_id == 1

        # Walk-in orders are now accepted
        conn.execute(sa.text(
            "INSERT INTO sales_orders (customer_id, payment_method, discount, tax_rate_bps, subtotal, "
            "items_discount, tax_amount, grand_total, transaction_date, status, version_id) "
            "VALUES (NULL, 'cash', 0, 0, 1, 0, 0, 1, '2024-03-03', 'active', 1)"
        ))
        conn.commit()

    inspector = sa.inspect(engine)
    assert not inspector.has_table("sales_orders__aside")
    # Child table still points at sales_orders by name
    fks = inspector.get_foreign_keys("sales_order_lines")
    assert fks[0]["referred_table"] == "sales_orders"


def _snapshot(engine):
    with engine.connect() as conn:
        schema = conn.execute(sa.text(
            "SELECT type, name, sql FROM sqlite_master WHERE name NOT LIKE 'sqlite_%' ORDER BY type, name"
        )).all()
    tables = [name for kind, name, _ in schema if kind == "table"]
    return schema, {table: _count(engine, table) for table in tables}


def test_second_run_is_a_no_op(engine):
    _seed_legacy_orders(engine)

    first = run_schema_guard(engine, db.metadata)
    after_first = _snapshot(engine)
    second = run_schema_guard(engine, db.metadata)

    assert first
    assert second == []
    assert _snapshot(engine) == after_first
    assert after_first[1]["sales_orders"] == 2


def test_ledger_legacy_column_is_copied(engine):
    _execute_unchecked(
        engine,
        LEGACY_CUSTOMERS,
        LEGACY_LEDGER,
        "INSERT INTO customers (id, full_name) VALUES (1, 'Sara')",
        "INSERT INTO customer_ledger_entries (\"customerId\", entry_date, description, debit, credit, balance) "
        "VALUES (1, '2024-03-01 10:00:00.000000', 'Invoice', 500000, 0, 500000)",
    )

    run_schema_guard(engine, db.metadata)

    columns = {col["name"] for col in sa.inspect(engine).get_columns("customer_ledger_entries")}
    assert "customer_id" in columns
    assert "customerId" not in columns
    fks = sa.inspect(engine).get_foreign_keys("customer_ledger_entries")
    assert fks[0]["referred_table"] == "customers"
    with engine.connect() as conn:
        row = conn.execute(sa.text("SELECT customer_id, balance FROM customer_ledger_entries")).one()
    assert (row.customer_id, row.balance) == (1, 500000)


def test_installment_payments_stale_parent_fk_is_repointed(engine):
    _execute(
        engine,
        LEGACY_CUSTOMERS,
        "INSERT INTO customers (id, full_name) VALUES (1, 'Sara')",
    )
    db.metadata.tables["installment_sales"].create(engine)
    _execute(
        engine,
        "INSERT INTO installment_sales (id, customer_id, sale_price, discount, down_payment, monthly_rate_bps, "
        "financed_total, period_count, period_amount, tolerance, tolerance_overridden, start_date, status, version_id) "
        "VALUES (1, 1, 12000000, 0, 2000000, 200, 14400000, 12, 1033334, 200000, 0, '2024-04-01', 'active', 1)",
    )
    _execute_unchecked(
        engine,
        LEGACY_INSTALLMENT_PAYMENTS,
        "INSERT INTO installment_payments (installment_sale_id, installment_number, due_date, amount_due, status) "
        "VALUES (1, 1, '2024-04-01', 1033334, 'paid')",
        "INSERT INTO installment_payments (installment_sale_id, installment_number, due_date, amount_due, status) "
        "VALUES (1, 2, '2024-05-01', 1033334, 'unpaid')",
    )

    recorded = run_schema_guard(engine, db.metadata)

    assert "0002_installment_payments_parent_fk" in recorded
    fks = sa.inspect(engine).get_foreign_keys("installment_payments")
    assert fks[0]["referred_table"] == "installment_sales"
    with engine.connect() as conn:
        rows = conn.execute(sa.text(
            "SELECT installment_number, amount_due, status, version_id FROM installment_payments "
            "ORDER BY installment_number"
        )).all()
    assert [tuple(row) for row in rows] == [(1, 1033334, "paid", 1), (2, 1033334, "unpaid", 1)]


def test_leftover_aside_table_is_copied_forward(engine):
    _execute(
        engine,
        LEGACY_CUSTOMERS,
        LEGACY_SALES_ORDERS.replace("CREATE TABLE sales_orders", "CREATE TABLE sales_orders__aside"),
        "INSERT INTO customers (id, full_name) VALUES (1, 'Sara')",
        "INSERT INTO sales_orders__aside (customer_id, payment_method, discount, tax_rate_bps, subtotal, "
        "items_discount, tax_amount, grand_total, transaction_date, status) "
        "VALUES (1, 'cash', 0, 0, 10, 0, 0, 10, '2024-03-01', 'active')",
    )

    run_schema_guard(engine, db.metadata)

    inspector = sa.inspect(engine)
    assert not inspector.has_table("sales_orders__aside")
    assert _count(engine, "sales_orders") == 1


def test_failed_rebuild_rolls_back(engine):
    _seed_legacy_orders(engine)
    broken = MigrationStep(
        name="9999_broken",
        table="sales_orders",
        detect=lambda inspector: True,
        # A NULL copied into a NOT NULL column makes the copy fail
        column_map={"notes": "payment_method"},
    )

    with pytest.raises(MigrationError):
        run_schema_guard(engine, db.metadata, steps=[broken])

    inspector = sa.inspect(engine)
    assert inspector.has_table("sales_orders")
    assert not inspector.has_table("sales_orders__aside")
    assert _column(engine, "sales_orders", "customer_id")["nullable"] is False
    assert _count(engine, "sales_orders") == 2
    assert "9999_broken" not in applied_steps(engine)


def test_rebuild_of_missing_table_is_an_error(engine):
    with pytest.raises(MigrationError):
        rebuild_table(engine, db.metadata.tables["sales_orders"])


def test_absent_table_step_is_skipped(engine):
    step = MigrationStep(name="0100_ghost", table="no_such_table", detect=lambda inspector: True)

    recorded = run_schema_guard(engine, db.metadata, steps=[step])

    assert recorded == ["0100_ghost"]
    assert not sa.inspect(engine).has_table("no_such_table")


def test_failed_rebuild_restores_foreign_keys(tmp_path):
    # One pooled connection, so the rebuild's connection is the one inspected
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'single.sqlite3'}", poolclass=sa.pool.StaticPool)
    try:
        _seed_legacy_orders(engine)
        broken = MigrationStep(
            name="9999_broken",
            table="sales_orders",
            detect=lambda inspector: True,
            column_map={"notes": "payment_method"},
        )

        with pytest.raises(MigrationError):
            run_schema_guard(engine, db.metadata, steps=[broken])

        with engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
            assert conn.exec_driver_sql("PRAGMA legacy_alter_table").scalar() == 0
    finally:
        engine.dispose()


def test_app_connections_enforce_foreign_keys(db_session):
    assert db_session.execute(sa.text("PRAGMA foreign_keys")).scalar() == 1

# Overview: Startup schema guard; rebuilds legacy SQLite tables whose structure no longer matches the models.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy.engine import Connection, Engine

from ..errors import MigrationError
from storeledger.time_utils import utcnow
"""
Schema guard invariants (authoritative)

- Each step has a stable name; once recorded in schema_migrations it never
  runs again, so a second guard run is a no-op.
- A rebuild either completes fully or leaves the original table untouched:
  rename, create, copy and drop share one exclusive transaction.
- Every row of the old table survives; columns are copied by name plus the
  step's rename map.
- Other tables keep referencing the table by name (legacy_alter_table=ON
  during the rename).
- Integrity is verified with PRAGMA foreign_key_check before commit.
"""


logger = logging.getLogger(__name__)

MARKER_TABLE = "schema_migrations"
ASIDE_SUFFIX = "__aside"

_marker_metadata = sa.MetaData()
schema_migrations = sa.Table(
    MARKER_TABLE,
    _marker_metadata,
    sa.Column("name", sa.String(128), primary_key=True),
    sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
)


@dataclass(frozen=True)
class MigrationStep:
    """
    One named structural repair.

    `detect(inspector)` returns True when the live table does not match the
    model and has to be rebuilt. `column_map` maps legacy column names to
    their current names for the row copy.
    """
    name: str
    table: str
    detect: Callable[[sa.engine.Inspector], bool]
    column_map: dict[str, str] = field(default_factory=dict)


# =============================================================================
# DETECTORS
# =============================================================================

def _column_not_nullable(table: str, column: str):
    def detect(inspector) -> bool:
        for col in inspector.get_columns(table):
            if col["name"] == column:
                return not col.get("nullable", True)
        return False
    return detect


def _fk_not_pointing_at(table: str, column: str, referred_table: str):
    """True when `column` has no foreign key to `referred_table`."""
    def detect(inspector) -> bool:
        columns = {col["name"] for col in inspector.get_columns(table)}
        if column not in columns:
            return True
        for fk in inspector.get_foreign_keys(table):
            if fk.get("constrained_columns") == [column]:
                return fk.get("referred_table") != referred_table
        return True
    return detect


def _any_of(*detectors):
    def detect(inspector) -> bool:
        return any(d(inspector) for d in detectors)
    return detect


def _has_column(table: str, column: str):
    def detect(inspector) -> bool:
        return column in {col["name"] for col in inspector.get_columns(table)}
    return detect


MIGRATION_STEPS: tuple[MigrationStep, ...] = (
    # Walk-in (no customer) orders were blocked by a NOT NULL constraint.
    MigrationStep(
        name="0001_sales_orders_customer_nullable",
        table="sales_orders",
        detect=_column_not_nullable("sales_orders", "customer_id"),
    ),
    # Payment rows still referenced a renamed-away parent table.
    MigrationStep(
        name="0002_installment_payments_parent_fk",
        table="installment_payments",
        detect=_fk_not_pointing_at("installment_payments", "installment_sale_id", "installment_sales"),
    ),
    MigrationStep(
        name="0003_ledger_entries_customer_fk",
        table="customer_ledger_entries",
        detect=_any_of(
            _has_column("customer_ledger_entries", "customerId"),
            _fk_not_pointing_at("customer_ledger_entries", "customer_id", "customers"),
        ),
        column_map={"customerId": "customer_id"},
    ),
)


# =============================================================================
# MARKER TABLE
# =============================================================================

def applied_steps(engine: Engine) -> list[str]:
    """Names of recorded steps, oldest first. Empty when the marker table is missing."""
    if not sa.inspect(engine).has_table(MARKER_TABLE):
        return []
    with engine.connect() as conn:
        rows = conn.execute(
            sa.select(schema_migrations.c.name).order_by(
                schema_migrations.c.applied_at, schema_migrations.c.name,
            )
        )
        return [row.name for row in rows]


def _record_step(engine: Engine, name: str) -> None:
    with engine.begin() as conn:
        conn.execute(schema_migrations.insert().values(name=name, applied_at=utcnow()))


# =============================================================================
# TABLE REBUILD (SQLite)
# =============================================================================

def _pragma(conn: Connection, name: str, value=None):
    if value is None:
        return conn.exec_driver_sql(f"PRAGMA {name}").scalar()
    conn.exec_driver_sql(f"PRAGMA {name}={value}")
    return value


def _in_transaction(conn: Connection) -> bool:
    return bool(getattr(conn.connection.dbapi_connection, "in_transaction", False))


def _copy_rows(conn: Connection, table: sa.Table, aside: str, source_columns: list[str], column_map: dict[str, str]) -> int:
    target_columns = {col.name for col in table.columns}

    pairs: dict[str, str] = {name: name for name in source_columns if name in target_columns}
    for legacy, current in column_map.items():
        if legacy in source_columns and current in target_columns:
            pairs[current] = legacy

    aside_table = sa.table(aside, *[sa.column(name) for name in source_columns])
    names = list(pairs)
    exprs = [aside_table.c[pairs[name]].label(name) for name in names]

    # NOT NULL columns the legacy table lacks get their scalar model default
    for col in table.columns:
        if col.name in pairs or col.default is None or not col.default.is_scalar:
            continue
        names.append(col.name)
        exprs.append(sa.literal(col.default.arg).label(col.name))

    result = conn.execute(table.insert().from_select(names, sa.select(*exprs)))
    return result.rowcount


def rebuild_table(engine: Engine, table: sa.Table, column_map: dict[str, str] | None = None) -> int:
    """
    Recreate `table` from its model definition and copy every row across.

    Works from the live table, or from a leftover `<table>__aside` copy when
    a previous rebuild died between rename and drop. Returns rows copied.

    Raises:
        MigrationError: anything failed; the transaction is rolled back.
    """
    name = table.name
    aside = f"{name}{ASIDE_SUFFIX}"
    column_map = column_map or {}

    with engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
        foreign_keys = _pragma(conn, "foreign_keys")
        legacy_alter = _pragma(conn, "legacy_alter_table")
        _pragma(conn, "foreign_keys", "OFF")
        _pragma(conn, "legacy_alter_table", "ON")
        try:
            conn.exec_driver_sql("BEGIN EXCLUSIVE")
            ops = Operations(MigrationContext.configure(conn))
            inspector = sa.inspect(conn)

            if inspector.has_table(name):
                if inspector.has_table(aside):
                    raise MigrationError(
                        f"Both {name} and {aside} exist; resolve manually",
                        details={"table": name},
                    )
                ops.rename_table(name, aside)
                inspector = sa.inspect(conn)
            elif not inspector.has_table(aside):
                raise MigrationError(f"Table {name} does not exist", details={"table": name})

            for index in inspector.get_indexes(aside):
                if index.get("name"):
                    ops.drop_index(index["name"], table_name=aside)

            source_columns = [col["name"] for col in inspector.get_columns(aside)]
            table.create(conn)
            copied = _copy_rows(conn, table, aside, source_columns, column_map)
            ops.drop_table(aside)

            problems = conn.exec_driver_sql(f'PRAGMA foreign_key_check("{name}")').fetchall()
            if problems:
                raise MigrationError(
                    f"Foreign key check failed after rebuilding {name}",
                    details={"table": name, "violations": len(problems)},
                )
            conn.exec_driver_sql("COMMIT")
        except Exception as exc:
            if _in_transaction(conn):
                conn.exec_driver_sql("ROLLBACK")
            if isinstance(exc, MigrationError):
                raise
            raise MigrationError(
                f"Rebuild of {name} failed: {exc}",
                details={"table": name},
            ) from exc
        finally:
            _pragma(conn, "legacy_alter_table", legacy_alter)
            _pragma(conn, "foreign_keys", foreign_keys)

    logger.info("Rebuilt table %s (%s rows copied)", name, copied)
    return copied


def _recover_leftovers(engine: Engine, metadata: sa.MetaData, steps: Iterable[MigrationStep]) -> None:
    inspector = sa.inspect(engine)
    for step in steps:
        table = metadata.tables.get(step.table)
        aside = f"{step.table}{ASIDE_SUFFIX}"
        if table is None or not inspector.has_table(aside) or inspector.has_table(step.table):
            continue
        logger.warning("Found leftover %s without %s; copying rows forward", aside, step.table)
        rebuild_table(engine, table, step.column_map)


# =============================================================================
# ENTRY POINT
# =============================================================================

def run_schema_guard(engine: Engine, metadata: sa.MetaData, steps: Iterable[MigrationStep] = MIGRATION_STEPS) -> list[str]:
    """
    Bring the live schema up to the models, then apply pending repair steps.

    Returns the names of the steps recorded by this run (empty on a second run).

    Raises:
        MigrationError: a rebuild failed. Callers at startup must not serve
            requests after this.
    """
    steps = tuple(steps)
    is_sqlite = engine.dialect.name == "sqlite"

    if is_sqlite:
        _recover_leftovers(engine, metadata, steps)

    metadata.create_all(engine)
    schema_migrations.create(engine, checkfirst=True)

    done = set(applied_steps(engine))
    recorded: list[str] = []
    for step in steps:
        if step.name in done:
            continue

        table = metadata.tables.get(step.table)
        if not is_sqlite:
            logger.info("Schema step %s recorded without action on %s", step.name, engine.dialect.name)
        elif table is None or not sa.inspect(engine).has_table(step.table):
            logger.info("Schema step %s skipped: table %s absent", step.name, step.table)
        elif step.detect(sa.inspect(engine)):
            logger.info("Schema step %s: rebuilding %s", step.name, step.table)
            rebuild_table(engine, table, step.column_map)
        else:
            logger.info("Schema step %s: %s already current", step.name, step.table)

        _record_step(engine, step.name)
        recorded.append(step.name)

    return recorded

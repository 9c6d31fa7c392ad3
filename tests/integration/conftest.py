"""Integration test fixtures.

Applies the bundled migrations against an ephemeral PostgreSQL database
provided by pytest-postgresql before each integration test runs.
"""

from __future__ import annotations

import psycopg
import pytest
from pytest_postgresql import factories

from regatta_check.roster import RosterRow
from regatta_check.shared import apply_migrations

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture: fresh database per test
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (autocommit psycopg connection, dsn) with the schema applied.

    The store opens its own transactions with conn.transaction(), so the
    connection stays in autocommit mode the way regatta_check.shared.connect
    leaves it.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        apply_migrations(conn)
        yield conn, dsn
    finally:
        conn.close()


@pytest.fixture
def ilca6_row() -> RosterRow:
    return RosterRow(
        class_name="ILCA 6",
        country="USA",
        sail="USA 214567",
        bow=12,
        crew="A. Sailor",
        club="Club X",
    )


@pytest.fixture
def two_class_rows(ilca6_row) -> list[RosterRow]:
    return [
        ilca6_row,
        RosterRow("ILCA 6", "GBR", "GBR 1001", 13, "B. Sailor", "Club Y"),
        RosterRow("ILCA 7", "AUS", "AUS 555", 1, "C. Sailor", None),
        RosterRow("ILCA 7", None, "Kiwi", 2, "D. Sailor", "Club Z"),
    ]

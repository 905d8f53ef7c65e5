"""Schema versioning and migrations for the labdesk database."""

from __future__ import annotations

from labdesk.core.database import DatabaseConnection
from labdesk.core.exceptions import PersistenceError

CURRENT_SCHEMA_VERSION = 2

MIGRATIONS: dict[int, str | list[str]] = {
    1: """
    -- Schema version tracking
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER NOT NULL,
        applied_at TEXT NOT NULL DEFAULT (datetime('now'))
    );

    -- Orders
    CREATE TABLE IF NOT EXISTS orders (
        id TEXT PRIMARY KEY,
        patient_name TEXT NOT NULL DEFAULT '',
        patient_id TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'Order Created',
        priority TEXT NOT NULL DEFAULT 'Normal',
        order_date TEXT NOT NULL,
        expected_date TEXT,
        sample_collected_at TEXT,
        sample_collected_by TEXT,
        status_updated_at TEXT,
        status_updated_by TEXT,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT NOT NULL DEFAULT (datetime('now'))
    );
    CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);
    CREATE INDEX IF NOT EXISTS idx_orders_order_date ON orders(order_date);

    -- Panels (test groups) and analytes
    CREATE TABLE IF NOT EXISTS test_groups (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        code TEXT NOT NULL DEFAULT '',
        category TEXT NOT NULL DEFAULT '',
        department TEXT NOT NULL DEFAULT '',
        tat_hours INTEGER,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT NOT NULL DEFAULT (datetime('now'))
    );

    CREATE TABLE IF NOT EXISTS analytes (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        unit TEXT NOT NULL DEFAULT '',
        reference_range TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT NOT NULL DEFAULT (datetime('now'))
    );

    CREATE TABLE IF NOT EXISTS test_group_analytes (
        id TEXT PRIMARY KEY,
        test_group_id TEXT NOT NULL,
        analyte_id TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        FOREIGN KEY (test_group_id) REFERENCES test_groups(id) ON DELETE CASCADE,
        FOREIGN KEY (analyte_id) REFERENCES analytes(id) ON DELETE CASCADE
    );
    CREATE UNIQUE INDEX IF NOT EXISTS idx_tga_pair ON test_group_analytes(test_group_id, analyte_id);

    -- Current panel linkage
    CREATE TABLE IF NOT EXISTS order_test_groups (
        id TEXT PRIMARY KEY,
        order_id TEXT NOT NULL,
        test_group_id TEXT NOT NULL,
        test_name TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        FOREIGN KEY (order_id) REFERENCES orders(id) ON DELETE CASCADE,
        FOREIGN KEY (test_group_id) REFERENCES test_groups(id)
    );
    CREATE INDEX IF NOT EXISTS idx_otg_order ON order_test_groups(order_id);

    -- Legacy panel linkage
    CREATE TABLE IF NOT EXISTS order_tests (
        id TEXT PRIMARY KEY,
        order_id TEXT NOT NULL,
        test_group_id TEXT,
        test_name TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        FOREIGN KEY (order_id) REFERENCES orders(id) ON DELETE CASCADE,
        FOREIGN KEY (test_group_id) REFERENCES test_groups(id)
    );
    CREATE INDEX IF NOT EXISTS idx_ot_order ON order_tests(order_id);

    -- Result records: one per (order, panel linkage)
    CREATE TABLE IF NOT EXISTS results (
        id TEXT PRIMARY KEY,
        order_id TEXT NOT NULL,
        order_test_group_id TEXT,
        order_test_id TEXT,
        test_group_id TEXT,
        test_name TEXT NOT NULL DEFAULT '',
        verification_status TEXT NOT NULL DEFAULT 'pending_verification',
        entered_at TEXT,
        verified_at TEXT,
        verified_by TEXT,
        review_comment TEXT,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT NOT NULL DEFAULT (datetime('now')),
        FOREIGN KEY (order_id) REFERENCES orders(id) ON DELETE CASCADE
    );
    CREATE INDEX IF NOT EXISTS idx_results_order ON results(order_id);

    -- Result values: one per (result record, analyte)
    CREATE TABLE IF NOT EXISTS result_values (
        id TEXT PRIMARY KEY,
        result_id TEXT NOT NULL,
        analyte_id TEXT NOT NULL,
        parameter TEXT NOT NULL DEFAULT '',
        value TEXT,
        unit TEXT NOT NULL DEFAULT '',
        reference_range TEXT NOT NULL DEFAULT '',
        flag TEXT,
        verify_status TEXT NOT NULL DEFAULT 'pending',
        verify_note TEXT,
        verified_at TEXT,
        verified_by TEXT,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT NOT NULL DEFAULT (datetime('now')),
        FOREIGN KEY (result_id) REFERENCES results(id) ON DELETE CASCADE
    );
    CREATE INDEX IF NOT EXISTS idx_rv_result ON result_values(result_id);

    INSERT INTO schema_version (version) VALUES (1);
    """,
    2: [
        # Lookups by (result record, analyte) during aggregation and entry
        "CREATE INDEX IF NOT EXISTS idx_rv_result_analyte ON result_values(result_id, analyte_id)",
        "CREATE INDEX IF NOT EXISTS idx_results_status ON results(verification_status)",
        "INSERT INTO schema_version (version) VALUES (2)",
    ],
}


def get_schema_version(db: DatabaseConnection) -> int:
    """Get the current schema version, or 0 if the table doesn't exist."""
    try:
        row = db.fetchone("SELECT MAX(version) as v FROM schema_version")
        return row["v"] if row and row["v"] else 0
    except PersistenceError:
        return 0


def run_migrations(db: DatabaseConnection) -> int:
    """Run all pending migrations and return the final schema version."""
    current = get_schema_version(db)

    for version in sorted(MIGRATIONS.keys()):
        if version > current:
            try:
                migration = MIGRATIONS[version]
                if isinstance(migration, list):
                    for stmt in migration:
                        db.execute(stmt)
                    db.commit()
                else:
                    db.conn.executescript(migration)
                    db.commit()
                current = version
            except Exception as e:
                raise PersistenceError(f"Migration to v{version} failed: {e}") from e

    return current


def initialize_database(db: DatabaseConnection) -> int:
    """Set up the database schema from scratch or run pending migrations."""
    return run_migrations(db)

import os
from pathlib import Path
from typing import Callable
from urllib.parse import urlparse

from psycopg import Connection, connect
from psycopg.rows import dict_row

SCHEMA_PATH = Path(__file__).resolve().parent.parent / "data" / "schema.sql"

# connect to postgres DB
def get_connection():
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        raise RuntimeError("DATABASE_URL is required")
    conn = connect(database_url, row_factory=dict_row)
    return conn

# refuse to run destructive test helpers against a non-test database
def assert_test_database_safety() -> None:
    if os.getenv("APP_ENV", "").strip().lower() != "test":
        raise RuntimeError("APP_ENV must be 'test' before touching the test database")
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        raise RuntimeError("DATABASE_URL is required")
    db_name = urlparse(database_url).path.lstrip("/")
    if "test" not in db_name.lower():
        raise RuntimeError(f"Refusing to use non-test database '{db_name}' with APP_ENV=test")


def _table_exists(conn: Connection, table_name: str) -> bool:
    row = conn.execute(
        """
        SELECT 1
        FROM information_schema.tables
        WHERE table_schema = 'public'
          AND table_name = %s
        LIMIT 1
        """,
        (table_name,),
    ).fetchone()
    return row is not None


def _migration_001_log_lookup_indexes(conn: Connection) -> None:
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_correlations_user_outcome
        ON exposure_outcome_correlations(user_id, outcome_id)
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_symptom_logs_user_date
        ON symptom_logs(user_id, log_date)
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_meals_user_date
        ON meals(user_id, meal_date)
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_medication_logs_user_date
        ON medication_logs(user_id, log_date)
        """
    )


def _apply_migrations(conn: Connection) -> None:
    migrations: list[Callable[[Connection], None]] = [
        _migration_001_log_lookup_indexes,
    ]
    for migration in migrations:
        migration(conn)


def _execute_script(conn: Connection, script: str) -> None:
    with conn.cursor() as cursor:
        cursor.execute(script)


def initialize_database():
    conn = get_connection()
    try:
        # the log tables may already exist from the record-keeping app; every CREATE in the schema is IF NOT EXISTS
        if not _table_exists(conn, "users") or not _table_exists(conn, "exposure_outcome_correlations"):
            with open(SCHEMA_PATH, "r") as f:
                schema_sql = f.read()
            _execute_script(conn, schema_sql)
        _apply_migrations(conn)
        conn.commit()
    finally:
        conn.close()

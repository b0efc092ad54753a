"""Migration: bring a legacy analytics database up to the current schema.

Early deployments created `sessions` with only session_id/user_id/platform/
resolution/created_at and `events` without a category column, and had no
performance_metrics or category_stats tables.  This adds the missing tables
and nullable columns.

Idempotent; safe to run multiple times.

Run with: python -m analytics_server.migrations.001_session_lifecycle [DATABASE_URL]
"""
import sys

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from analytics_server.app.db import Base, create_store_engine
from analytics_server.app import models  # noqa: F401  registers tables
from analytics_server.app.settings import DATABASE_URL


def column_exists(engine: Engine, table_name: str, column_name: str) -> bool:
    """Check if a column exists in a table."""
    columns = inspect(engine).get_columns(table_name)
    return column_name in {col["name"] for col in columns}


def table_exists(engine: Engine, table_name: str) -> bool:
    """Check if a table exists."""
    return inspect(engine).has_table(table_name)


def add_missing_columns(engine: Engine, table) -> list[str]:
    """ALTER TABLE ... ADD COLUMN for every model column the table lacks.

    Added columns are always nullable; existing rows keep NULL for them.
    """
    added = []
    for column in table.columns:
        if column_exists(engine, table.name, column.name):
            continue
        column_type = column.type.compile(dialect=engine.dialect)
        with engine.begin() as conn:
            conn.execute(text(f"ALTER TABLE {table.name} ADD COLUMN {column.name} {column_type}"))
        added.append(column.name)
    return added


def migrate(database_url: str | None = None):
    """Run the migration against the given database (defaults to DATABASE_URL)."""
    url = database_url or DATABASE_URL
    engine = create_store_engine(url)

    try:
        for table in Base.metadata.sorted_tables:
            if not table_exists(engine, table.name):
                print(f"Creating table {table.name}...")
                table.create(bind=engine)
                print("  Done.")
                continue

            added = add_missing_columns(engine, table)
            if added:
                print(f"Added to {table.name}: {', '.join(added)}")
            else:
                print(f"Table {table.name} is up to date, skipping.")

        print("\nMigration completed successfully!")

    except Exception as e:
        print(f"Migration failed: {e}")
        sys.exit(1)
    finally:
        engine.dispose()


if __name__ == "__main__":
    migrate(sys.argv[1] if len(sys.argv) > 1 else None)

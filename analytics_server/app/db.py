"""Database connection, schema bootstrap and the Store used by routes."""
import logging
from typing import Any, Mapping, Optional

from fastapi import Request
from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine, RowMapping
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base

from .errors import DatabaseConnectionError, QueryError, SchemaError
from .settings import DB_POOL_SIZE

logger = logging.getLogger(__name__)

Base = declarative_base()

MIGRATION_COMMAND = "python -m analytics_server.migrations.001_session_lifecycle"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ships with FK enforcement off; cascade deletes depend on it.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_store_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine suited to the backend named in the URL."""
    if database_url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        engine = create_engine(database_url, connect_args=connect_args, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("pool_size", DB_POOL_SIZE)
    return create_engine(database_url, **kwargs)


class Store:
    """Thin execute/query layer over a pooled engine.

    Every call borrows one pooled connection and runs one statement in its
    own transaction.  Driver errors are logged here and re-raised as
    QueryError so callers never see driver text.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def execute(self, statement, params: Optional[Mapping[str, Any]] = None) -> int:
        """Run a write statement and return the number of rows affected."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(statement, params) if params else conn.execute(statement)
                return result.rowcount
        except SQLAlchemyError as exc:
            logger.error("Statement failed: %s", exc, exc_info=exc)
            raise QueryError("Database statement failed") from exc

    def query(self, statement, params: Optional[Mapping[str, Any]] = None) -> list[RowMapping]:
        """Run a read statement and return all rows as mappings."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(statement, params) if params else conn.execute(statement)
                return list(result.mappings())
        except SQLAlchemyError as exc:
            logger.error("Query failed: %s", exc, exc_info=exc)
            raise QueryError("Database query failed") from exc

    def query_one(self, statement, params: Optional[Mapping[str, Any]] = None) -> Optional[RowMapping]:
        rows = self.query(statement, params)
        return rows[0] if rows else None

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def dispose(self) -> None:
        self.engine.dispose()


def check_schema(engine: Engine) -> dict[str, list[str]]:
    """Return a dict of {table: [missing_columns]} for every table that is
    either missing entirely or lacks columns the models declare.  An empty
    dict means the schema is up to date."""
    from . import models  # noqa: F401  registers tables on Base.metadata

    inspector = inspect(engine)
    existing_tables = set(inspector.get_table_names())

    missing: dict[str, list[str]] = {}
    for table in Base.metadata.sorted_tables:
        required_cols = [column.name for column in table.columns]
        if table.name not in existing_tables:
            missing[table.name] = required_cols
            continue
        actual_cols = {col["name"] for col in inspector.get_columns(table.name)}
        cols_missing = [c for c in required_cols if c not in actual_cols]
        if cols_missing:
            missing[table.name] = cols_missing
    return missing


def ensure_schema(engine: Engine) -> None:
    """Create any absent tables, then fail fast if an existing table predates
    columns the models need.  create_all never alters existing tables, so a
    legacy database must be upgraded with the migration script."""
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    missing = check_schema(engine)
    if not missing:
        return

    lines = ["Database schema is out of date.  Missing columns:"]
    for table, cols in sorted(missing.items()):
        lines.append(f"  {table}: {', '.join(cols)}")
    lines.append("")
    lines.append("To fix, run the idempotent migration:")
    lines.append(f"  {MIGRATION_COMMAND}")
    raise SchemaError("\n".join(lines))


def init_store(database_url: str) -> Store:
    """Open the database, verify connectivity and bootstrap the schema."""
    try:
        engine = create_store_engine(database_url)
    except (SQLAlchemyError, ImportError) as exc:
        # Malformed URL or a driver that is not installed
        raise DatabaseConnectionError(f"Could not create database engine: {exc}") from exc
    store = Store(engine)

    try:
        store.ping()
    except SQLAlchemyError as exc:
        engine.dispose()
        raise DatabaseConnectionError(f"Could not connect to database: {exc}") from exc

    try:
        ensure_schema(engine)
    except SQLAlchemyError as exc:
        engine.dispose()
        raise SchemaError(f"Could not create tables: {exc}") from exc
    except SchemaError:
        engine.dispose()
        raise

    logger.info("Store initialised (%s)", engine.url.render_as_string(hide_password=True))
    return store


def get_store(request: Request) -> Store:
    """Dependency that provides the process-wide store."""
    return request.app.state.store

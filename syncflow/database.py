import logging

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from syncflow.config import settings

logger = logging.getLogger(__name__)

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Columns added after the first release; older databases get them on startup
_LATE_COLUMNS = {
    "inventory": {
        "warehouse_type": "VARCHAR DEFAULT 'general'",
        "package_spec": "VARCHAR DEFAULT '820kg'",
        "line_id": "INTEGER DEFAULT 0",
        "line_name": "VARCHAR DEFAULT ''",
        "safety_stock": "FLOAT DEFAULT 0.0",
    },
    "production_lines": {
        "style_changed_at": "VARCHAR DEFAULT ''",
        "sub_lines": "TEXT DEFAULT '[]'",
    },
    "orders": {
        "package_spec": "VARCHAR DEFAULT ''",
        "warehouse_allocation": "TEXT DEFAULT NULL",
        "status_history": "TEXT DEFAULT '[]'",
        "large_order_ack": "BOOLEAN DEFAULT FALSE",
    },
}


def _migrate_add_columns(bind):
    """Add missing columns to existing tables (works for both SQLite and PostgreSQL)."""
    inspector = inspect(bind)
    tables = inspector.get_table_names()

    for table, new_cols in _LATE_COLUMNS.items():
        if table not in tables:
            continue
        existing = {col["name"] for col in inspector.get_columns(table)}
        with bind.begin() as conn:
            for col_name, col_type in new_cols.items():
                if col_name not in existing:
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {col_name} {col_type}"))
                    logger.info("Added column %s.%s", table, col_name)


def init_db(bind=None):
    # Import all models so Base.metadata knows about them
    import syncflow.models.inventory  # noqa: F401
    import syncflow.models.order  # noqa: F401
    import syncflow.models.production_line  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    _migrate_add_columns(bind)

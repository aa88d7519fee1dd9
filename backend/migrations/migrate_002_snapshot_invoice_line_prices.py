"""
Migration: Store the charged rate and fee on invoice lines.

This migration:
1. Adds invoice_entry.rate and invoice_service.fee columns
2. Fills them from the current project rate / service fee for existing lines
3. Handles both PostgreSQL and SQLite
"""
import logging
from sqlalchemy import text

logger = logging.getLogger(__name__)

# table -> (column, backfill query)
LINE_PRICE_COLUMNS = {
    "invoice_entry": (
        "rate",
        """
        UPDATE invoice_entry
        SET rate = COALESCE((
            SELECT project.rate
            FROM time_entry
            JOIN project ON project.id = time_entry.project_id
            WHERE time_entry.id = invoice_entry.time_entry_id
        ), 0)
        """,
    ),
    "invoice_service": (
        "fee",
        """
        UPDATE invoice_service
        SET fee = COALESCE((
            SELECT service.fee FROM service WHERE service.id = invoice_service.service_id
        ), 0)
        """,
    ),
}


def is_postgres(engine):
    """Check if database is PostgreSQL."""
    return "postgresql" in str(engine.url).lower()


def migrate(engine):
    """Run migration."""
    with engine.connect() as conn:
        # Start transaction
        trans = conn.begin()

        try:
            postgres = is_postgres(engine)
            for table, (column, backfill_sql) in LINE_PRICE_COLUMNS.items():
                if postgres:
                    columns = columns_postgres(conn, table)
                else:
                    columns = columns_sqlite(conn, table)

                if columns is None:
                    logger.info(f"{table} table does not exist, skipping")
                    continue
                if column in columns:
                    logger.info(f"{table}.{column} already exists, skipping")
                    continue

                logger.info(f"Adding {table}.{column} column...")
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} NUMERIC(10, 2) NOT NULL DEFAULT 0"))
                result = conn.execute(text(backfill_sql))
                logger.info(f"Backfilled {result.rowcount} rows in {table}")

            trans.commit()
            logger.info("Migration 002 completed successfully")
        except Exception as e:
            trans.rollback()
            logger.error(f"Migration 002 failed: {str(e)}")
            raise


def columns_postgres(conn, table):
    result = conn.execute(
        text("""
            SELECT column_name
            FROM information_schema.columns
            WHERE table_name = :table
        """),
        {"table": table},
    )
    columns = [row[0] for row in result.fetchall()]
    return columns or None


def columns_sqlite(conn, table):
    result = conn.execute(text(f"PRAGMA table_info({table})"))
    columns = [row[1] for row in result.fetchall()]
    return columns or None


if __name__ == "__main__":
    from db import engine
    migrate(engine)

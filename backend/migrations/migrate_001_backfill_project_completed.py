"""
Migration: Make project completion flag and timestamp agree.

This migration:
1. Marks projects with a completed_at timestamp as completed
2. Stamps completed projects that are missing completed_at with the current time
3. Handles both PostgreSQL and SQLite
"""
import logging
from sqlalchemy import text

logger = logging.getLogger(__name__)


def is_postgres(engine):
    """Check if database is PostgreSQL."""
    return "postgresql" in str(engine.url).lower()


def migrate(engine):
    """Run migration."""
    with engine.connect() as conn:
        # Start transaction
        trans = conn.begin()

        try:
            if is_postgres(engine):
                exists = project_table_exists_postgres(conn)
            else:
                exists = project_table_exists_sqlite(conn)

            if not exists:
                logger.info("Project table does not exist, skipping migration")
                trans.rollback()
                return

            backfill(conn)
            trans.commit()
            logger.info("Migration 001 completed successfully")
        except Exception as e:
            trans.rollback()
            logger.error(f"Migration 001 failed: {str(e)}")
            raise


def project_table_exists_postgres(conn):
    result = conn.execute(text("""
        SELECT table_name
        FROM information_schema.tables
        WHERE table_name = 'project'
    """))
    return result.fetchone() is not None


def project_table_exists_sqlite(conn):
    result = conn.execute(text("""
        SELECT name FROM sqlite_master
        WHERE type='table' AND name='project'
    """))
    return result.fetchone() is not None


def backfill(conn):
    """Repair rows where the two completion fields disagree. Safe to re-run."""
    logger.info("Marking projects with completed_at as completed...")
    result = conn.execute(text("""
        UPDATE project
        SET completed = TRUE
        WHERE completed_at IS NOT NULL AND completed = FALSE
    """))
    logger.info(f"Backfilled {result.rowcount} projects as completed")

    logger.info("Stamping completed projects missing completed_at...")
    result = conn.execute(text("""
        UPDATE project
        SET completed_at = CURRENT_TIMESTAMP
        WHERE completed = TRUE AND completed_at IS NULL
    """))
    logger.info(f"Stamped {result.rowcount} completed projects")


if __name__ == "__main__":
    from db import engine
    migrate(engine)

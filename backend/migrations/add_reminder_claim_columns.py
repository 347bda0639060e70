"""
Migration: Add claim bookkeeping to the reminders table.

Reminders created before the conditional-claim sweeper only carried a status.
This adds the columns the claim compares against (last_milestone,
last_sent_on, version, sent_count) and the partial unique index that keeps
at most one active reminder per (obligation, lead time).

Existing SENT rows are backfilled with last_sent_on = updated_at::date so
the first sweep after the migration does not re-fire them today.
"""
from sqlalchemy import create_engine, text
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/equipment_tracker"
)

NEW_COLUMNS = [
    ("last_milestone", "INTEGER"),
    ("last_sent_on", "DATE"),
    ("sent_count", "INTEGER NOT NULL DEFAULT 0"),
    ("version", "INTEGER NOT NULL DEFAULT 0"),
]


def column_exists(conn, table_name: str, column_name: str) -> bool:
    result = conn.execute(text("""
        SELECT column_name
        FROM information_schema.columns
        WHERE table_name = :table_name AND column_name = :column_name
    """), {"table_name": table_name, "column_name": column_name})
    return result.fetchone() is not None


def index_exists(conn, index_name: str) -> bool:
    result = conn.execute(text("""
        SELECT indexname FROM pg_indexes WHERE indexname = :index_name
    """), {"index_name": index_name})
    return result.fetchone() is not None


def run_migration():
    """Add claim columns and the active-milestone unique index."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        for column_name, column_type in NEW_COLUMNS:
            if column_exists(conn, "reminders", column_name):
                print(f"{column_name} column already exists")
                continue
            conn.execute(text(f"ALTER TABLE reminders ADD COLUMN {column_name} {column_type}"))
            print(f"Added {column_name} column to reminders table")

        result = conn.execute(text("""
            UPDATE reminders
            SET last_sent_on = CAST(updated_at AS DATE),
                sent_count = GREATEST(sent_count, 1)
            WHERE status = 'SENT' AND last_sent_on IS NULL
        """))
        print(f"Backfilled last_sent_on for {result.rowcount} sent reminder(s)")

        if index_exists(conn, "uq_reminders_active_milestone"):
            print("uq_reminders_active_milestone index already exists")
        else:
            # Duplicates would block the index; keep the oldest active row
            result = conn.execute(text("""
                UPDATE reminders r
                SET status = 'ACKNOWLEDGED', acknowledged_at = NOW()
                WHERE r.status != 'ACKNOWLEDGED'
                  AND EXISTS (
                      SELECT 1 FROM reminders o
                      WHERE o.obligation_id = r.obligation_id
                        AND o.lead_days = r.lead_days
                        AND o.status != 'ACKNOWLEDGED'
                        AND (o.created_at, o.id) < (r.created_at, r.id)
                  )
            """))
            print(f"Closed {result.rowcount} duplicate active reminder(s)")

            conn.execute(text("""
                CREATE UNIQUE INDEX uq_reminders_active_milestone
                ON reminders (obligation_id, lead_days)
                WHERE status != 'ACKNOWLEDGED'
            """))
            print("Created uq_reminders_active_milestone index")

        conn.commit()


if __name__ == "__main__":
    run_migration()

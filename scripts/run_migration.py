"""
Run database migrations for Trackproof.

Applies SQL files from migrations/ in order and records each applied file in
a schema_migrations table, so re-running only applies new files. Connects
through DatabaseConnection: DATABASE_URL if set, otherwise the Cloud SQL
Python Connector with IAM authentication. The SQL targets PostgreSQL.

Usage:
    python scripts/run_migration.py                  # all pending migrations
    python scripts/run_migration.py 001_tracking_evidence.sql
    python scripts/run_migration.py --yes            # skip confirmation
"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.engine import Engine

from trackproof.db import DatabaseConnection

# Load environment variables
load_dotenv()

# Migration directory
MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"

CREATE_MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    filename VARCHAR(255) PRIMARY KEY,
    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


def applied_migrations(engine: Engine) -> set[str]:
    """Filenames already recorded in schema_migrations."""
    with engine.begin() as conn:
        conn.execute(text(CREATE_MIGRATIONS_TABLE))
        rows = conn.execute(text("SELECT filename FROM schema_migrations"))
        return {row.filename for row in rows}


def run_migration(migration_file: Path, engine: Engine):
    """Apply one migration file and record it, in a single transaction."""
    print(f"📝 Running migration: {migration_file.name}")

    sql = migration_file.read_text()

    try:
        with engine.begin() as conn:
            conn.execute(text(sql))
            conn.execute(
                text(
                    "INSERT INTO schema_migrations (filename) VALUES (:filename) "
                    "ON CONFLICT (filename) DO NOTHING"
                ),
                {"filename": migration_file.name},
            )
        print(f"✅ Migration {migration_file.name} completed successfully")
    except Exception as e:
        print(f"❌ Migration {migration_file.name} failed: {e}")
        sys.exit(1)


def list_migrations() -> list[Path]:
    """List migration files in apply order (rollback files excluded)."""
    migrations = sorted(MIGRATIONS_DIR.glob("*.sql"))
    return [m for m in migrations if "rollback" not in m.name.lower()]


def resolve_migration(name: str) -> Path:
    migration_file = Path(name)
    if not migration_file.exists():
        # Try relative to migrations directory
        migration_file = MIGRATIONS_DIR / name
    if not migration_file.exists():
        print(f"❌ Migration file not found: {name}")
        sys.exit(1)
    return migration_file


def main():
    """Main function."""
    print("🚀 Trackproof Database Migration Tool")
    print("=" * 50)

    args = [a for a in sys.argv[1:] if a != "--yes"]
    assume_yes = "--yes" in sys.argv[1:]

    if not MIGRATIONS_DIR.exists():
        print(f"❌ Migrations directory not found: {MIGRATIONS_DIR}")
        sys.exit(1)

    try:
        DatabaseConnection.initialize()
    except ValueError as e:
        print(f"❌ {e}")
        sys.exit(1)
    engine = DatabaseConnection.get_engine()

    already_applied = applied_migrations(engine)
    if args:
        migrations = [resolve_migration(name) for name in args]
    else:
        migrations = [m for m in list_migrations() if m.name not in already_applied]

    if not migrations:
        print("✅ Database is up to date")
        DatabaseConnection.close()
        sys.exit(0)

    print(f"\nPending migration(s): {len(migrations)}")
    for migration in migrations:
        marker = " (re-apply)" if migration.name in already_applied else ""
        print(f"  - {migration.name}{marker}")

    target = os.getenv("DATABASE_URL") or os.getenv("INSTANCE_CONNECTION_NAME")
    print(f"\n⚠️  This will apply migrations to: {target}")

    if not assume_yes:
        response = input("\nProceed? (yes/no): ").strip().lower()
        if response not in ["yes", "y"]:
            print("❌ Migration cancelled")
            DatabaseConnection.close()
            sys.exit(0)

    print("\n" + "=" * 50)
    for migration in migrations:
        run_migration(migration, engine)

    DatabaseConnection.close()

    print("\n" + "=" * 50)
    print("✅ All migrations completed successfully!")


if __name__ == "__main__":
    main()

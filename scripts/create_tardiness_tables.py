# =============================================================================
# scripts/create_tardiness_tables.py
# Creates the tardiness and gradeStrandSections tables in Supabase
# =============================================================================
"""
This script creates the two tables the remote store writes to.

Option 1: Check whether the tables already exist (prints the SQL if not)
    python scripts/create_tardiness_tables.py --execute

Option 2: Generate SQL only (copy to Supabase SQL Editor)
    python scripts/create_tardiness_tables.py --sql-only

Both tables are keyed by a text `id`. Column names match the stored documents
exactly, so the mixed-case ones ("fullName", "createdAt") are quoted.
Timestamps stay text so ISO-8601 values round-trip unchanged.
"""

import os
import sys
import argparse
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tardiness_core.config import load_settings
from tardiness_core.data.remote_store import create_supabase_client
from tardiness_core.errors import ConfigurationError
from tardiness_core.models import OPTIONS_COLLECTION, TARDINESS_COLLECTION

TABLES = (TARDINESS_COLLECTION, OPTIONS_COLLECTION)

CREATE_TABLES_SQL = """
-- ============================================================================
-- TARDINESS MONITORING TABLES
-- ============================================================================

-- One row per late arrival
CREATE TABLE IF NOT EXISTS "tardiness" (
    id TEXT PRIMARY KEY,
    "fullName" TEXT NOT NULL,
    grade TEXT NOT NULL,
    strand TEXT NOT NULL,
    section TEXT NOT NULL,
    "timestamp" TEXT NOT NULL,
    "createdAt" TEXT
);

-- Entries are read newest first
CREATE INDEX IF NOT EXISTS idx_tardiness_timestamp ON "tardiness"("timestamp");

-- One row per selectable grade/strand/section, id = 'grade-strand-section'
CREATE TABLE IF NOT EXISTS "gradeStrandSections" (
    id TEXT PRIMARY KEY,
    grade INTEGER NOT NULL,
    strand TEXT NOT NULL,
    section TEXT NOT NULL
);

-- Enable Row Level Security (RLS)
ALTER TABLE "tardiness" ENABLE ROW LEVEL SECURITY;
ALTER TABLE "gradeStrandSections" ENABLE ROW LEVEL SECURITY;

-- The app connects with the anon key and needs full access to both tables
CREATE POLICY "Allow all operations on tardiness"
ON "tardiness"
FOR ALL
USING (true)
WITH CHECK (true);

CREATE POLICY "Allow all operations on gradeStrandSections"
ON "gradeStrandSections"
FOR ALL
USING (true)
WITH CHECK (true);

-- Grant permissions
GRANT ALL ON "tardiness" TO authenticated;
GRANT ALL ON "tardiness" TO anon;
GRANT ALL ON "gradeStrandSections" TO authenticated;
GRANT ALL ON "gradeStrandSections" TO anon;

-- Verify tables were created
SELECT 'Tables tardiness and gradeStrandSections created successfully!' AS status;
"""


def print_sql():
    """Print the SQL for manual execution in Supabase SQL Editor."""
    print("=" * 70)
    print(" SQL TO CREATE THE TARDINESS TABLES")
    print(" Copy this SQL and run it in Supabase SQL Editor")
    print("=" * 70)
    print()
    print(CREATE_TABLES_SQL)
    print()
    print("=" * 70)


def check_tables(client) -> dict:
    """
    Probe each table with a one-row select.

    Returns:
        Mapping of table name to True if it exists, False if it is missing

    Raises:
        Exception: Any error other than a missing table
    """
    found = {}
    for table in TABLES:
        try:
            client.table(table).select("*").limit(1).execute()
            found[table] = True
        except Exception as e:
            message = str(e).lower()
            if "does not exist" in message or "could not find" in message or "404" in message:
                found[table] = False
            else:
                raise
    return found


def execute_sql():
    """Check the tables using the configured credentials (service_role preferred)."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        print(f"ERROR: {e.message}")
        sys.exit(1)

    url = settings.supabase_url
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or settings.supabase_key

    if not url or not key:
        print("ERROR: Missing Supabase credentials.")
        print("Set [supabase] url/key in .streamlit/secrets.toml,")
        print("or the SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY environment variables.")
        sys.exit(1)

    print("Connecting to Supabase...")
    client = create_supabase_client(url, key)
    if client is None:
        print("ERROR: Could not create the Supabase client.")
        sys.exit(1)

    try:
        found = check_tables(client)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    for table, exists in found.items():
        print(f"  {table}: {'exists' if exists else 'MISSING'}")

    if not all(found.values()):
        print()
        print("The Supabase Python client cannot create tables directly.")
        print("Run the SQL below in the Supabase SQL Editor:")
        print()
        print_sql()
    else:
        print("All tables already exist!")


def main():
    parser = argparse.ArgumentParser(description="Create the tardiness tables in Supabase")
    parser.add_argument("--sql-only", action="store_true", help="Only print SQL (don't connect)")
    parser.add_argument("--execute", action="store_true", help="Check the tables on the configured project")

    args = parser.parse_args()

    if args.execute:
        execute_sql()
    else:
        print_sql()

        # Also save SQL to a file
        sql_file = os.path.join(os.path.dirname(__file__), "create_tardiness_tables.sql")
        with open(sql_file, "w", encoding="utf-8") as f:
            f.write(CREATE_TABLES_SQL)
        print(f"\nSQL also saved to: {sql_file}")


if __name__ == "__main__":
    main()

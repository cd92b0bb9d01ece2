#!/usr/bin/env python3
"""Quick migration runner."""
import os
import sys

import psycopg2

if len(sys.argv) < 2:
    print("Usage: python3 run_migration.py migrations/0001_ask_lexybrain_rag.sql")
    sys.exit(1)

migration_file = sys.argv[1]
with open(migration_file, "r") as f:
    sql = f.read()

print(f"Migration file: {migration_file}")
print(f"Content length: {len(sql)} bytes\n")

database_url = os.getenv("DATABASE_URL")
if not database_url:
    print("DATABASE_URL environment variable not set")
    sys.exit(1)

try:
    print("Connecting to database...")
    conn = psycopg2.connect(database_url)
    cursor = conn.cursor()

    print("Executing migration...\n")
    cursor.execute(sql)
    conn.commit()

    print("Migration complete!")

    cursor.close()
    conn.close()

except Exception as e:
    print(f"Error running migration: {e}")
    sys.exit(1)

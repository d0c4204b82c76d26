"""
Initialize the agent database: creates the event log and notification tables.
Run once before first launch, or after adding new models.
Usage: python scripts/setup/init_db.py
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from fleetsync.database import create_tables, engine
from fleetsync.config import settings
from sqlalchemy import inspect, text


def main():
    print("🗄️  FleetSync DB Initialization")
    print("=" * 40)
    print(f"📡 Database: {settings.DATABASE_URL}")

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")
    except Exception as e:
        print(f"❌ Cannot connect to database: {e}")
        sys.exit(1)

    print("\n📋 Creating tables...")
    create_tables()

    tables = inspect(engine).get_table_names()
    print(f"\n📊 Tables in database ({len(tables)} total):")
    for t in sorted(tables):
        print(f"   ✓ {t}")

    print("\n🎉 Database ready! You can now start the agent:")
    print(f"   uvicorn fleetsync.main:app --host {settings.AGENT_HOST} --port {settings.AGENT_PORT}")


if __name__ == "__main__":
    main()

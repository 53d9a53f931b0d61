"""Create the upload records database and tables if they don't exist."""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

# Load environment variables
load_dotenv()

from hlsforge.core.config import settings  # noqa: E402
from hlsforge.core.database import Database  # noqa: E402


async def create_database() -> int:
    """Create the database file (SQLite) and the upload_records table."""
    print("=" * 50)
    print("Creating HLSForge Database")
    print("=" * 50)
    print()
    print(f"  Database URL: {settings.DATABASE_URL}")
    print()

    database = Database(settings.DATABASE_URL)
    try:
        await database.initialize(create_tables=True)
    except SQLAlchemyError as e:
        print(f"✗ Error: {e}")
        return 1
    finally:
        await database.shutdown()

    print("✓ Tables are in place.")
    print()
    print("Next steps:")
    print("  1. Start the API:      uvicorn hlsforge.main:app --port 8001")
    print("  2. Start the workers:  celery -A hlsforge.core.celery_app worker -Q video_processing -c 1")
    print("                         celery -A hlsforge.core.celery_app worker -Q callbacks -c 1")
    print("  3. Start the schedule: celery -A hlsforge.core.celery_app beat")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(create_database()))

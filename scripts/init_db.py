#!/usr/bin/env python3
"""Initialize the key store tables."""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from byok.config import settings
from byok.storage.database import create_db_engine, init_db
from byok.utils.logging import setup_logging
from sqlalchemy.exc import SQLAlchemyError

if __name__ == "__main__":
    setup_logging()
    print(f"Initializing key store at {settings.database_url}...")
    try:
        init_db(create_db_engine())
        print("Key store initialized successfully!")
    except SQLAlchemyError as e:
        print(f"Error initializing key store: {e}")
        sys.exit(1)

#!/usr/bin/env python3
"""
Database initialization script for the Protected Content Matcher
Sets up PostgreSQL with the pgvector extension, the reference table and
one HNSW index per embedding space
"""

import sys
import psycopg2
from pathlib import Path

# Add the parent directory to Python path so we can import our modules
sys.path.append(str(Path(__file__).parent.parent))

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

import structlog

# Configure basic logging for the script
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

from app.config import get_settings
from app.core.database import SCHEMA_SQL, space_index_sql
from app.models.media import KNOWN_SPACES, parse_embedding_space

def check_vector_extension(cursor):
    """Check if pgvector is properly installed."""
    cursor.execute("SELECT extversion FROM pg_extension WHERE extname = 'vector';")
    result = cursor.fetchone()
    if result:
        logger.info("pgvector available", version=result[0])
        return True
    logger.warning("pgvector extension not found")
    return False

def test_database_connection(dsn):
    """Test database connection without requiring specific extensions."""
    try:
        conn = psycopg2.connect(dsn, connect_timeout=5)
        with conn.cursor() as cursor:
            cursor.execute("SELECT version();")
            logger.info("PostgreSQL connected", version=cursor.fetchone()[0])
        conn.close()
        return True
    except psycopg2.OperationalError as e:
        logger.error("Database connection failed", error=str(e))
        logger.info("Check that PostgreSQL is running, the database exists and DATABASE_URL is correct")
        return False

def initialize_database(space_names):
    """Create extension, table and per-space indexes."""
    settings = get_settings()
    logger.info("Initializing reference store schema", spaces=space_names)

    spaces = [parse_embedding_space(name) for name in space_names]

    if not test_database_connection(settings.database_url):
        return False

    conn = None
    try:
        conn = psycopg2.connect(settings.database_url)
        conn.autocommit = True
        with conn.cursor() as cursor:
            cursor.execute(SCHEMA_SQL)
            check_vector_extension(cursor)

            for space in spaces:
                cursor.execute(space_index_sql(space))
                logger.info("Vector index ensured", space=space.name)

            cursor.execute("""
                SELECT embedding_space, COUNT(*) FROM protected_content GROUP BY embedding_space
            """)
            for space_name, count in cursor.fetchall():
                logger.info("Existing references", space=space_name, count=count)

        logger.info("Database initialization completed successfully")
        return True

    except Exception as e:
        logger.error("Database initialization failed", error=str(e))
        return False
    finally:
        if conn is not None:
            conn.close()

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize the Protected Content Matcher database")
    parser.add_argument("--space", action="append", choices=sorted(KNOWN_SPACES),
                       help="Embedding space to index (repeatable, default: all known spaces)")

    args = parser.parse_args()

    success = initialize_database(args.space or sorted(KNOWN_SPACES))
    sys.exit(0 if success else 1)

import os
import logging
import threading
import time
from typing import Optional
from flask import Flask
from dotenv import load_dotenv

from models import db

# Configure logging for database operations
logger = logging.getLogger(__name__)


def _database_settings() -> dict:
    """Resolve connection settings for the configured ENVIRONMENT."""
    load_dotenv()
    environment = os.getenv("ENVIRONMENT", "local").lower()

    if environment == "local":
        prefix, default_port = "LOCAL", "3307"
    elif environment == "production" or environment == "online":
        prefix, default_port = "ONLINE", "3306"
    else:
        raise ValueError(
            f"Invalid ENVIRONMENT value: {environment}. Must be 'local' or 'production'/'online'"
        )

    return {
        "environment": environment,
        "host": os.getenv(f"{prefix}_DB_HOST", "localhost"),
        "port": int(os.getenv(f"{prefix}_DB_PORT", default_port)),
        "user": os.getenv(f"{prefix}_DB_USER", "root"),
        "password": os.getenv(f"{prefix}_DB_PASSWORD", ""),
        "database": os.getenv(f"{prefix}_DB_NAME", "grading_system"),
    }


class DatabaseConnection:
    """Handles database connection, initialization, and management."""

    def __init__(self, app: Optional[Flask] = None):
        self.app = app
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        """Initialize database connection with Flask app."""
        settings = _database_settings()
        environment = settings["environment"]
        logger.info(f"Database environment: {environment}")

        db_uri = (
            f"mysql+pymysql://{settings['user']}:{settings['password']}"
            f"@{settings['host']}:{settings['port']}/{settings['database']}"
        )
        app.config["SQLALCHEMY_DATABASE_URI"] = db_uri
        app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

        # Connection pool settings to handle connection timeouts
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_size": 10,  # Number of connections to maintain
            "max_overflow": 20,  # Additional connections beyond pool_size
            "pool_recycle": 3600,  # Recycle connections after 1 hour
            "pool_pre_ping": True,  # Test connections before use
            "pool_timeout": 30,  # Connection timeout in seconds
            "connect_args": {
                "connect_timeout": 30,
                "read_timeout": 60,
                "write_timeout": 30,
            },
        }
        logger.info(
            f"Database URI configured for {environment}: {db_uri.replace(settings['password'] or '***', '***')}"
        )

        if not hasattr(app, "extensions") or "sqlalchemy" not in app.extensions:
            db.init_app(app)
            logger.info("Database initialized with Flask app")
        else:
            logger.info(
                "Database already initialized with Flask app - skipping re-initialization"
            )

    def test_connection(self) -> bool:
        """Test database connection with retry mechanism."""
        if self.app is None:
            logger.error("Database connection not initialized with Flask app")
            return False

        max_retries = 3
        retry_delay = 1

        for attempt in range(max_retries):
            try:
                logger.info(
                    f"Testing database connection... (attempt {attempt + 1}/{max_retries})"
                )
                with self.app.app_context():
                    with db.engine.connect() as connection:
                        connection.execute(db.text("SELECT 1"))
                logger.info("✅ Database connection successful!")
                return True
            except Exception as e:
                logger.warning(
                    f"❌ Database connection failed (attempt {attempt + 1}): {str(e)}"
                )
                if attempt < max_retries - 1:
                    time.sleep(retry_delay)
                    retry_delay *= 2  # Exponential backoff
        logger.error(f"❌ Database connection failed after {max_retries} attempts")
        return False

    def create_tables(self) -> bool:
        """Create any missing tables (class record, SF forms, sections)."""
        if self.app is None:
            logger.error("Database connection not initialized with Flask app")
            return False
        try:
            logger.info("Creating database tables...")
            with self.app.app_context():
                db.create_all()
            logger.info("✅ Database tables created successfully!")
            return True
        except Exception as e:
            logger.error(f"❌ Database table creation failed: {str(e)}")
            return False

    def init_database(self) -> bool:
        """Initialize database connection and create tables if they don't exist."""
        logger.info("Starting database initialization...")

        if not self.test_connection():
            return False

        if not self.create_tables():
            return False

        return True


def init_database_with_app(app: Flask) -> bool:
    """Initialize database with Flask app and return success status."""
    return DatabaseConnection(app).init_database()


# Use a thread-local container so each thread/request gets its own PyMySQL connection
_local = threading.local()


def _get_thread_conn():
    return getattr(_local, "_connection", None)


def _set_thread_conn(conn):
    setattr(_local, "_connection", conn)


def get_db_connection():
    """Get PyMySQL database connection for current thread. Create if not exists or reconnect if lost."""
    conn = _get_thread_conn()
    if conn is None or not _is_connection_alive(conn):
        if conn is not None:
            close_db_connection()

        settings = _database_settings()

        # Import PyMySQL lazily
        import pymysql

        try:
            conn = pymysql.connect(
                host=settings["host"],
                port=settings["port"],
                user=settings["user"],
                password=settings["password"],
                database=settings["database"],
                cursorclass=pymysql.cursors.DictCursor,
                autocommit=False,
            )
        except Exception as e:
            logger.error(f"PyMySQL database connection failed: {str(e)}")
            raise
        _set_thread_conn(conn)
        logger.info(
            f"PyMySQL database connection established for {settings['environment']} (thread-local)"
        )
    return conn


def _is_connection_alive(conn):
    """Check if the provided connection is alive"""
    if conn is None:
        return False
    try:
        conn.ping(reconnect=False)
        return True
    except Exception:
        return False


def close_db_connection(exc=None):
    """Close and remove the thread-local PyMySQL connection, if present."""
    conn = _get_thread_conn()
    if conn is None:
        return
    _set_thread_conn(None)
    try:
        conn.close()
    except Exception as e:
        logger.warning(f"Error closing thread-local DB connection: {e}")

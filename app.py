import logging
import os
import sys
from flask import Flask, jsonify, request
from flask_socketio import SocketIO
from flask_wtf.csrf import CSRFProtect
from dotenv import load_dotenv

from utils.db_conn import (
    DatabaseConnection,
    close_db_connection,
    get_db_connection,
    init_database_with_app,
)
from utils.live import initialize_live, register_socketio_handlers
from utils.record_store import RecordStore

load_dotenv()

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Create Flask app
app = Flask(__name__)
app.secret_key = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")

# Initialize CSRF protection
csrf = CSRFProtect(app)

# Initialize SocketIO
socketio = SocketIO(app, cors_allowed_origins="*")

# Initialize live helpers and register Socket.IO handlers
initialize_live(socketio, logger)
register_socketio_handlers(socketio)

# Flask-SQLAlchemy models are used for schema provisioning only
DatabaseConnection(app)

# Record store used by every blueprint; tests swap in an in-memory one
app.extensions["record_store"] = RecordStore(get_db_connection)

# Release the thread-local PyMySQL connection after each request
app.teardown_appcontext(close_db_connection)


# -----------------------------
# Startup health/preflight checks
# -----------------------------
def check_database_connectivity():
    """Attempt a simple DB connection and SELECT 1. Return (ok: bool, message: str)."""
    try:
        conn = get_db_connection()
        with conn.cursor() as cursor:
            cursor.execute("SELECT 1")
            _ = cursor.fetchone()
        return True, "Connected and SELECT 1 succeeded"
    except Exception as e:
        return False, f"DB connection failed: {e}"


def run_startup_checks_or_exit():
    """Run preflight checks and exit the process on failure."""
    logger.info("🧪 Running startup checks…")

    ok_db, db_msg = check_database_connectivity()
    if ok_db:
        logger.info(f"🗄️  Database check: ✅ {db_msg}")
    else:
        logger.error(f"🗄️  Database check: ❌ {db_msg}")
        logger.error("🔴 Startup checks failed. Aborting launch.")
        sys.exit(1)

    # Provision any tables that are missing so the class record can save
    if not init_database_with_app(app):
        logger.error("🔴 Schema provisioning failed. Aborting launch.")
        sys.exit(1)

    logger.info("🟢 All systems green. Starting server…")


@app.route("/welcome", methods=["GET"])
def welcome():
    logger.info(f"Request received: {request.method} {request.path}")
    return jsonify({"message": "Welcome to the DepEd Class Record API!"})


from blueprints.admin_routes import admin_bp
from blueprints.class_record_routes import class_record_bp
from blueprints.school_forms_routes import school_forms_bp

app.register_blueprint(admin_bp)
app.register_blueprint(class_record_bp)
app.register_blueprint(school_forms_bp)


if __name__ == "__main__":
    logger.info("Application startup initiated")
    run_startup_checks_or_exit()

    # Only start the reloader in development
    use_reloader = os.environ.get("WERKZEUG_RUN_MAIN") != "true"

    # Run the app
    socketio.run(
        app, host="127.0.0.1", port=5000, debug=True, use_reloader=use_reloader
    )

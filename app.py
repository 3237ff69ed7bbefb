"""
POS Sync Backend
Flask API that point-of-sale devices push their orders and shop settings to.
Runs on SQLite (local) or PostgreSQL (cloud), picked from DATABASE_URL.
"""

import atexit
import functools
import logging
import sys

from flask import Flask, jsonify, request, current_app, Blueprint

import config
from database import create_db_engine, init_db, check_connection
from sync_service import SyncService, PayloadError, require_field, parse_page

logger = logging.getLogger("pos_sync.app")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_logging_configured = False


def configure_logging(level="INFO"):
    """Configure the root logger once; later calls are no-ops."""
    global _logging_configured
    if _logging_configured:
        return
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    _logging_configured = True


api = Blueprint("api", __name__, url_prefix="/api")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def service():
    """Shortcut to the SyncService bound to the current app."""
    return current_app.extensions["pos_sync"]


def json_body():
    # Devices don't always send a JSON content type
    return request.get_json(silent=True, force=True)


def json_endpoint(tag):
    """
    Turn handler failures into the API's error bodies: bad payloads get a 400
    with a message, anything else a bare 500. Details only go to the log.
    """
    def wrap(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except PayloadError as e:
                logger.warning("[%s] Rejected request: %s", tag, e.message)
                return jsonify({"success": False, "message": e.message}), 400
            except Exception:
                logger.exception("[%s] Request failed", tag)
                return jsonify({"success": False}), 500
        return decorated
    return wrap


# ---------------------------------------------------------------------------
# Orders API
# ---------------------------------------------------------------------------

@api.route("/orders/sync", methods=["POST"])
@json_endpoint("SYNC")
def sync_orders():
    orders = require_field(json_body(), "orders", list)
    count = service().sync_orders(orders)
    return jsonify({"success": True, "count": count})


@api.route("/orders", methods=["GET"])
@json_endpoint("ORDERS")
def list_orders():
    limit, offset = parse_page(request.args, current_app.config["ORDERS_MAX_LIMIT"])
    if limit is None:
        return jsonify({"success": True, "orders": service().list_orders()})

    orders, next_offset = service().page_orders(limit, offset)
    return jsonify({
        "success": True,
        "orders": orders,
        "limit": limit,
        "offset": offset,
        "nextOffset": next_offset,
    })


# ---------------------------------------------------------------------------
# Settings API
# ---------------------------------------------------------------------------

@api.route("/settings/sync", methods=["POST"])
@json_endpoint("SETTINGS")
def sync_settings():
    settings = require_field(json_body(), "settings", dict)
    service().sync_settings(settings)
    return jsonify({"success": True})


@api.route("/settings", methods=["GET"])
@json_endpoint("SETTINGS")
def get_settings():
    settings = service().get_settings()
    if settings is None:
        return jsonify({"success": False, "message": "No settings found"})
    return jsonify({"success": True, "settings": settings})


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@api.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint for monitoring and platform health checks."""
    try:
        service().ping()
    except Exception:
        logger.exception("[HEALTH] Database check failed")
        return jsonify({"success": False, "message": "Database not connected"}), 500
    return jsonify({"success": True, "message": "Server + DB running"})


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(sync_service, settings=None):
    """Build the Flask app around an already constructed SyncService."""
    if settings is None:
        settings = config.settings

    app = Flask(__name__)
    app.config["ORDERS_MAX_LIMIT"] = settings.ORDERS_MAX_LIMIT
    app.json.ensure_ascii = False
    app.extensions["pos_sync"] = sync_service
    app.register_blueprint(api)

    @app.after_request
    def add_cors_headers(response):
        response.headers["Access-Control-Allow-Origin"] = settings.CORS_ORIGIN
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        return response

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "message": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "message": "Method not allowed"}), 405

    return app


def build_app(settings=None):
    """
    Open the pooled engine, create tables, and return a ready app.
    Raises if the tables cannot be created, so nothing starts serving.
    """
    if settings is None:
        settings = config.settings

    engine = create_db_engine(
        settings.DATABASE_URL,
        pool_size=settings.DB_POOL_MAX,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        connect_timeout=settings.DB_CONNECT_TIMEOUT,
        statement_timeout_ms=settings.DB_STATEMENT_TIMEOUT_MS,
    )
    atexit.register(engine.dispose)

    check_connection(engine)
    init_db(engine)
    return create_app(SyncService(engine), settings)


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

def main():
    settings = config.settings
    configure_logging(settings.LOG_LEVEL)
    try:
        app = build_app(settings)
    except Exception:
        logger.exception("[APP] Startup aborted, not accepting requests")
        sys.exit(1)

    logger.info("[APP] Server running on http://%s:%s", settings.HOST, settings.PORT)
    logger.info("[APP] Local: http://localhost:%s", settings.PORT)
    app.run(host=settings.HOST, port=settings.PORT, threaded=True)


if __name__ == "__main__":
    main()

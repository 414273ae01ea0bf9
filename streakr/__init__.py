import logging
import os

from flask import Flask, jsonify, request
from flask_caching import Cache
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy

from config import config

logger = logging.getLogger(__name__)

db = SQLAlchemy()
login_manager = LoginManager()
socketio = SocketIO()
cache = Cache()
migrate = Migrate()


def get_real_ip():
    """
    Get the real client IP address, accounting for reverse proxies.
    Checks X-Forwarded-For, X-Real-IP, and falls back to remote_addr.
    """
    # X-Forwarded-For: client, proxy1, proxy2, ...
    if request.headers.get("X-Forwarded-For"):
        return request.headers.get("X-Forwarded-For").split(",")[0].strip()
    if request.headers.get("X-Real-IP"):
        return request.headers.get("X-Real-IP")
    return get_remote_address()


# Determine rate limiter storage backend
# Use Redis in production for shared rate limiting across multiple workers
limiter_storage_uri = "memory://"
redis_url = os.environ.get("REDIS_URL")
if redis_url:
    try:
        import redis

        redis_client = redis.Redis.from_url(redis_url)
        redis_client.ping()
        limiter_storage_uri = redis_url
        logger.info(f"Rate limiter using Redis storage at {redis_url}")
    except (ImportError, redis.exceptions.ConnectionError) as e:
        logger.warning(f"Redis not available for rate limiter, using memory storage: {e}")

limiter = Limiter(
    key_func=get_real_ip,
    default_limits=["10000 per day", "1000 per hour"],
    storage_uri=limiter_storage_uri,
)


def create_app(config_name=None):
    app = Flask(__name__)

    # Determine configuration
    if config_name is None:
        config_name = os.environ.get("FLASK_CONFIG", "default")

    app.config.from_object(config[config_name]())

    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SECURE"] = (
        False
        if app.config.get("DEBUG")
        else app.config.get("FLASK_ENV") == "production"
    )
    app.config["PERMANENT_SESSION_LIFETIME"] = 86400  # 24 hours

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)

    allowed_origins = os.environ.get("ALLOWED_ORIGINS", "*")
    if allowed_origins != "*":
        allowed_origins = allowed_origins.split(",")

    # Redis message queue lets settlement pushes reach clients on every worker
    message_queue = None
    redis_url = os.environ.get("REDIS_URL")
    if redis_url and not app.config.get("TESTING"):
        try:
            import redis

            redis_client = redis.Redis.from_url(redis_url)
            redis_client.ping()
            message_queue = redis_url
            logger.info(f"Socket.IO using Redis message queue at {redis_url}")
        except (ImportError, redis.exceptions.ConnectionError) as e:
            logger.warning(f"Redis not available for Socket.IO message queue: {e}")

    socketio.init_app(
        app,
        cors_allowed_origins=allowed_origins,
        async_mode=app.config.get("SOCKETIO_ASYNC_MODE", "eventlet"),
        ping_timeout=60,
        ping_interval=25,
        message_queue=message_queue,
    )
    cache.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # Import and register blueprints
    from streakr.routes.auth import bp as auth_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")

    from streakr.routes.api import bp as api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    from streakr.routes.admin import bp as admin_bp

    app.register_blueprint(admin_bp, url_prefix="/admin")

    # Register error handlers
    register_error_handlers(app)

    # Setup logging
    from streakr.utils.logging_config import setup_logging

    setup_logging(app)

    # Create database tables
    with app.app_context():
        db.create_all()

    # Initialize and start background scheduler
    if not app.config.get("TESTING", False):
        from streakr.services.scheduler_service import scheduler_service

        scheduler_service.init_app(app)

    # Register SocketIO handlers
    from streakr import socketio_handlers  # noqa: F401 - imported for side effects

    return app


def register_error_handlers(app):
    """Register global error handlers"""
    from streakr.errors import StreakrError

    @app.after_request
    def after_request(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"
        return response

    @app.errorhandler(StreakrError)
    def handle_streakr_error(error):
        # Caller-facing rule violations; never a server fault
        app.logger.info(
            f"{error.code}: {error.message} - Path: {request.path} - Method: {request.method}"
        )
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({"error": "not_found", "message": "Resource not found"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return (
            jsonify({"error": "internal_error", "message": "Internal server error"}),
            500,
        )

    @app.errorhandler(403)
    def forbidden_error(error):
        return jsonify({"error": "forbidden", "message": "Access forbidden"}), 403

    @app.errorhandler(400)
    def bad_request_error(error):
        app.logger.warning(
            f"400 Bad Request: {str(error)} - Path: {request.path} - Method: {request.method}"
        )
        return jsonify({"error": "bad_request", "message": "Bad request"}), 400

    @app.errorhandler(429)
    def too_many_requests_error(error):
        return (
            jsonify({"error": "too_many_requests", "message": "Too many requests"}),
            429,
        )


from streakr import models  # noqa: F401, E402 - imported for model registration

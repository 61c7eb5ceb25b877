import os
import json
import logging
import secrets
import time
from flask import Flask, session, request, current_app
from flask_login import LoginManager
from flask_sqlalchemy import SQLAlchemy
from functools import wraps
from flask_migrate import Migrate
from datetime import timedelta
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_caching import Cache
from werkzeug.exceptions import HTTPException
from flask_limiter.errors import RateLimitExceeded

# Global extensions
db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()


def _rate_key():
    try:
        ip = (request.headers.get("X-Forwarded-For") or get_remote_address() or "local")
        path = (getattr(request, "path", "/") or "/")
        return f"{ip}|{path}"
    except Exception:
        return "local"

limiter = Limiter(key_func=_rate_key)
cache = Cache()


def _load_grade_bands(raw):
    """
    Parses GRADE_BANDS_JSON ([{"min": 90, "grade": "A+"}, ...]) into
    ((min, grade), ...) sorted by min descending. Returns None when unset.
    """
    if not raw:
        return None
    data = json.loads(raw)
    if isinstance(data, dict) and "bands" in data:
        data = data["bands"]
    bands = [(float(b["min"]), str(b["grade"])) for b in data]
    return tuple(sorted(bands, key=lambda b: b[0], reverse=True))


def create_app():
    app = Flask(__name__)
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key")

    # Back-office session timeout
    app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(minutes=30)

    REDIS_URL = os.environ.get("REDIS_URL")
    if REDIS_URL:
        app.config["CACHE_TYPE"] = "RedisCache"
        app.config["CACHE_REDIS_URL"] = REDIS_URL
        app.config["RATELIMIT_STORAGE_URI"] = REDIS_URL
    else:
        app.config["CACHE_TYPE"] = "SimpleCache"

    app.config["RATELIMIT_ENABLED"] = (os.environ.get("RATELIMIT_ENABLED", "true").lower() == "true")
    app.config["PUBLIC_LOOKUP_RATE_LIMIT"] = os.environ.get("PUBLIC_LOOKUP_RATE_LIMIT", "30 per minute")
    # CSRF token TTL (seconds)
    app.config["CSRF_TOKEN_TTL"] = int(os.environ.get("CSRF_TOKEN_TTL", "7200"))
    app.config["DEPLOYMENT_CACHE_TIMEOUT"] = int(os.environ.get("DEPLOYMENT_CACHE_TIMEOUT", "60"))

    # Result rules: pass mark and optional grade band override
    app.config["PASS_PERCENTAGE"] = float(os.environ.get("PASS_PERCENTAGE", "25"))
    app.config["GRADE_BANDS"] = _load_grade_bands(os.environ.get("GRADE_BANDS_JSON"))

    # Database configuration: use DATABASE_URL if provided, else sqlite file
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        db_path = os.path.join(os.path.dirname(__file__), "..", "results.db")
        database_url = f"sqlite:///{os.path.abspath(db_path)}"

    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    app.logger.setLevel(getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO))

    app.config.setdefault("RATELIMIT_STORAGE_URI", "memory://")
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cache.init_app(app)

    # Auth: Flask-Login
    login_manager.init_app(app)

    # Import models so they are registered with SQLAlchemy
    from . import models  # noqa: F401

    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            from .models import User
            return db.session.get(User, int(user_id))
        except Exception:
            return None

    @login_manager.unauthorized_handler
    def handle_unauthorized():
        from .api_utils import api_error
        return api_error("unauthorized", "Login required", 401)

    # Blueprints
    from .main import main_bp
    app.register_blueprint(main_bp)

    from .results import results_bp
    app.register_blueprint(results_bp, url_prefix="/admin")

    from .public import public_bp
    app.register_blueprint(public_bp, url_prefix="/api")

    @app.errorhandler(RateLimitExceeded)
    def handle_rate_limit(e):
        from .api_utils import api_error
        return api_error("rate_limited", "Too many requests", 429)

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        from .api_utils import api_error
        return api_error(str(e.code), e.description or "", e.code)

    # Create tables on first run (dev convenience)
    with app.app_context():
        db.create_all()

    return app


def issue_csrf_token():
    """Returns the session CSRF token, regenerating it when missing or expired."""
    token = session.get("csrf_token")
    issued_at = session.get("csrf_token_issued_at")
    ttl = current_app.config.get("CSRF_TOKEN_TTL", 7200)
    now = int(time.time())
    if (not token) or (not issued_at) or (ttl > 0 and (now - int(issued_at)) > ttl):
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
        session["csrf_token_issued_at"] = now
    return token


def csrf_required(view_func):
    @wraps(view_func)
    def _wrapped(*args, **kwargs):
        from .api_utils import api_error
        method = (request.method or "GET").upper()
        if method in ("POST", "PUT", "DELETE"):
            token = (request.headers.get("X-CSRF-Token") or "").strip()
            sess_token = (session.get("csrf_token") or "")
            issued_at = session.get("csrf_token_issued_at")
            ttl = current_app.config.get("CSRF_TOKEN_TTL", 7200)
            now = int(time.time())
            # Expired token
            if not issued_at or (ttl > 0 and (now - int(issued_at)) > ttl):
                return api_error("csrf_expired", "Refresh the session or login again", 403)
            # Missing token in request
            if not token:
                return api_error("csrf_missing", "Refresh the session or login again", 403)
            # Mismatch
            if token != sess_token:
                return api_error("csrf_mismatch", "Refresh the session or login again", 403)
        return view_func(*args, **kwargs)
    return _wrapped

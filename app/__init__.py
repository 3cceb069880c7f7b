import os
from flask import Flask

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=False)


from .config import get_config
from .errors import AppError, NotFoundError, InternalError
from .extensions import db, migrate, csrf, login_manager, limiter, mail
from .security import init_security
from .observability import init_logging, init_sentry


def create_app(config_overrides=None):
    app = Flask(__name__)

    # ---- Rate limiting storage ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())
    if config_overrides:
        app.config.update(config_overrides)

    # --- Required env validation for prod-like envs (staging/production) ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        _require("SECRET_KEY")
        _require("DATABASE_URL")
        if (app.config.get("PAYMENT_PROVIDER_MODE") or "").lower() == "stripe":
            _require("STRIPE_SECRET_KEY")
            _require("STRIPE_WEBHOOK_SECRET")

    # --- Observability & Security ---
    init_logging(app)
    init_sentry(app)

    # Apply HTTPS, HSTS & CSP only in staging/production
    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)
    mail.init_app(app)

    # Models must be imported before the first create_all / migrate autogenerate
    from . import models  # noqa: F401

    # Blueprints (explicit, consistent prefixes)
    from .blueprints.auth import bp as auth_bp
    from .blueprints.clubs import bp as clubs_bp
    from .blueprints.events import bp as events_bp
    from .blueprints.billing import bp as billing_bp, dev_bp as dev_billing_bp
    from .blueprints.admin import bp as admin_bp
    from .blueprints.webhooks import bp as webhooks_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(clubs_bp, url_prefix="/api/clubs")
    app.register_blueprint(events_bp, url_prefix="/api/events")
    app.register_blueprint(billing_bp, url_prefix="/api/billing")
    app.register_blueprint(dev_billing_bp, url_prefix="/api/dev/billing")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    # Webhooks
    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")

    # Health
    @app.get("/healthz")
    @limiter.exempt
    def healthz():
        return {"status": "ok"}, 200

    _register_error_handlers(app)

    # CLI commands (ops-grade utilities)
    from .cli import register_cli
    register_cli(app)

    # Ensure the Stripe SDK is initialized for every worker/process.
    import stripe

    key = app.config.get("STRIPE_SECRET_KEY")
    if key:
        stripe.api_key = key
    elif (app.config.get("PAYMENT_PROVIDER_MODE") or "").lower() == "stripe":
        app.logger.warning("Stripe secret key missing; stripe checkout will not work")

    return app


def _register_error_handlers(app):
    from flask import request
    from flask_wtf.csrf import CSRFError
    from app.utils.responses import respond_error

    @app.errorhandler(AppError)
    def handle_app_error(e):
        return respond_error(e)

    @app.errorhandler(404)
    def not_found(e):
        return respond_error(NotFoundError("Not Found"))

    @app.errorhandler(405)
    def method_not_allowed(e):
        return respond_error(AppError("Method Not Allowed", status_code=405, code="MethodNotAllowed"))

    # CSRF error handler (clean 400 instead of generic 500)
    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return respond_error(AppError(f"CSRF validation failed: {e.description}", status_code=400, code="CSRF"))

    # 429 Too Many Requests with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        details = {"retry_after": int(retry_after)} if retry_after is not None else None
        resp = respond_error(AppError("Too many requests", status_code=429, code="RATE_LIMITED", details=details))
        if retry_after is not None:
            resp.headers["Retry-After"] = str(int(retry_after))
        return resp

    @app.errorhandler(500)
    def server_error(e):
        original = getattr(e, "original_exception", None)
        if original is not None:
            return respond_error(original)
        return respond_error(InternalError())

    @app.errorhandler(Exception)
    def unhandled(e):
        from werkzeug.exceptions import HTTPException
        if isinstance(e, HTTPException):
            return respond_error(AppError(e.description or e.name, status_code=e.code or 500, code=e.name))
        db.session.rollback()
        app.logger.exception("unhandled_exception", extra={"path": request.path})
        return respond_error(InternalError())

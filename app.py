import logging
import os
import re
import uuid
from urllib.parse import unquote_plus

from dotenv import load_dotenv
from flask import Flask, abort, g, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix

from property_errors import InvalidAddress, PropertyInfoError
from property_info import PropertyInfoService
from request_trace import traced_lookup
from service_config import ServiceConfig

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking: gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    def _sentry_before_send(event, hint):
        """Demote expected pipeline failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            if exc_type is not None and issubclass(exc_type, PropertyInfoError):
                sentry_sdk.add_breadcrumb(
                    category=getattr(exc_value, "stage", None) or "pipeline",
                    message=str(exc_value),
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        environment=os.environ.get("SENTRY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)

# Proxy fix: most PaaS hosts run behind a reverse proxy that sets
# X-Forwarded-For.  ProxyFix rewrites request.remote_addr to the real
# client IP so both Flask-Limiter and logging see the correct address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CONFIG = ServiceConfig.from_env()

# ---------------------------------------------------------------------------
# Rate limiting: every /property request fans out to three public APIs.
# In-memory storage is per-process.
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "60/minute")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

# ---------------------------------------------------------------------------
# Startup: warn immediately if required config is missing
# ---------------------------------------------------------------------------
if CONFIG.missing_keys():
    logger.warning(
        "%s is not set. "
        "Property details lookups will fail until it is configured. "
        "For local development, put it in a .env file.",
        ", ".join(CONFIG.missing_keys()),
    )

# A percent sign not followed by two hex digits cannot be unescaped.
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def get_service() -> PropertyInfoService:
    """The service used by /property; tests swap it via app.config."""
    service = app.config.get("PROPERTY_SERVICE")
    if service is None:
        service = PropertyInfoService.from_config(CONFIG)
        app.config["PROPERTY_SERVICE"] = service
    return service


def decode_address(raw: str) -> str:
    """Unescape an address query value a second time.

    Clients sometimes double-encode the address; a value with a broken
    percent-escape is rejected rather than passed through.
    """
    if _BAD_ESCAPE.search(raw):
        raise ValueError("malformed percent-escape in address")
    return unquote_plus(raw)


@app.before_request
def _set_request_context():
    g.request_id = uuid.uuid4().hex[:10]


@app.after_request
def _cors_headers(response):
    """Allow the configured front-end origins to call the API."""
    origin = request.headers.get("Origin")
    if origin and origin in CONFIG.allowed_origins:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        response.headers["Vary"] = "Origin"
    return response


@app.route("/property", methods=["GET", "OPTIONS"])
def get_property():
    # Preflight: CORS headers are added in after_request.
    if request.method == "OPTIONS":
        return "", 200
    # Flask answers HEAD through the GET view; a lookup is GET-only.
    if request.method == "HEAD":
        abort(405, valid_methods=["GET", "OPTIONS"])

    address = request.args.get("address", "")
    if not address:
        return jsonify({"error": "Address parameter is required"}), 400

    try:
        address = decode_address(address)
    except ValueError:
        return jsonify({"error": "Invalid address format"}), 400

    request_id = getattr(g, "request_id", "unknown")
    try:
        with traced_lookup(request_id):
            info = get_service().get_info(address)
    except PropertyInfoError as e:
        status = 400 if isinstance(e, InvalidAddress) else 500
        logger.info("Property lookup failed [%s]: %s", request_id, e)
        return jsonify({
            "error": f"Error getting property info: {e}",
            "stage": e.stage,
        }), status

    return jsonify(info.to_dict())


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    missing = CONFIG.missing_keys()
    return jsonify({
        "status": "degraded" if missing else "ok",
        "missing_keys": missing,
    }), 503 if missing else 200


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(404)
def not_found(e):
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(405)
def method_not_allowed(e):
    response = jsonify({"error": "Method not allowed"})
    # Routing lists HEAD for GET views; /property rejects it.
    allowed = [m for m in getattr(e, "valid_methods", None) or [] if m != "HEAD"]
    if allowed:
        response.headers["Allow"] = ", ".join(allowed)
    return response, 405


@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify({
        "error": "Too many requests. Please wait and try again.",
    }), 429


@app.errorhandler(500)
def internal_error(e):
    return jsonify({"error": "Internal server error"}), 500


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    logger.info("Starting server on port %d", port)
    app.run(host="0.0.0.0", port=port, debug=debug)

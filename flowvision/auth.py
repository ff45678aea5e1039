"""
FlowVision
Authentication & Authorization Middleware.

Provides:
    - API key authentication via X-API-Key header or ?api_key= query param
    - A typed ``AuthenticatedUser`` resolved once per request on g.current_user
    - Role-based access control (RBAC) decorator
    - CSRF mitigation for state-changing requests (non-GET/HEAD/OPTIONS)

Security model:
    - All /api/v1/* endpoints require a valid API key (except /api/v1/health*)
    - Admin-only endpoints (system configuration) require the 'admin' role
    - The tenant is bound to the API key; an X-Tenant-ID header naming any
      other tenant is rejected (403). With auth disabled the header selects
      the tenant ("default" when absent)
    - Services receive the user explicitly; they never read request globals

Configuration (env vars):
    API_KEYS          — comma-separated list of valid API keys
                        e.g. "key1:admin:ops@acme.io:acme,key2:viewer,key3:editor"
                        Format: "<key>:<role>[:<email>[:<tenant>]]" where role is admin|editor|viewer
    API_AUTH_ENABLED  — set to "false" to disable auth (development only)
"""

import functools
import logging
import os
from dataclasses import dataclass
from typing import Optional

from flask import current_app, g, request

from flowvision.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

ROLES = {"admin", "editor", "viewer"}

# Role hierarchy: admin > editor > viewer
ROLE_HIERARCHY = {
    "admin": {"admin", "editor", "viewer"},
    "editor": {"editor", "viewer"},
    "viewer": {"viewer"},
}

DEFAULT_TENANT = "default"
DEV_USER_EMAIL = "dev@flowvision.local"


@dataclass(frozen=True)
class AuthenticatedUser:
    email: str
    role: str
    tenant_id: str = DEFAULT_TENANT
    api_key: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def has_role(self, minimum_role: str) -> bool:
        return minimum_role in ROLE_HIERARCHY.get(self.role, set())


def _parse_api_keys() -> dict[str, tuple[str, str, str]]:
    """
    Parse API_KEYS env var into {key: (role, email, tenant)} mapping.

    Keys without a role default to 'viewer'; keys without an email get a
    synthetic ``<role>@<key prefix>`` identity; keys without a tenant
    belong to the default tenant.
    """
    raw = os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = [p.strip() for p in entry.split(":", 3)]
        key = parts[0]
        role = parts[1].lower() if len(parts) > 1 and parts[1] else "viewer"
        if role not in ROLES:
            logger.warning("Unknown role '%s' for API key, defaulting to 'viewer'", role)
            role = "viewer"
        email = parts[2] if len(parts) > 2 and parts[2] else f"{role}@{key[:6]}"
        tenant = parts[3] if len(parts) > 3 and parts[3] else DEFAULT_TENANT
        keys[key] = (role, email, tenant)
    return keys


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in ("false", "0", "no", "off")
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    """Extract API key from request header or query parameter."""
    key = request.headers.get("X-API-Key", "").strip()
    if key:
        return key
    return request.args.get("api_key", "").strip() or None


def _tenant_header() -> str:
    return request.headers.get("X-Tenant-ID", "").strip()


def current_user() -> AuthenticatedUser:
    """Return the user resolved by the middleware for this request."""
    user = getattr(g, "current_user", None)
    if user is None:
        # Routes outside /api/v1 never reach services; fail loudly if one does
        raise RuntimeError("No authenticated user on this request")
    return user


# ── Authorization decorator ──────────────────────────────────────────────────

def require_role(minimum_role: str):
    """
    Decorator: require a minimum role level.

    Usage:
        @bp.route("/admin/system-config", methods=["PUT"])
        @require_role("admin")
        def update_config(): ...

    Role hierarchy: admin > editor > viewer
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return api_error(E.UNAUTHENTICATED, "Authentication required")

            if not user.has_role(minimum_role):
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint %s",
                    user.role, minimum_role, request.path,
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")

            return f(*args, **kwargs)
        return decorated
    return decorator


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json. HTML forms cannot send that content
    type, so this doubles as a lightweight CSRF mitigation.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return api_error(
                E.VALIDATION_INVALID,
                "Content-Type must be application/json for state-changing requests",
                status=415,
            )
    return None


# ── App-level before_request hook installer ──────────────────────────────────

def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Attaches a before_request hook for API routes
    - Skips health check routes
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path == "/api/v1/health" or request.path.startswith("/api/v1/health/"):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        requested_tenant = _tenant_header()

        if not _is_auth_enabled():
            g.current_user = AuthenticatedUser(
                email=DEV_USER_EMAIL, role="admin",
                tenant_id=requested_tenant or DEFAULT_TENANT, api_key="dev-mode",
            )
            return None

        api_key = _get_api_key_from_request()
        if not api_key:
            return api_error(E.UNAUTHENTICATED, "Authentication required. Provide X-API-Key header.")

        api_keys = _parse_api_keys()
        if not api_keys:
            logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
            return api_error(E.INTERNAL, "Server authentication not configured")

        entry = api_keys.get(api_key)
        if entry is None:
            logger.warning("Invalid API key attempt: %s...", api_key[:8])
            return api_error(E.UNAUTHENTICATED, "Invalid API key")

        role, email, tenant_id = entry
        if requested_tenant and requested_tenant != tenant_id:
            logger.warning(
                "Tenant mismatch: key for '%s' requested tenant '%s' on %s",
                tenant_id, requested_tenant, request.path,
            )
            return api_error(E.FORBIDDEN, "API key is not valid for the requested tenant")

        g.current_user = AuthenticatedUser(email=email, role=role, tenant_id=tenant_id, api_key=api_key)
        return None

    logger.info("Auth middleware installed (enabled=%s)", _is_auth_enabled())

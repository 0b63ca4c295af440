# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services.tenant_service import TenantContext


def _header_int(name: str) -> int | None:
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def require_tenant_context(f):
    """
    Establish the TenantContext for the request.

    Sets g.ctx from X-Tenant-Id, X-User-Id and optional X-Store-Id headers.
    Authentication middleware in front of this service is expected to have
    verified these; here we only require them to be present and numeric.

    Returns 401 if tenant or user is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_id = _header_int("X-Tenant-Id")
        user_id = _header_int("X-User-Id")
        if not tenant_id or not user_id:
            return jsonify({"error": "Tenant context required"}), 401

        permissions = request.headers.get("X-Permissions", "")
        g.ctx = TenantContext(
            tenant_id=tenant_id,
            user_id=user_id,
            store_id=_header_int("X-Store-Id"),
            permissions=frozenset(p.strip() for p in permissions.split(",") if p.strip()),
        )
        return f(*args, **kwargs)

    return decorated_function

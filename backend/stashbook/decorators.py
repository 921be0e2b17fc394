# Overview: Request identity and role-level decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .identity import Actor, MAX_ROLE_LEVEL, MIN_ROLE_LEVEL


def _actor_from_headers() -> Actor | None:
    uid = (request.headers.get("X-Actor-Uid") or "").strip()
    if not uid:
        return None

    raw_level = (request.headers.get("X-Actor-Role-Level") or "").strip()
    try:
        level = int(raw_level) if raw_level else MAX_ROLE_LEVEL
    except ValueError:
        return None
    if level < MIN_ROLE_LEVEL or level > MAX_ROLE_LEVEL:
        return None

    return Actor(
        uid=uid,
        display_name=(request.headers.get("X-Actor-Name") or "").strip() or None,
        role_level=level,
        folder_number=(request.headers.get("X-Actor-Folder") or "").strip() or None,
    )


def require_actor(f):
    """
    Require a caller identity.

    Identity and role are resolved upstream by the identity provider and
    forwarded as headers; this service trusts them as given. Sets g.actor.

    Returns 401 if X-Actor-Uid is missing or the role level is not 1..5.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = _actor_from_headers()
        if actor is None:
            return jsonify({"error": "Actor identity required"}), 401
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def require_role_level(max_level: int):
    """
    Require g.actor.role_level <= max_level (1 is the most privileged).

    Must be stacked under @require_actor.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = getattr(g, "actor", None)
            if actor is None:
                return jsonify({"error": "Actor identity required"}), 401
            if actor.role_level > max_level:
                return jsonify({
                    "error": "Permission denied",
                    "required_role_level": max_level,
                    "message": f"Requires role level {max_level} or lower",
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator

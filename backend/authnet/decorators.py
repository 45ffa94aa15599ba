# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

# Actor identity is resolved by the calling layer (gateway/session plumbing)
ACTOR_HEADER = "X-Actor-Id"
MAX_ACTOR_ID_LENGTH = 64


def require_actor(f):
    """
    Require an acting manufacturer/designer id on the request.

    Sets g.actor_id for the route. Returns 401 when the header is missing,
    blank or too long.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get(ACTOR_HEADER) or "").strip()

        if not actor_id or len(actor_id) > MAX_ACTOR_ID_LENGTH:
            return jsonify({
                "error": {
                    "kind": "AuthenticationRequired",
                    "message": f"{ACTOR_HEADER} header required",
                    "field": ACTOR_HEADER,
                    "id": None,
                    "retryable": False,
                }
            }), 401

        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function

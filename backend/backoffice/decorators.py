# Overview: Request decorators and helpers shared by the API routes.

from functools import wraps
from flask import current_app, g, request

from .errors import ValidationError
from .validation import coerce_int


def resolve_actor(f):
    """
    Establish the acting user for the request.

    Identity is owned by an upstream collaborator: the id arrives in the
    X-User-Id header (or a "user_id" body field) and is trusted as given.
    Sets g.actor_id (None when absent).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-User-Id")
        if raw in (None, ""):
            raw = json_body().get("user_id")
        g.actor_id = coerce_int(raw, "X-User-Id") if raw not in (None, "") else None
        return f(*args, **kwargs)

    return decorated_function


def json_body() -> dict:
    """Parsed JSON object body; {} when there is none."""
    if not request.data:
        return {}
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Invalid JSON payload")
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def get_services():
    return current_app.extensions["backoffice"]


def page_args() -> tuple[int, int | None]:
    """page / per_page query args; paginate() applies the configured limits."""
    page = request.args.get("page", default=1, type=int)
    per_page = request.args.get("per_page", type=int)
    return page, per_page


def patch_fields(*reserved: str) -> dict:
    """
    JSON body as update fields for a service call.

    "user_id" is identity, not a field, and is dropped. Keys in reserved name
    call arguments (path ids, the actor) and are rejected.
    """
    data = dict(json_body())
    data.pop("user_id", None)
    for key in reserved:
        if key in data:
            raise ValidationError(f"Field not allowed: {key}")
    return data

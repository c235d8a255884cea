# Overview: Request helpers and decorators shared by the API routes.

from functools import wraps
from flask import request, jsonify, current_app

from .services.ledger_service import Actor
from .validation import ValidationError, NotFoundError, ConflictError, VersionConflictError, StoreError


def json_body() -> dict:
    """Parsed JSON object body; empty dict when absent."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def request_actor(data: dict | None = None) -> Actor:
    """
    Who is scanning, from the body or the scanner headers.

    Body fields win over headers:
    - scanned_by / X-Scanned-By
    - actor_id / X-Actor-Id
    - client_session_id / X-Client-Session-Id
    """
    data = data or {}
    return Actor.from_values(
        scanned_by=data.get("scanned_by") or request.headers.get("X-Scanned-By"),
        actor_id=data.get("actor_id") or request.headers.get("X-Actor-Id"),
        client_session_id=data.get("client_session_id") or request.headers.get("X-Client-Session-Id"),
    )


def request_idempotency_key(data: dict | None = None):
    data = data or {}
    return data.get("idempotency_key") or request.headers.get("X-Idempotency-Key")


def handle_service_errors(action: str):
    """
    Map the service error taxonomy onto HTTP responses.

    400 invalid input, 404 not found, 409 conflict (version conflicts are
    flagged retryable), 500 store failure or anything unexpected.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ValidationError as e:
                return jsonify({"error": str(e)}), 400
            except NotFoundError as e:
                return jsonify({"error": str(e)}), 404
            except VersionConflictError as e:
                return jsonify({"error": str(e), "retryable": True}), 409
            except ConflictError as e:
                return jsonify({"error": str(e)}), 409
            except StoreError:
                current_app.logger.exception("Store failure during %s", action)
                return jsonify({"error": "DB error"}), 500
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500

        return decorated_function

    return decorator

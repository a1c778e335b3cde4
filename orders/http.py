# orders/http.py
"""JSON request/response helpers shared by the order API views"""
import json
import logging
from functools import wraps

from django.conf import settings
from django.http import JsonResponse

from .exceptions import OrderError, ValidationError

logger = logging.getLogger(__name__)


def error_response(message, status, error=None):
    body = {"success": False, "message": message}
    # Internal detail only outside production
    if error and settings.DEBUG:
        body["error"] = error
    return JsonResponse(body, status=status)


def api_view(view):
    """Turn OrderError into a JSON error response; anything else is a 500"""
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except OrderError as e:
            if e.status_code >= 500:
                logger.error(f"{view.__name__} failed: {e.message}")
            return error_response(e.message, e.status_code, error=e.__class__.__name__)
        except Exception as e:
            logger.error(f"{view.__name__} error: {str(e)}", exc_info=True)
            return error_response("Internal server error", 500, error=str(e))
    return wrapper


def login_required_json(view):
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return error_response("Authentication required", 401)
        return view(request, *args, **kwargs)
    return wrapper


def staff_required_json(view):
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return error_response("Authentication required", 401)
        if not request.user.is_staff:
            return error_response("Admin access required", 403)
        return view(request, *args, **kwargs)
    return wrapper


def json_body(request):
    """Parsed JSON object from the request body; {} for an empty body"""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def money(value):
    """Decimal amounts go out as JSON numbers"""
    return float(value) if value is not None else None

"""
Request tracing and security event logging.
"""

import re
import secrets
from typing import Any, Dict, Optional

from fastapi import Request

from spendflow.config import logger

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

SENSITIVE_KEYS = frozenset({"token", "password", "secret", "key", "authorization"})


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return secrets.token_hex(16)


def get_request_id(request: Request) -> str:
    """Reuse a well-formed incoming request ID, otherwise generate one."""
    request_id = request.headers.get(REQUEST_ID_HEADER)
    if request_id and len(request_id) <= 64 and _REQUEST_ID_PATTERN.match(request_id):
        return request_id
    return generate_request_id()


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def mask_sensitive_data(data: Dict[str, Any], sensitive_keys: frozenset = SENSITIVE_KEYS) -> Dict[str, Any]:
    """Mask sensitive values in a dictionary for safe logging."""
    masked = {}
    for key, value in data.items():
        if any(s in key.lower() for s in sensitive_keys):
            masked[key] = "***"
        elif isinstance(value, dict):
            masked[key] = mask_sensitive_data(value, sensitive_keys)
        else:
            masked[key] = value
    return masked


def log_security_event(
    event_type: str,
    request: Optional[Request] = None,
    user_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    level: str = "warning",
) -> None:
    """
    Log a security-relevant event with structured data.
    """
    log_data: Dict[str, Any] = {
        "security_event": event_type,
        "user_id": user_id,
    }

    if request is not None:
        log_data["client_ip"] = get_client_ip(request)
        log_data["path"] = str(request.url.path)
        log_data["method"] = request.method
        log_data["request_id"] = getattr(request.state, "request_id", None) or get_request_id(request)

    if details:
        log_data["details"] = mask_sensitive_data(details)

    log_func = getattr(logger, level, logger.warning)
    log_func("Security event: %s | %s", event_type, log_data)

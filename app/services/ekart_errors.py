"""
Return lifecycle error taxonomy and the Ekart failure classifier.

Every error carries a stable `error_type` tag for programmatic handling, a message
suitable for display and an optional remediation hint. Classification of courier
rejections is driven by RETURN_ERROR_PATTERNS (substring -> error class), so new
vendor messages are handled by adding a row, not a branch.
"""
import logging
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


class ReturnError(Exception):
    """Base class for all failures surfaced by the return lifecycle."""

    error_type = "RETURN_ERROR"
    http_status = 500
    default_remediation: Optional[str] = None

    def __init__(self, message: str, *, remediation: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation or self.default_remediation
        self.details = details

    def to_dict(self) -> dict:
        body = {"success": False, "errorType": self.error_type, "message": self.message}
        if self.remediation:
            body["remediation"] = self.remediation
        if self.details is not None:
            body["details"] = self.details
        return body


class AuthError(ReturnError):
    error_type = "AUTH_ERROR"
    http_status = 502


class TransportError(ReturnError):
    error_type = "TRANSPORT_ERROR"
    http_status = 502


class ServiceabilityError(ReturnError):
    error_type = "SERVICEABILITY_ERROR"
    http_status = 422
    default_remediation = "Provide an alternate pickup address"


class DuplicateShipmentError(ReturnError):
    error_type = "DUPLICATE_SHIPMENT"
    http_status = 409
    default_remediation = "Regenerate the tracking ID and retry"


class RequestRejectedError(ReturnError):
    error_type = "REQUEST_REJECTED"
    http_status = 422


class InvalidTransitionError(ReturnError):
    error_type = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, message: str, *, current_status: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.current_status = current_status

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["currentStatus"] = self.current_status
        return body


class NotFoundError(ReturnError):
    error_type = "NOT_FOUND"
    http_status = 404


class OrderNotFoundError(NotFoundError):
    """The local order record does not exist (nothing to update)."""

    error_type = "ORDER_NOT_FOUND"


class ValidationError(ReturnError):
    error_type = "VALIDATION_ERROR"
    http_status = 400


# Lowercase substring of the vendor message -> error class. First match wins.
RETURN_ERROR_PATTERNS: list[tuple[str, type[ReturnError]]] = [
    ("no vendor has pickup serviceability", ServiceabilityError),
    ("shipment already present", DuplicateShipmentError),
]


def rejection_message(messages: Union[str, list, None]) -> str:
    """Flatten a vendor message payload (string or list of lines) into one line."""
    if messages is None:
        return ""
    if isinstance(messages, (list, tuple)):
        return "; ".join(str(m).strip() for m in messages if m is not None and str(m).strip())
    return str(messages).strip()


def classify_rejection(
    messages: Union[str, list, None],
    *,
    details: Any = None,
    patterns: Optional[list[tuple[str, type[ReturnError]]]] = None,
) -> ReturnError:
    """
    Map a courier rejection message to a ReturnError instance (not raised).
    Unmatched messages fall through to RequestRejectedError.
    """
    message = rejection_message(messages) or "Ekart rejected the return request"
    lowered = message.lower()
    for needle, error_cls in (patterns if patterns is not None else RETURN_ERROR_PATTERNS):
        if needle in lowered:
            logger.info("Ekart rejection classified as %s: %s", error_cls.error_type, message)
            return error_cls(message, details=details)
    return RequestRejectedError(message, details=details)


def classify_http_failure(status_code: int, payload: Any) -> ReturnError:
    """
    Classify a non-2xx courier response. A structured payload with a message goes through
    the pattern table; anything else is a TransportError.
    """
    messages = extract_messages(payload)
    if messages:
        return classify_rejection(messages, details=payload)
    return TransportError(f"Ekart responded with HTTP {status_code}", details=payload if payload else None)


def extract_messages(payload: Any) -> Union[str, list, None]:
    """Pull vendor message lines out of an error or response body, whatever its shape."""
    if not isinstance(payload, dict):
        return None
    entries = payload.get("response")
    if isinstance(entries, list):
        found = []
        for entry in entries:
            if isinstance(entry, dict) and entry.get("message"):
                msg = entry["message"]
                found.extend(msg if isinstance(msg, list) else [msg])
        if found:
            return found
    for key in ("message", "messages", "error", "description", "reason"):
        value = payload.get(key)
        if value and isinstance(value, (str, list)):
            return value
    return None

"""
Domain exceptions raised by the service layer.

Routers never build error payloads by hand: services raise one of these and
the handlers registered in ``sakina.main`` turn them into the standard
``{"success": false, "message": ..., "error": {...}}`` envelope.
"""

from typing import Any, Dict, Optional


class SakinaError(Exception):
    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, extra: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.extra = extra or {}
        super().__init__(self.message)


class ValidationError(SakinaError):
    status_code = 400
    default_message = "Invalid request"


class UnauthorizedError(SakinaError):
    status_code = 401
    default_message = "Authentication required"


class ForbiddenError(SakinaError):
    status_code = 403
    default_message = "Access denied"


class NotFoundError(SakinaError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(SakinaError):
    status_code = 409
    default_message = "Resource already exists"


class PaymentGatewayError(SakinaError):
    status_code = 502
    default_message = "Payment gateway error"

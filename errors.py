"""
Application errors

Every expected failure raised by the services is an AppError subclass carrying
the HTTP status it maps to. main.py turns them into {"success": false, "message"} bodies.
"""


class AppError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: str = None, status_code: int = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(AppError):
    status_code = 401
    default_message = "Not authorized to access this route"


class AuthorizationError(AppError):
    status_code = 403
    default_message = "Access denied"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Resource already exists"


class InsufficientStockError(ConflictError):
    status_code = 400
    default_message = "Insufficient stock"


class InvalidVariantError(ValidationError):
    default_message = "Selected size or color is not available"


class SignatureError(AppError):
    status_code = 400
    default_message = "Invalid webhook signature"


class PaymentGatewayError(AppError):
    status_code = 502
    default_message = "Payment processing failed"


class InternalError(AppError):
    status_code = 500
    default_message = "Internal server error"

from typing import Optional, Any

class CashMateError(Exception):
    """
    Base exception for CashMate application.
    """
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)

class ResourceNotFoundError(CashMateError):
    """
    Raised when a referenced request, thread or user does not exist.
    """
    def __init__(self, message: str = "Resource not found", details: Optional[Any] = None):
        super().__init__(message, code="NOT_FOUND", status_code=404, details=details)

class AlreadyConnectedError(CashMateError):
    """
    Raised when a cash request has already been connected to another user.
    """
    def __init__(self, message: str = "This request is already connected with another user", details: Optional[Any] = None):
        super().__init__(message, code="ALREADY_CONNECTED", status_code=409, details=details)

class RequestClosedError(CashMateError):
    """
    Raised when a cash request is fulfilled or cancelled and can no longer be connected.
    """
    def __init__(self, message: str = "This request is no longer open", details: Optional[Any] = None):
        super().__init__(message, code="REQUEST_CLOSED", status_code=409, details=details)

class InvalidIdError(CashMateError):
    """
    Raised when an identifier is malformed.
    """
    def __init__(self, message: str = "Invalid ID format", details: Optional[Any] = None):
        super().__init__(message, code="INVALID_ID", status_code=400, details=details)

class ValidationError(CashMateError):
    """
    Raised when input validation fails.
    """
    def __init__(self, message: str = "Validation error", details: Optional[Any] = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=422, details=details)

class PersistenceError(CashMateError):
    """
    Raised when the database is unavailable or rejects a write.
    """
    def __init__(self, message: str = "Database operation failed", details: Optional[Any] = None):
        super().__init__(message, code="PERSISTENCE_FAILURE", status_code=503, details=details)

class DeliveryError(CashMateError):
    """
    Raised when a push to a live transport fails or the target is offline.
    """
    def __init__(self, message: str = "Delivery failed", details: Optional[Any] = None):
        super().__init__(message, code="DELIVERY_FAILURE", status_code=502, details=details)

class TransportError(CashMateError):
    """
    Raised when an inbound transport event is malformed or unknown.
    """
    def __init__(self, message: str = "Malformed event", details: Optional[Any] = None):
        super().__init__(message, code="TRANSPORT_ERROR", status_code=400, details=details)

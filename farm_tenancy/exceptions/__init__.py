"""Custom exceptions for the farm tenancy platform."""


class SaasError(Exception):
    """Base exception for all application errors."""
    error_code = 'internal_error'

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['error'] = self.error_code
        rv['status'] = 'error'
        return rv


class BusinessLogicError(SaasError):
    """Exception raised for business logic violations."""
    error_code = 'business_rule_violation'

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class ValidationError(BusinessLogicError):
    """Raised when caller input is malformed (bad plan, bad custom field schema...)."""
    error_code = 'validation_error'

    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class ConflictError(SaasError):
    """Unique-constraint violation: duplicate slug, duplicate Farm ID, ..."""
    error_code = 'conflict'

    def __init__(self, message="Resource already exists", payload=None):
        super().__init__(message, 409, payload)


class InvalidTransitionError(SaasError):
    """Illegal application or subscription state change."""
    error_code = 'invalid_transition'

    def __init__(self, current_status, target_status, message=None, payload=None):
        self.current_status = current_status
        self.target_status = target_status
        if message is None:
            message = f"Cannot transition from '{current_status}' to '{target_status}'"
        super().__init__(message, 409, payload)


class NotFoundError(SaasError):
    """Exception raised when a resource is not found."""
    error_code = 'not_found'

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class StoreUnavailableError(SaasError):
    """The primary store could not be reached or timed out."""
    error_code = 'store_unavailable'

    def __init__(self, message="The data store is temporarily unavailable", payload=None):
        super().__init__(message, 503, payload)


class CacheUnavailableError(SaasError):
    """
    The cache could not be reached.

    Only used inside the cache layer; callers always get a store read instead.
    """
    error_code = 'cache_unavailable'

    def __init__(self, message="Cache unavailable", payload=None):
        super().__init__(message, 503, payload)


class UnauthorizedError(SaasError):
    """Raised when a user lacks permission for an action."""
    error_code = 'forbidden'

    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)

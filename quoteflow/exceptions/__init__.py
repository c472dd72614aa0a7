"""Custom exceptions for the quote settlement application."""

class SaasError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv

class BusinessLogicError(SaasError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)

class ValidationError(BusinessLogicError):
    """Raised when an input value is malformed or out of range (e.g. negative price)."""
    def __init__(self, message, field=None):
        payload = {'field': field} if field else None
        super().__init__(message, status_code=422, payload=payload)
        self.field = field

class NotFoundError(SaasError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)

class UnauthorizedError(SaasError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)

class IllegalTransitionError(BusinessLogicError):
    """Raised when a quote or purchase order cannot move to the requested state."""
    def __init__(self, entity, current, requested):
        message = f"No se puede pasar {entity} de '{current}' a '{requested}'"
        super().__init__(message, status_code=409, payload={
            'entity': entity,
            'current': current,
            'requested': requested,
        })
        self.entity = entity
        self.current = current
        self.requested = requested


# Supplier channel errors. Kept distinct so the portal can say why a write was refused.

class SupplierChannelError(SaasError):
    """Base class for refusals on the public supplier channel."""
    code = 'supplier_channel'

    def __init__(self, message, status_code):
        super().__init__(message, status_code, payload={'code': self.code})

class InvalidTokenError(SupplierChannelError):
    """The supplier token does not match any invitation."""
    code = 'invalid_token'

    def __init__(self, message="Link de cotización inválido"):
        super().__init__(message, 404)

class QuoteClosedError(SupplierChannelError):
    """The quote is no longer accepting responses."""
    code = 'closed'

    def __init__(self, message="La cotización ya no acepta respuestas"):
        super().__init__(message, 410)

class QuoteExpiredError(SupplierChannelError):
    """The quote deadline has passed."""
    code = 'expired'

    def __init__(self, message="El plazo de la cotización venció"):
        super().__init__(message, 410)

class AlreadySubmittedError(SupplierChannelError):
    """The supplier already submitted its final answer."""
    code = 'submitted'

    def __init__(self, message="La cotización ya fue enviada"):
        super().__init__(message, 409)


class WinnerMismatchError(BusinessLogicError):
    """Manual winner references a response/supplier pair that does not belong to the item."""
    def __init__(self, message="La respuesta no corresponde al ítem o proveedor indicado"):
        super().__init__(message, status_code=422)

class ConsistencyViolationError(SaasError):
    """An internal invariant would be broken by a write. Treated as a defect."""
    def __init__(self, message):
        super().__init__(message, 500)

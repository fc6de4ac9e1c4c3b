"""Custom exceptions for the VapeStock application."""


class VapeStockError(Exception):
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


class BusinessLogicError(VapeStockError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class InvalidOperationError(BusinessLogicError):
    """Wrong category, non-positive amounts, operation not allowed in current state."""


class UnauthorizedError(VapeStockError):
    """Raised when a session is used outside the shop it was opened in."""
    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)


class NotFoundError(VapeStockError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id=None):
        super().__init__('Product not found', payload={'productId': product_id} if product_id else None)


class BottleNotFoundError(NotFoundError):
    def __init__(self, bottle_id=None):
        super().__init__('Opened bottle not found', payload={'openedBottleId': bottle_id} if bottle_id else None)


class SessionNotFoundError(NotFoundError):
    def __init__(self, message='Session not found'):
        super().__init__(message)


class ReportNotFoundError(NotFoundError):
    def __init__(self, report_id=None):
        super().__init__('Session report not found', payload={'reportId': report_id} if report_id else None)


class InsufficientStockError(BusinessLogicError):
    """Raised when a sale asks for more units than are on hand (or the product is gone)."""
    def __init__(self, product_name=None, requested=None):
        name = product_name or 'product'
        if requested is not None:
            message = f'Insufficient stock for {name}: requested {requested}'
        else:
            message = f'Insufficient stock for {name}'
        super().__init__(message, status_code=409)


class InsufficientVolumeError(BusinessLogicError):
    """Raised when an ml sale exceeds what is left in an opened bottle."""
    def __init__(self, product_name, requested_ml, remaining_ml):
        message = f'Cannot sell {requested_ml}ml of {product_name}. Only {remaining_ml}ml remaining.'
        super().__init__(message, status_code=409)


class NoStockError(BusinessLogicError):
    """No sealed unit available to open."""
    def __init__(self, product_name):
        super().__init__(f'No sealed bottles of {product_name} available to open', status_code=409)


class AlreadyOpenError(BusinessLogicError):
    """The product already has an opened bottle."""
    def __init__(self, product_name):
        super().__init__(f'{product_name} already has an opened bottle', status_code=409)


class NoItemsSoldError(BusinessLogicError):
    """Bulk sale where every single item failed."""
    def __init__(self, errors):
        super().__init__('No items could be sold', status_code=400, payload={'errors': list(errors)})
        self.errors = list(errors)


class DuplicateSessionError(BusinessLogicError):
    """The shopkeeper already has an open session."""
    def __init__(self, username, session_id=None):
        super().__init__(f'Shopkeeper {username} already has an open session', status_code=409)
        self.session_id = session_id


class DuplicateReportError(BusinessLogicError):
    """A report for this session id already exists."""
    def __init__(self, session_id):
        super().__init__(f'A report already exists for session {session_id}', status_code=409)

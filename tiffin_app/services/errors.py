class TiffinError(Exception):
    """Base class for every failure raised inside tiffin_app."""


class OrderValidationError(TiffinError):
    pass


class InvalidStatusTransition(TiffinError):
    def __init__(self, kind, current, requested):
        self.kind = kind
        self.current = current
        self.requested = requested
        super().__init__(f'Cannot move {kind} from {current} to {requested}')


class StoreError(TiffinError):
    """Raised by a document store when a read or write fails."""


class NotFoundError(StoreError):
    def __init__(self, path):
        self.path = path
        super().__init__(f'Document not found: {path}')


class PaymentValidationError(TiffinError):
    pass


class MenuValidationError(TiffinError):
    pass


class KitchenConfigError(TiffinError):
    pass


class ConflictError(StoreError):
    """A conditional write found the document changed since it was read."""

    def __init__(self, path, expected):
        self.path = path
        self.expected = expected
        super().__init__(f'Document changed concurrently: {path}')

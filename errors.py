"""Error kinds surfaced by the marketplace API."""


class MarketplaceError(Exception):
    status_code = 500
    kind = "internal_error"
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(MarketplaceError):
    status_code = 401
    kind = "unauthenticated"
    default_message = "Unauthorized"


class Forbidden(MarketplaceError):
    status_code = 403
    kind = "forbidden"
    default_message = "Forbidden"


class ValidationFailed(MarketplaceError):
    status_code = 422
    kind = "validation_error"
    default_message = "Invalid request"


class NotFound(MarketplaceError):
    status_code = 404
    kind = "not_found"
    default_message = "Not found"


class ConflictError(MarketplaceError):
    status_code = 409
    kind = "conflict"
    default_message = "Already exists"

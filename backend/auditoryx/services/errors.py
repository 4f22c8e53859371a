class MarketplaceError(ValueError):
    """Base class for user-visible marketplace errors."""


class MarketplaceValidationError(MarketplaceError):
    pass


class MarketplaceNotFoundError(MarketplaceError):
    pass


class MarketplaceConflictError(MarketplaceError):
    pass


class MarketplacePermissionError(MarketplaceError):
    pass

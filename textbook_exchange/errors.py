class MarketplaceError(Exception):
    """Base class for errors raised by the marketplace core and its storage adapters"""


class NotFound(MarketplaceError):
    """A referenced listing or user does not exist"""


class InvalidState(MarketplaceError):
    """The request is well-formed but not allowed in the current state"""


class StorageUnavailable(MarketplaceError):
    """The backing store failed (timeout, connection error, ...). Never retried here."""

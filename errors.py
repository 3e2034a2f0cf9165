class LedgerError(Exception):
    """Base class for errors raised at the store and service boundary."""


class ValidationError(LedgerError, ValueError):
    """Missing or invalid amount, date, name or category reference."""


class NotFoundError(LedgerError, ValueError):
    """The id does not exist, or is owned by someone else."""


class ConflictError(LedgerError, ValueError):
    pass


class ProtectedCategoryError(LedgerError, ValueError):
    pass


class CategoryInUseError(LedgerError, ValueError):
    pass


class AuthenticationError(LedgerError, ValueError):
    pass


class StorageFailure(LedgerError):
    """A durable write failed. The operation was rolled back."""

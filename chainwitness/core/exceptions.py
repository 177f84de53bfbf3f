"""
Engine exceptions.

Storage failures live in db.store (StoreError and subclasses).
Everything raised here is a domain outcome the caller can act on.
"""


class WitnessError(Exception):
    """Base exception for verification chain and witnessing errors."""
    pass


class NotFoundError(WitnessError):
    """Unknown page, revision, hash or witness event."""
    pass


class InvalidArgumentError(WitnessError):
    """Unsupported hash field name or malformed interchange block."""
    pass


class IntegrityError(WitnessError):
    """
    Stored data violates a chain invariant.

    Raised while assembling a manifest when a candidate record has no
    verification hash. The enclosing transaction is rolled back.
    """
    pass


class ConflictError(WitnessError):
    """
    Duplicate event id or contested title.

    Normally absorbed by idempotent skip or rename; raised only where a
    caller explicitly asks for strict behavior.
    """
    pass

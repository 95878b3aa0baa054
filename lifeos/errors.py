"""Exception hierarchy for the learning module."""


class LifeOSError(Exception):
    """Base class for all errors raised by lifeos."""


class InvalidArgumentError(LifeOSError, ValueError):
    """A rating or stored card state is outside its valid domain."""


class NotFoundError(LifeOSError):
    """The requested card does not exist."""


class AccessDeniedError(LifeOSError):
    """The learner is not a member of the card's project."""


class ConflictError(LifeOSError):
    """A concurrent write to the same (learner, card) state was detected."""

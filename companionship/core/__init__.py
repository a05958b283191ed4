"""Core error types and identity."""

from companionship.core.exceptions import (
    BookingError,
    ConflictError,
    ErrorKind,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    StoreNotConfiguredError,
    TransientError,
    UnauthenticatedError,
    UnknownError,
)
from companionship.core.identity import Identity, IdentityProvider, StaticIdentityProvider

__all__ = [
    "BookingError",
    "ConflictError",
    "ErrorKind",
    "InvalidArgumentError",
    "InvalidTransitionError",
    "NotFoundError",
    "StoreNotConfiguredError",
    "TransientError",
    "UnauthenticatedError",
    "UnknownError",
    "Identity",
    "IdentityProvider",
    "StaticIdentityProvider",
]

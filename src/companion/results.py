"""Tagged results returned across component boundaries."""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """A successful result carrying a value."""

    value: T


@dataclass(frozen=True)
class NotFound:
    """The requested record does not exist."""

    key: str


@dataclass(frozen=True)
class Unavailable:
    """The remote side could not be reached or rejected the request."""

    reason: str


@dataclass(frozen=True)
class AuthFailure:
    """Authentication was rejected; ``reason`` is user-visible."""

    reason: str


PullResult = Union[Ok, NotFound, Unavailable]
AuthResult = Union[Ok, AuthFailure]

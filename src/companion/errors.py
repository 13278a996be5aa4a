"""Error taxonomy for the companion core."""


class CompanionError(Exception):
    """Base class for all companion errors."""


class ProviderError(CompanionError):
    """The language-model provider failed (network, auth, quota, bad response)."""


class ExtractionError(CompanionError):
    """Memory extraction failed. Advisory only."""


class SyncError(CompanionError):
    """The remote store was unavailable or rejected a request."""


class AuthError(CompanionError):
    """Authentication was rejected.

    The message is meant to be shown to the user as-is.
    """


class DuplicateUsernameError(AuthError):
    def __init__(self, username: str) -> None:
        super().__init__("Username already exists")
        self.username = username


class InvalidCredentialsError(AuthError):
    def __init__(self) -> None:
        super().__init__("Invalid credentials")

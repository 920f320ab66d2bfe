DEFAULT_APP_NAME = "albumqueue"


class AlbumQueueError(Exception):
    """Base for errors surfaced to the user as a one-line description."""

    def __init__(self, description: str) -> None:
        super().__init__(description)
        self.description = description


class AuthorizationError(AlbumQueueError):
    """Access to the catalog/playback service is not available."""


class AuthorizationDenied(AuthorizationError):
    """The user declined access to the service."""

    def __init__(self, app_name: str = DEFAULT_APP_NAME) -> None:
        super().__init__(
            f"{app_name} can't access the music service because permission was denied. "
            f"If you want to use the music service with {app_name}, grant access again "
            f"from your account's connected apps settings and retry."
        )


class AuthorizationRestricted(AuthorizationError):
    """Access is blocked by account or device restrictions."""

    def __init__(self, app_name: str = DEFAULT_APP_NAME) -> None:
        super().__init__(
            f"{app_name} can't access the music service because of account restrictions. "
            f"Playback control may require a premium subscription, or this account may be "
            f"managed by an administrator. Otherwise, please contact {app_name} support."
        )


class AuthorizationUnknown(AuthorizationError):
    """Authorization failed for an unrecognised reason."""

    def __init__(self, app_name: str = DEFAULT_APP_NAME) -> None:
        super().__init__(_unknown_problem(app_name))


class TooManyAttempts(AuthorizationError):
    """Authorization never left the not-determined state within the attempt cap."""

    def __init__(self, attempts: int = 0, app_name: str = DEFAULT_APP_NAME) -> None:
        super().__init__(_unknown_problem(app_name))
        self.attempts = attempts


class EmptyAlbum(AlbumQueueError):
    """The hydrated album has no playable tracks."""

    def __init__(self, album_id: str = "") -> None:
        super().__init__("The album doesn't contain any songs")
        self.album_id = album_id


class OtherError(AlbumQueueError):
    """Wraps a failure from outside the application's own taxonomy."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(str(cause) or type(cause).__name__)
        self.cause = cause

    @classmethod
    def wrap(cls, error: BaseException) -> AlbumQueueError:
        if isinstance(error, AlbumQueueError):
            return error
        return cls(error)


def _unknown_problem(app_name: str) -> str:
    return (
        f"{app_name} can't access the music service because of an unknown problem. "
        f"Please check for a new version of {app_name} and update if possible. "
        f"If the problem persists, please contact {app_name} support."
    )


class RateLimited(Exception):
    """Operation was rate limited by provider. Includes suggested wait time in milliseconds."""

    def __init__(self, retry_after_ms: int, message: str = "Rate limited") -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class TemporaryFailure(Exception):
    """Transient provider or network failure. Retrying may succeed."""


class PermanentFailure(Exception):
    """Non-retriable failure due to invalid input or authorization issues."""


class NotFound(Exception):
    """Requested resource was not found."""

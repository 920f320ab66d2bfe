import logging
from typing import Callable, List, Optional

from albumqueue.domain.entities import AuthorizationState
from albumqueue.domain.errors import (
    AuthorizationDenied, AuthorizationError, AuthorizationRestricted,
    AuthorizationUnknown, DEFAULT_APP_NAME, TooManyAttempts,
)
from albumqueue.domain.ports import AuthorizationService

logger = logging.getLogger(__name__)

MAX_ACCESS_ATTEMPTS = 3


class AccessGate:
    """Mediates all access to the external service behind an authorization check."""

    def __init__(self, service: AuthorizationService,
                 app_name: str = DEFAULT_APP_NAME,
                 max_attempts: int = MAX_ACCESS_ATTEMPTS):
        self._service = service
        self._app_name = app_name
        self._max_attempts = max_attempts
        self._status = AuthorizationState.NOT_DETERMINED
        self._listeners: List[Callable[[AuthorizationState], None]] = []

    def current_status(self) -> AuthorizationState:
        return self._status

    @property
    def authorization_error(self) -> Optional[AuthorizationError]:
        """Error describing the current status, or None when nothing blocks access yet."""
        if self._status in (AuthorizationState.NOT_DETERMINED, AuthorizationState.AUTHORIZED):
            return None
        return self._error_for(self._status)

    def subscribe(self, listener: Callable[[AuthorizationState], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def request_access(self) -> AuthorizationState:
        """Ask the service for access once and cache the answer."""
        status = await self._service.request_authorization()
        logger.info(f"Authorization status: {status.value}")
        if status != self._status:
            self._status = status
            for listener in list(self._listeners):
                listener(status)
        return status

    async def ensure_access(self, attempt: int = 0) -> None:
        """Return once authorized; raise the matching AuthorizationError otherwise.

        A not-determined status triggers a request, at most ``max_attempts`` times
        in total counting ``attempt``.
        """
        while attempt < self._max_attempts:
            status = self._status
            if status == AuthorizationState.AUTHORIZED:
                return
            if status != AuthorizationState.NOT_DETERMINED:
                raise self._error_for(status)
            await self.request_access()
            attempt += 1

        if self._status == AuthorizationState.AUTHORIZED:
            return
        if self._status != AuthorizationState.NOT_DETERMINED:
            raise self._error_for(self._status)
        logger.error(f"Authorization still undetermined after {attempt} attempts")
        raise TooManyAttempts(attempts=attempt, app_name=self._app_name)

    def _error_for(self, status: AuthorizationState) -> AuthorizationError:
        if status == AuthorizationState.DENIED:
            return AuthorizationDenied(self._app_name)
        if status == AuthorizationState.RESTRICTED:
            return AuthorizationRestricted(self._app_name)
        return AuthorizationUnknown(self._app_name)

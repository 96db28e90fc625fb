"""Session state and login/logout notifications."""

import logging
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionChange:
    """Notification that the signed-in owner changed.

    ``owner_id`` is None after a logout.
    """

    owner_id: str | None
    access_token: str | None = None


SessionListener = Callable[[SessionChange], None]


class AuthSession:
    """Holds the current session owner and notifies listeners on change.

    Token acquisition (OAuth and the like) happens elsewhere; this only
    tracks who is signed in.
    """

    def __init__(self, owner_id: str | None = None, access_token: str | None = None):
        self._owner_id = owner_id
        self._access_token = access_token
        self._listeners: list[SessionListener] = []

    @property
    def current_owner(self) -> str | None:
        return self._owner_id

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener for session changes.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def sign_in(self, owner_id: str, access_token: str | None = None) -> None:
        """Start a session for ``owner_id``."""
        self._owner_id = owner_id
        self._access_token = access_token
        logger.info(f"Signed in as {owner_id}")
        self._notify()

    def sign_out(self) -> None:
        """End the current session."""
        if self._owner_id is None:
            return
        logger.info(f"Signed out {self._owner_id}")
        self._owner_id = None
        self._access_token = None
        self._notify()

    def _notify(self) -> None:
        change = SessionChange(owner_id=self._owner_id, access_token=self._access_token)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Session listener failed: {e}", exc_info=True)

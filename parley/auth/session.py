import logging
import threading
from typing import Callable, List, Optional

from fastapi import Depends
from supabase import AuthApiError, Client

from parley.core.errors import (
    DuplicateError,
    TransientError,
    UnauthorizedError,
    ValidationError,
)
from parley.core.supabase_client import get_supabase

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

SessionListener = Callable[[str, Optional[str]], None]


class SessionEvents:
    """Process-wide registry of session change listeners."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: List[SessionListener] = []

    def subscribe(self, callback: SessionListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def emit(self, event: str, user_id: Optional[str]):
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(event, user_id)
            except Exception:
                logger.exception(f"session_listener_failed event={event}")


session_events = SessionEvents()


class SessionManager:
    """
    Thin wrapper over Supabase Auth.

    Errors from the provider come back as `ParleyError`s so routers can show
    them to the user; listeners registered with `on_session_change` are told
    about sign in, refresh and sign out as `(event, user_id)`.
    """

    def __init__(self, client: Client, events: SessionEvents = session_events):
        self._client = client
        self._events = events

    def get_current_session(self):
        return self._client.auth.get_session()

    def get_user(self, token: str):
        try:
            res = self._client.auth.get_user(jwt=token)
        except AuthApiError:
            raise UnauthorizedError("Invalid or expired token.")

        if not res or not res.user:
            raise UnauthorizedError("Invalid authentication token.")

        return res.user

    def sign_in_with_password(self, email: str, password: str):
        try:
            res = self._client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except AuthApiError as error:
            raise UnauthorizedError(error.message)

        if not res.session or not res.user:
            raise TransientError("Supabase authentication returned an unexpected response.")

        logger.info(f"user_login_success email={email}")
        self._events.emit(SIGNED_IN, res.user.id)
        return res

    def sign_up(self, email: str, password: str, attributes: Optional[dict] = None):
        try:
            res = self._client.auth.sign_up(
                {
                    "email": email,
                    "password": password,
                    "options": {"data": attributes or {}},
                }
            )
        except AuthApiError as error:
            logger.error(f"supabase_error={error}")
            raise DuplicateError(error.message)

        if not res.user:
            raise ValidationError("Failed to create user")

        return res

    def refresh_session(self, refresh_token: str):
        try:
            res = self._client.auth.refresh_session(refresh_token)
        except AuthApiError:
            raise UnauthorizedError("Refresh token invalid or expired. Please log in again.")

        if not res or not res.session:
            raise UnauthorizedError("Refresh token invalid or expired. Please log in again.")

        self._events.emit(TOKEN_REFRESHED, res.user.id if res.user else None)
        return res

    def sign_out(self, user_id: Optional[str] = None):
        # The shared client holds no session of the caller, and issued JWTs
        # cannot be revoked; logout is the refresh cookie deletion.
        logger.info(f"user_logout user_id={user_id}")
        self._events.emit(SIGNED_OUT, user_id)

    def on_session_change(self, callback: SessionListener) -> Callable[[], None]:
        return self._events.subscribe(callback)


def get_session_manager(supabase: Client = Depends(get_supabase)) -> SessionManager:
    return SessionManager(supabase)

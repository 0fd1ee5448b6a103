"""
Session Manager Module - Coaching Attendance System

Process-wide session state on top of the identity provider. The manager
subscribes to session-change events on init() and unsubscribes on
teardown(). Listeners registered through subscribe() are notified
synchronously after every change, whether it came from sign_in(),
sign_out() or the provider itself (token refresh, external sign-out).
"""

from typing import Any, Callable, Dict, List, Optional
import logging
import threading

from coaching_attendance.errors import describe_error, error_type
from coaching_attendance.modules.identity_provider import (
    SIGNED_IN,
    SIGNED_OUT,
    TOKEN_REFRESHED,
    Session,
)

SessionListener = Callable[[str, Optional[Session]], None]


class SessionManager:
    """
    Tracks live sessions and exposes the sign-in and sign-out commands.
    """

    def __init__(self, data_service):
        """
        Args:
            data_service: Data service instance; its ``auth`` provider is wrapped
        """
        self.auth = data_service.auth
        self.logger = logging.getLogger(__name__)

        self._sessions: Dict[int, Session] = {}
        self._by_token: Dict[str, int] = {}
        self._listeners: List[SessionListener] = []
        self._subscription = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self):
        """Subscribe to the identity provider. Safe to call twice."""
        if self._subscription is None:
            self._subscription = self.auth.on_auth_state_change(self._on_auth_state_change)
            self.logger.info("Session manager subscribed to auth state changes")

    def teardown(self):
        """Unsubscribe from the identity provider and drop cached sessions."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        with self._lock:
            self._sessions.clear()
            self._by_token.clear()
            self._listeners.clear()
        self.logger.info("Session manager torn down")

    @property
    def initialized(self) -> bool:
        return self._subscription is not None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """
        Register a listener for session changes.

        Returns:
            callable: Removes the listener when called
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def session_for(self, access_token: Optional[str]) -> Optional[Session]:
        """
        Current session for an access token, or None when signed out or expired.
        """
        if not access_token:
            return None

        with self._lock:
            session_id = self._by_token.get(access_token)
            cached = self._sessions.get(session_id) if session_id is not None else None

        if cached is not None:
            if cached.expires_at > self.auth.clock():
                return cached
            self._forget(cached.session_id)
            return None

        # Sessions opened before this process started are only known to the provider
        session = self.auth.get_session(access_token)
        if session is not None:
            self._remember(session)
        return session

    @property
    def active_session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def sign_in(self, email: str, password: str, remember: bool = False) -> Dict[str, Any]:
        """
        Sign in with email and password.

        Args:
            email (str): Account email
            password (str): Account password
            remember (bool): Keep the session beyond the browser session

        Returns:
            Dict[str, Any]: {'success': True, 'session': Session} or an error result
        """
        try:
            session = self.auth.sign_in_with_password(email, password, persist_session=remember)
            # The provider event normally did this already
            self._remember(session)
            return {'success': True, 'session': session}

        except Exception as e:
            self.logger.error(f"Auth error: {str(e)}")
            return {
                'success': False,
                'error': describe_error(e, 'An error occurred. Please try again.'),
                'error_type': error_type(e)
            }

    def sign_out(self, access_token: Optional[str]) -> Dict[str, Any]:
        """
        Sign out the session owning the access token.

        The local session is dropped even when the provider call fails.
        """
        with self._lock:
            session_id = self._by_token.get(access_token)

        try:
            self.auth.sign_out(access_token)
            return {'success': True}

        except Exception as e:
            self.logger.error(f"Auth error during sign-out: {str(e)}")
            return {
                'success': False,
                'error': describe_error(e, 'An error occurred. Please try again.'),
                'error_type': error_type(e)
            }

        finally:
            if session_id is not None and self._forget(session_id):
                self._notify(SIGNED_OUT, None)

    def refresh(self, refresh_token: Optional[str]) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new session.

        Returns:
            Dict[str, Any]: {'success': True, 'session': Session} or an error result
        """
        try:
            session = self.auth.refresh_session(refresh_token)
            self._remember(session)
            return {'success': True, 'session': session}

        except Exception as e:
            self.logger.error(f"Auth error during refresh: {str(e)}")
            return {
                'success': False,
                'error': describe_error(e, 'An error occurred. Please try again.'),
                'error_type': error_type(e)
            }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _remember(self, session: Session):
        with self._lock:
            previous = self._sessions.get(session.session_id)
            if previous is not None:
                self._by_token.pop(previous.access_token, None)
            self._sessions[session.session_id] = session
            self._by_token[session.access_token] = session.session_id

    def _forget(self, session_id: int) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return False
            self._by_token.pop(session.access_token, None)
            return True

    def _on_auth_state_change(self, event: str, session: Session):
        if event in (SIGNED_IN, TOKEN_REFRESHED):
            self._remember(session)
            self._notify(event, session)
        elif event == SIGNED_OUT:
            if self._forget(session.session_id):
                self._notify(event, None)
        self.logger.debug(f"Auth state change: {event} (user {session.user_id})")

    def _notify(self, event: str, session: Optional[Session]):
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event, session)
            except Exception as e:
                self.logger.error(f"Session listener failed on {event}: {str(e)}")


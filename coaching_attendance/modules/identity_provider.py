"""
Identity Provider Module - Coaching Attendance System

Auth sub-API of the data service: user accounts, password sign-in, session
tokens with refresh rotation, and session-change notifications.

Tokens are handed to the caller once and only their keyed hashes are stored.
"""

from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
from dataclasses import dataclass
import hashlib
import hmac
import logging
import secrets
import threading

from coaching_attendance.errors import (
    INVALID_CREDENTIALS,
    REFRESH_TOKEN_NOT_FOUND,
    AuthError,
)

SIGNED_IN = 'SIGNED_IN'
SIGNED_OUT = 'SIGNED_OUT'
TOKEN_REFRESHED = 'TOKEN_REFRESHED'

TOKEN_BYTES = 32

AuthCallback = Callable[[str, 'Session'], None]


@dataclass(frozen=True)
class Session:
    """A signed-in user's session as seen by the application."""
    session_id: int
    access_token: str
    refresh_token: str
    user_id: int
    email: str
    full_name: Optional[str]
    expires_at: datetime
    persistent: bool


class Subscription:
    """Handle returned by on_auth_state_change."""

    def __init__(self, provider: 'IdentityProvider', callback: AuthCallback):
        self._provider = provider
        self.callback = callback
        self.active = True

    def unsubscribe(self):
        if self.active:
            self._provider._remove_subscription(self)
            self.active = False


class IdentityProvider:
    """
    Password authentication and session lifecycle management.
    """

    def __init__(self, database_manager, api_key: str,
                 access_token_lifetime: timedelta = timedelta(hours=1),
                 session_lifetime: timedelta = timedelta(hours=8),
                 remember_me_lifetime: timedelta = timedelta(days=30),
                 clock: Callable[[], datetime] = datetime.now):
        """
        Args:
            database_manager: Database manager instance
            api_key (str): Project key, used to key token hashes
            access_token_lifetime (timedelta): Validity of an access token
            session_lifetime (timedelta): Refresh window without "remember me"
            remember_me_lifetime (timedelta): Refresh window with "remember me"
            clock: Source of the current time
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)
        self._key = api_key.encode('utf-8')
        self.access_token_lifetime = access_token_lifetime
        self.session_lifetime = session_lifetime
        self.remember_me_lifetime = remember_me_lifetime
        self.clock = clock

        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_user(self, email: str, password: str, full_name: Optional[str] = None) -> Dict:
        """
        Register a user account.

        Raises:
            ConstraintViolationError: If the email is already registered
        """
        email = email.strip().lower()
        user_id = self.db.execute_update(
            "INSERT INTO users (email, password_hash, full_name) VALUES (?, ?, ?)",
            (email, generate_password_hash(password), full_name)
        )
        self.logger.info(f"User created: {email} (ID: {user_id})")
        return {'id': user_id, 'email': email, 'full_name': full_name}

    def ensure_user(self, email: str, password: str, full_name: Optional[str] = None) -> Dict:
        """Create the account unless the email is already registered."""
        existing = self.db.execute_query(
            "SELECT id, email, full_name FROM users WHERE email = ?",
            (email.strip().lower(),), fetch_all=False
        )
        if existing:
            return existing
        return self.create_user(email, password, full_name)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _hash(self, token: str) -> str:
        return hmac.new(self._key, token.encode('utf-8'), hashlib.sha256).hexdigest()

    def _issue_tokens(self, persistent: bool):
        now = self.clock()
        refresh_window = self.remember_me_lifetime if persistent else self.session_lifetime
        return {
            'access_token': secrets.token_urlsafe(TOKEN_BYTES),
            'refresh_token': secrets.token_urlsafe(TOKEN_BYTES),
            'access_expires_at': now + self.access_token_lifetime,
            'refresh_expires_at': now + refresh_window,
        }

    def _build_session(self, row: Dict, access_token: str, refresh_token: str) -> Session:
        return Session(
            session_id=row['session_id'],
            access_token=access_token,
            refresh_token=refresh_token,
            user_id=row['user_id'],
            email=row['email'],
            full_name=row['full_name'],
            expires_at=datetime.fromisoformat(row['access_expires_at']),
            persistent=bool(row['persistent']),
        )

    def _session_row(self, column: str, token_hash: str) -> Optional[Dict]:
        return self.db.execute_query(
            f"""SELECT s.id AS session_id, s.user_id, s.access_expires_at,
                       s.refresh_expires_at, s.persistent, u.email, u.full_name
                FROM auth_sessions s
                JOIN users u ON u.id = s.user_id
                WHERE s.{column} = ? AND u.is_active = 1""",
            (token_hash,),
            fetch_all=False
        )

    def sign_in_with_password(self, email: str, password: str,
                              persist_session: bool = True) -> Session:
        """
        Authenticate with email and password and open a session.

        Raises:
            AuthError: When the credentials do not match an active user
        """
        user = self.db.execute_query(
            "SELECT * FROM users WHERE email = ? AND is_active = 1",
            ((email or '').strip().lower(),),
            fetch_all=False
        )

        if not user or not check_password_hash(user['password_hash'], password or ''):
            self.logger.warning(f"Sign-in rejected for {email}")
            raise AuthError('Invalid login credentials', code=INVALID_CREDENTIALS)

        tokens = self._issue_tokens(persist_session)
        session_id = self.db.execute_update(
            """INSERT INTO auth_sessions (user_id, access_token_hash, refresh_token_hash,
                                          access_expires_at, refresh_expires_at, persistent)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                user['id'],
                self._hash(tokens['access_token']),
                self._hash(tokens['refresh_token']),
                tokens['access_expires_at'].isoformat(),
                tokens['refresh_expires_at'].isoformat(),
                1 if persist_session else 0,
            )
        )

        session = Session(
            session_id=session_id,
            access_token=tokens['access_token'],
            refresh_token=tokens['refresh_token'],
            user_id=user['id'],
            email=user['email'],
            full_name=user['full_name'],
            expires_at=tokens['access_expires_at'],
            persistent=persist_session,
        )
        self.logger.info(f"User signed in: {user['email']}")
        self._emit(SIGNED_IN, session)
        return session

    def get_session(self, access_token: str) -> Optional[Session]:
        """Return the live session for an access token, or None."""
        if not access_token:
            return None

        row = self._session_row('access_token_hash', self._hash(access_token))
        if not row:
            return None
        if datetime.fromisoformat(row['access_expires_at']) <= self.clock():
            return None

        # The refresh token is not recoverable from its hash
        return self._build_session(row, access_token, '')

    def refresh_session(self, refresh_token: str) -> Session:
        """
        Rotate both tokens of a session.

        Raises:
            AuthError: When the refresh token is unknown or its window has passed
        """
        row = self._session_row('refresh_token_hash', self._hash(refresh_token or ''))
        if not row or datetime.fromisoformat(row['refresh_expires_at']) <= self.clock():
            raise AuthError('Invalid Refresh Token: Refresh Token Not Found',
                            code=REFRESH_TOKEN_NOT_FOUND)

        persistent = bool(row['persistent'])
        tokens = self._issue_tokens(persistent)
        self.db.execute_update(
            """UPDATE auth_sessions
               SET access_token_hash = ?, refresh_token_hash = ?,
                   access_expires_at = ?, refresh_expires_at = ?
               WHERE id = ?""",
            (
                self._hash(tokens['access_token']),
                self._hash(tokens['refresh_token']),
                tokens['access_expires_at'].isoformat(),
                tokens['refresh_expires_at'].isoformat(),
                row['session_id'],
            )
        )

        row = dict(row, access_expires_at=tokens['access_expires_at'].isoformat())
        session = self._build_session(row, tokens['access_token'], tokens['refresh_token'])
        self._emit(TOKEN_REFRESHED, session)
        return session

    def sign_out(self, access_token: str) -> bool:
        """
        End the session owning the access token.

        Returns:
            bool: Whether a session was ended
        """
        row = self._session_row('access_token_hash', self._hash(access_token or ''))
        if not row:
            return False

        self.db.execute_update("DELETE FROM auth_sessions WHERE id = ?", (row['session_id'],))
        self.logger.info(f"User signed out: {row['email']}")
        self._emit(SIGNED_OUT, self._build_session(row, access_token, ''))
        return True

    def revoke_user_sessions(self, user_id: int) -> int:
        """
        End every session of a user, e.g. after a password change elsewhere.

        Returns:
            int: Number of sessions ended
        """
        rows = self.db.execute_query(
            """SELECT s.id AS session_id, s.user_id, s.access_expires_at,
                      s.refresh_expires_at, s.persistent, u.email, u.full_name
               FROM auth_sessions s JOIN users u ON u.id = s.user_id
               WHERE s.user_id = ?""",
            (user_id,)
        )
        self.db.execute_update("DELETE FROM auth_sessions WHERE user_id = ?", (user_id,))

        for row in rows:
            self._emit(SIGNED_OUT, self._build_session(row, '', ''))
        return len(rows)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        """Register a callback for session changes; delivery is synchronous."""
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove_subscription(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _emit(self, event: str, session: Session):
        with self._lock:
            subscriptions = list(self._subscriptions)

        for subscription in subscriptions:
            try:
                subscription.callback(event, session)
            except Exception as e:
                self.logger.error(f"Auth state listener failed on {event}: {str(e)}")

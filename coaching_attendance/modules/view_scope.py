"""
View Scope Module - Coaching Attendance System

Every rendered view (student roster, attendance marking) gets a lifetime
token. View state is stored against the token, and results of remote calls
are only applied while the token is live. Opening another view from the
same browser session ends the previous one.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
import logging
import secrets
import threading


class ViewScope:
    """Lifetime of one rendered view and the state it owns."""

    def __init__(self, token: str, owner: str, kind: str, state: Any, opened_at: datetime):
        self.token = token
        self.owner = owner
        self.kind = kind
        self.state = state
        self.opened_at = opened_at
        self.last_seen = opened_at
        self.live = True

    def end(self):
        self.live = False


class ViewScopeRegistry:
    """
    Issues view tokens and tracks which of them are still live.
    """

    def __init__(self, ttl: timedelta = timedelta(minutes=30),
                 clock: Callable[[], datetime] = datetime.now):
        self.ttl = ttl
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self._scopes: Dict[str, ViewScope] = {}
        self._current_by_owner: Dict[str, str] = {}
        self._lock = threading.Lock()

    def open(self, owner: str, kind: str, state: Any) -> ViewScope:
        """
        Open a view for an owner (browser session), ending its previous view.
        """
        now = self.clock()
        scope = ViewScope(secrets.token_urlsafe(16), owner, kind, state, now)

        with self._lock:
            self._expire(now)
            previous = self._current_by_owner.get(owner)
            if previous:
                self._end(previous)
            self._scopes[scope.token] = scope
            self._current_by_owner[owner] = scope.token

        return scope

    def get(self, token: str, owner: Optional[str] = None) -> Optional[ViewScope]:
        """Live scope for a token, or None. Touches the idle timer."""
        with self._lock:
            self._expire(self.clock())
            scope = self._scopes.get(token)
            if scope is None or (owner is not None and scope.owner != owner):
                return None
            scope.last_seen = self.clock()
            return scope

    def is_live(self, token: str) -> bool:
        with self._lock:
            scope = self._scopes.get(token)
            return scope is not None and scope.live

    def close(self, token: str, owner: Optional[str] = None) -> bool:
        with self._lock:
            scope = self._scopes.get(token)
            if scope is None or (owner is not None and scope.owner != owner):
                return False
            self._end(token)
            return True

    def close_owner(self, owner: str):
        """End every view of an owner, e.g. on sign-out."""
        with self._lock:
            for token in [t for t, s in self._scopes.items() if s.owner == owner]:
                self._end(token)

    def apply(self, token: str, update: Callable[[Any], Any]) -> bool:
        """
        Run an update against a view's state if the view is still live.

        Returns:
            bool: False when the response was discarded
        """
        with self._lock:
            scope = self._scopes.get(token)
            live = scope is not None and scope.live

        if not live:
            self.logger.debug(f"Discarded response for ended view {token}")
            return False

        update(scope.state)
        return True

    def _end(self, token: str):
        scope = self._scopes.pop(token, None)
        if scope is None:
            return
        scope.end()
        if self._current_by_owner.get(scope.owner) == token:
            del self._current_by_owner[scope.owner]

    def _expire(self, now: datetime):
        for token in [t for t, s in self._scopes.items() if now - s.last_seen > self.ttl]:
            self._end(token)

    def __len__(self):
        with self._lock:
            return len(self._scopes)

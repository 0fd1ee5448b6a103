"""
Error taxonomy for the Coaching Attendance System.

Every failure coming back from the data service is expressed as a
DataServiceError subclass. Managers catch these, log them and hand a
user-facing message back to the web layer through describe_error().
"""

import re
from typing import Optional

# Error codes surfaced by the data service
UNIQUE_VIOLATION = '23505'
FOREIGN_KEY_VIOLATION = '23503'
CHECK_VIOLATION = '23514'
GENERIC_DATABASE_ERROR = 'PGRST301'
UNKNOWN_COLUMN = 'PGRST204'

# Auth error codes
INVALID_CREDENTIALS = 'invalid_credentials'
REFRESH_TOKEN_NOT_FOUND = 'refresh_token_not_found'

OFFLINE_MESSAGE = 'You are offline. Please check your internet connection.'
CONNECTIVITY_MESSAGE = 'Unable to connect to the server. Please try again later.'
DATABASE_MESSAGE = 'Database error. Please try again.'
GENERIC_MESSAGE = 'An unexpected error occurred'

_CONNECTIVITY_PATTERNS = re.compile(
    r'failed to fetch|network|offline|unable to open|connection|database is locked|disk i/o',
    re.IGNORECASE
)


class DataServiceError(Exception):
    """Base class for errors reported by the data service."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self):
        return self.message


class ConnectivityError(DataServiceError):
    """The data service could not be reached."""

    def __init__(self, message: str = 'Failed to fetch', code: Optional[str] = None,
                 offline: bool = False):
        super().__init__(message, code)
        self.offline = offline


class AuthError(DataServiceError):
    """Raised by the identity provider for sign-in and session failures."""


class ConstraintViolationError(DataServiceError):
    """A write was rejected by a uniqueness constraint."""

    def __init__(self, message: str, code: str = UNIQUE_VIOLATION, constraint: Optional[str] = None):
        super().__init__(message, code)
        self.constraint = constraint


class ValidationError(Exception):
    """Input rejected before any call to the data service."""


class ConfigurationError(RuntimeError):
    """Required startup configuration is missing or malformed."""


def is_connectivity_error(error: BaseException) -> bool:
    """Check whether an error means the data service is unreachable."""
    if isinstance(error, ConnectivityError):
        return True
    return bool(_CONNECTIVITY_PATTERNS.search(str(error) or ''))


def error_type(error: BaseException) -> str:
    """Classify an error into the kinds used in manager results."""
    if isinstance(error, ValidationError):
        return 'validation'
    if is_connectivity_error(error):
        return 'connectivity'
    if isinstance(error, AuthError):
        return 'auth'
    if isinstance(error, ConstraintViolationError):
        return 'constraint'
    return 'remote'


def describe_error(error: BaseException, fallback: Optional[str] = None) -> str:
    """
    Map an error to the message shown to the user.

    Args:
        error: The caught exception
        fallback: Message for unclassified errors without a message of their own

    Returns:
        str: User-facing message
    """
    if isinstance(error, ValidationError):
        return str(error)

    if isinstance(error, ConnectivityError) and error.offline:
        return OFFLINE_MESSAGE

    if is_connectivity_error(error):
        return CONNECTIVITY_MESSAGE

    if isinstance(error, AuthError):
        if error.code == INVALID_CREDENTIALS or 'Invalid login credentials' in str(error):
            return 'Invalid email or password'
        if error.code == REFRESH_TOKEN_NOT_FOUND or REFRESH_TOKEN_NOT_FOUND in str(error):
            return 'Session expired. Please sign in again.'
        return 'An error occurred. Please try again.'

    if isinstance(error, DataServiceError) and error.code == GENERIC_DATABASE_ERROR:
        return DATABASE_MESSAGE

    return fallback or str(error) or GENERIC_MESSAGE

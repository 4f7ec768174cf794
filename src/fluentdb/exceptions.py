"""
Session error classes.

Every failure raised by the session engine is one of the classes below,
regardless of which vendor driver sits behind the session. Driver errors are
chained as ``__cause__`` and never escape untyped.
"""
import re

RETRYABLE_PATTERNS = [
    # SSL/TLS errors
    r'ssl',
    r'tls',
    # Connection drops
    r'connection.*(closed|reset|refused|lost|terminated|broken)',
    r'server closed',
    r'eof detected',
    r'broken pipe',
    r'connection reset',
    # Timeouts
    r'timeout',
    r'timed out',
    # Network issues
    r'could not connect',
    r'no route to host',
    r'network.*(unreachable|error)',
    r'host.*(unreachable|down)',
    # Database unavailable
    r'database.*unavailable',
    r'too many connections',
]

_RETRYABLE_REGEX = re.compile('|'.join(RETRYABLE_PATTERNS), re.IGNORECASE)


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception represents a transient error worth retrying.

    Returns True for errors that are likely transient and may succeed on retry:
    - SSL/TLS errors
    - Connection drops/resets
    - Timeouts
    - Network issues
    - Database temporarily unavailable

    Authentication failures, unknown databases and malformed connection
    strings are not retried.

    :param exc: The exception to check.
    :returns: True if the error is likely transient and worth retrying.
    """
    error_msg = str(exc).lower()
    return bool(_RETRYABLE_REGEX.search(error_msg))


class DatabaseSessionError(Exception):
    """Base class for all session errors.

    ``command_text`` holds the rendered SQL of the command that was bound
    when the error happened, or None when no command existed yet.
    """

    def __init__(self, message: str, command_text: str | None = None) -> None:
        super().__init__(message)
        self.command_text = command_text

    def __str__(self) -> str:
        message = super().__str__()
        if self.command_text:
            return f'{message}\nSQL:\n{self.command_text}'
        return message


class ProviderResolutionError(DatabaseSessionError):
    """No provider is registered under the requested identifier.
    """


class ConnectionError(DatabaseSessionError):
    """Error establishing or opening a database connection.
    """


class SessionStateError(DatabaseSessionError):
    """An operation was invoked out of sequence.
    """


class ParameterCreationError(DatabaseSessionError):
    """The driver could not manufacture or bind a parameter.
    """


class ExecutionError(DatabaseSessionError):
    """The driver call for a command failed.
    """


class TransactionStateError(DatabaseSessionError):
    """A transaction was completed after it left the active state.
    """

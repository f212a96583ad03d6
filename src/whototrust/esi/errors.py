"""Errors raised by the token authority, the request engine and the resolver.

Request failures are split into two variants. A TransientRequestError is
worth retrying after a backoff; a TerminalRequestError never is. Both are
created through the static constructors on RequestError so that a given HTTP
status always maps to the same error kind and message.
"""

from typing import Optional

TRANSIENT_STATUSES = frozenset((500, 503, 504))


class RequestError(Exception):
    """
    Base class for ESI request failures.

    Attributes:
        status: HTTP status of the failing response, None for transport failures
        message: Stable, human readable description of the error kind
    """

    def __init__(self, status: Optional[int], message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message

    @property
    def transient(self) -> bool:
        return False

    @staticmethod
    def bad_request() -> "TerminalRequestError":
        return TerminalRequestError(400, "error-esi-request-1400 Bad request")

    @staticmethod
    def unauthorized() -> "TerminalRequestError":
        return TerminalRequestError(401, "error-esi-request-1401 Unauthorized")

    @staticmethod
    def forbidden() -> "TerminalRequestError":
        return TerminalRequestError(403, "error-esi-request-1403 Forbidden")

    @staticmethod
    def not_found() -> "TerminalRequestError":
        return TerminalRequestError(404, "error-esi-request-1404 Not found")

    @staticmethod
    def method_not_allowed() -> "TerminalRequestError":
        return TerminalRequestError(405, "error-esi-request-1405 Method not allowed")

    @staticmethod
    def internal_server_error() -> "TransientRequestError":
        return TransientRequestError(500, "error-esi-request-1500 Internal server error")

    @staticmethod
    def bad_gateway() -> "TerminalRequestError":
        return TerminalRequestError(502, "error-esi-request-1502 Bad gateway")

    @staticmethod
    def service_unavailable() -> "TransientRequestError":
        return TransientRequestError(503, "error-esi-request-1503 Service unavailable")

    @staticmethod
    def gateway_timeout() -> "TransientRequestError":
        return TransientRequestError(504, "error-esi-request-1504 Gateway timeout")

    @staticmethod
    def failed_request(status: int) -> "TerminalRequestError":
        return TerminalRequestError(
            status, f"error-esi-request-1999 Failed request with status {status}"
        )

    @staticmethod
    def transport(msg: str = "") -> "TerminalRequestError":
        """The request never produced an HTTP response."""
        return TerminalRequestError(
            None, f"error-esi-request-1000 Transport failure: {msg}"
        )

    @staticmethod
    def from_status(status: int) -> "RequestError":
        """Map a non-success HTTP status to its error kind."""
        constructor = _STATUS_CONSTRUCTORS.get(status, None)
        if constructor is None:
            return RequestError.failed_request(status)
        return constructor()


class TransientRequestError(RequestError):
    """A failure that may succeed when retried (500, 503, 504)."""

    @property
    def transient(self) -> bool:
        return True


class TerminalRequestError(RequestError):
    """A failure that is never retried."""


_STATUS_CONSTRUCTORS = {
    400: RequestError.bad_request,
    401: RequestError.unauthorized,
    403: RequestError.forbidden,
    404: RequestError.not_found,
    405: RequestError.method_not_allowed,
    500: RequestError.internal_server_error,
    502: RequestError.bad_gateway,
    503: RequestError.service_unavailable,
    504: RequestError.gateway_timeout,
}


class AuthError(Exception):
    """
    Exception raised when the SSO token endpoint rejects an exchange or refresh.

    Attributes:
        status: HTTP status of the token endpoint response, None if no response
        body: Full response body as returned by the token endpoint
    """

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body

    @staticmethod
    def token_rejected(status: int, body: str) -> "AuthError":
        return AuthError(
            f"error-esi-auth-1000 Token endpoint returned status {status}",
            status=status,
            body=body,
        )

    @staticmethod
    def invalid_response(msg: str = "") -> "AuthError":
        return AuthError(f"error-esi-auth-1001 Invalid token response: {msg}")

    @staticmethod
    def transport(msg: str = "") -> "AuthError":
        return AuthError(f"error-esi-auth-1002 Token request failed: {msg}")

    @staticmethod
    def refresh_failed(cause: BaseException) -> "AuthError":
        """Wrap an error raised while refreshing a token after a 401."""
        status = getattr(cause, "status", None)
        body = getattr(cause, "body", "")
        return AuthError(
            f"error-esi-auth-1003 Unable to refresh token: {cause}",
            status=status,
            body=body,
        )

    @staticmethod
    def missing_refresh_token() -> "AuthError":
        return AuthError("error-esi-auth-1004 Credential has no refresh token")


class EntityNotFoundError(Exception):
    """A name search returned no usable match."""

    @staticmethod
    def no_match(category: str, name: str) -> "EntityNotFoundError":
        return EntityNotFoundError(
            f"error-esi-resolve-1000 No {category} found for {name!r}"
        )

    @staticmethod
    def ambiguous(category: str, name: str, count: int) -> "EntityNotFoundError":
        return EntityNotFoundError(
            f"error-esi-resolve-1001 {count} {category} results for {name!r}"
        )

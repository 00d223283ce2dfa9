"""Typed failures for the EMSG protocol core.

Every core operation raises one of these instead of a generic fault. Each
class carries the HTTP status the REST layer answers with, so the transport
boundary maps failures with a single exception handler.
"""


class EmsgError(Exception):
    status_code = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail or self.__class__.__name__

    @property
    def kind(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.detail}


# --- Categories ---


class FormatError(EmsgError):
    status_code = 400


class NotFoundError(EmsgError):
    status_code = 404


class AuthenticationError(EmsgError):
    status_code = 401


class ForbiddenError(EmsgError):
    status_code = 403


class ValidationError(EmsgError):
    status_code = 400


class NetworkError(EmsgError):
    status_code = 502


class ParseError(EmsgError):
    status_code = 502


class ConfigError(EmsgError):
    pass


# --- Format ---


class InvalidFormat(FormatError):
    pass


class MalformedEnvelope(FormatError):
    status_code = 401


class InvalidPublicKey(FormatError):
    pass


# --- Not found ---


class IdentityNotFound(NotFoundError):
    pass


class GroupNotFound(NotFoundError):
    pass


# --- Authentication ---


class StaleOrFutureTimestamp(AuthenticationError):
    pass


class UnknownIdentity(AuthenticationError):
    pass


class BadSignatureEncoding(AuthenticationError):
    pass


class SignatureMismatch(AuthenticationError):
    pass


class ReplayedNonce(AuthenticationError):
    pass


# --- Forbidden ---


class SenderMismatch(ForbiddenError):
    pass


class NotGroupAdmin(ForbiddenError):
    pass


# --- Validation ---


class MissingFields(ValidationError):
    pass


class AlreadyMember(ValidationError):
    status_code = 409


class NotMember(ValidationError):
    status_code = 409


class GroupExists(ValidationError):
    status_code = 409


class DuplicateMessage(ValidationError):
    status_code = 409


# --- Network ---


class LookupFailed(NetworkError):
    pass


class LookupTimedOut(NetworkError):
    status_code = 504


class NoRecord(NetworkError, NotFoundError):
    status_code = 404


# --- Parse ---


class UnparsableRecord(ParseError):
    pass


class RoutingFailed(EmsgError):
    """A multi-recipient route could not be built; wraps the first failure."""

    status_code = 400

    def __init__(self, detail: str = "", cause: EmsgError = None):
        super().__init__(detail)
        self.cause = cause

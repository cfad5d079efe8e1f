"""localcert errors."""
import typing
from typing import Any
from typing import List
from typing import Optional

from localcert import constants

# Imported for type checking only; localcert.relay imports this module.
if typing.TYPE_CHECKING:
    from localcert import capture  # pragma: no cover
    from localcert import relay  # pragma: no cover


class Error(Exception):
    """Generic localcert error."""


# ACME engine errors
class ProtocolError(Error):
    """An ACME operation failed.

    :ivar str operation: Short name of the failed operation.
    :ivar Exception cause: Error raised by the ACME engine, if any.

    """
    def __init__(self, operation: str, cause: Optional[BaseException] = None) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(operation, cause)

    def __str__(self) -> str:
        if self.cause is None:
            return self.operation
        return '{0}: {1}'.format(self.operation, self.cause)


class StaleAccountError(ProtocolError):
    """The ACME account exists but is no longer valid."""
    def __init__(self, uri: str, status: Any) -> None:
        self.uri = uri
        self.status = status
        super().__init__('account {0!r} status is {1!r}'.format(uri, str(status)))


class OrderInvalidError(ProtocolError):
    """The order became invalid.

    :ivar acme.messages.Error error: Error reported by the server, if any.

    """
    def __init__(self, uri: str, error: Any = None) -> None:
        self.uri = uri
        self.error = error
        super().__init__('order {0!r} is invalid'.format(uri), error)


class OrderTimeoutError(ProtocolError):
    """The order did not reach a terminal status before the deadline."""
    def __init__(self, uri: str, status: Any = None) -> None:
        self.uri = uri
        self.status = status
        super().__init__('order {0!r} still {1!r} at deadline'.format(uri, str(status)))


# Capture errors
class CaptureError(Error):
    """Signed request capture failed.

    This always means the ACME engine did not behave as expected and is
    never ignored.

    """


class ExpectedCaptureFailed(CaptureError):
    """The engine call completed without its request being captured.

    :ivar outcome: `.capture.Returned` or `.capture.TransportFailure`.

    """
    def __init__(self, target_url: str, outcome: 'capture.Outcome') -> None:
        self.target_url = target_url
        self.outcome = outcome
        super().__init__(target_url, outcome)

    def __str__(self) -> str:
        return 'request capture for {0} failed: {1!r}'.format(self.target_url, self.outcome)


class ContentTypeMismatch(CaptureError):
    """The captured request has an unexpected Content-Type."""
    def __init__(self, content_type: Optional[str]) -> None:
        self.content_type = content_type
        super().__init__(content_type)

    def __str__(self) -> str:
        return 'request content type {0!r} != {1!r}'.format(
            self.content_type, constants.JOSE_CONTENT_TYPE)


# Envelope errors
class EnvelopeError(Error):
    """Malformed signed request."""


class ExactlyOneSignatureRequired(EnvelopeError):
    """The signed request does not carry exactly one signature."""
    def __init__(self, count: int) -> None:
        self.count = count
        super().__init__('expected 1 signature got {0}'.format(count))


class MissingURL(EnvelopeError):
    """The protected header does not carry a string url."""
    def __init__(self, url: Any) -> None:
        self.url = url
        super().__init__('invalid url {0!r}'.format(url))


class SignatureInvalid(EnvelopeError):
    """Signature does not verify."""


# Relay errors
class RelayError(Error):
    """The localcert server returned an error response.

    :ivar int status_code: HTTP status code.
    :ivar .relay.Problem problem: Decoded problem document.

    """
    def __init__(self, status_code: int, problem: 'relay.Problem') -> None:
        self.status_code = status_code
        self.problem = problem
        super().__init__(status_code, problem)

    @property
    def category(self) -> str:
        """Machine-readable error category, e.g. ``malformed``."""
        return self.problem.category

    @property
    def detail(self) -> Optional[str]:
        """Human-readable detail."""
        return self.problem.detail

    @property
    def instance(self) -> Optional[str]:
        """Problem instance URI."""
        return self.problem.instance

    @property
    def subproblems(self) -> List[Any]:
        """Reserved; currently never populated by the server."""
        return list(self.problem.subproblems)

    def __str__(self) -> str:
        return '[{0}] {1!r}'.format(self.status_code, self.detail)


class RelayTransportError(Error):
    """The localcert server could not be reached."""


class RelayDecodeError(Error):
    """The localcert server response could not be decoded."""


class TermsNotAcceptedError(Error):
    """The ACME provider's terms of service have not been accepted.

    The caller is expected to obtain acceptance of :attr:`uri`, record it,
    and retry registration once.

    """
    def __init__(self, uri: str) -> None:
        self.uri = uri
        super().__init__(uri)

    def __str__(self) -> str:
        return 'terms not accepted: {0}'.format(self.uri)

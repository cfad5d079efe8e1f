"""Capture of signed requests produced by the ACME engine.

The engine signs and sends requests through a `requests.Session`. To get
an authentic signed request without reimplementing JWS signing, the
session's adapters are temporarily decorated with a `CapturingAdapter`
that records the request addressed to one exact URL and fails it instead
of sending it.

"""
import collections
import contextlib
import logging
from typing import Any
from typing import Callable
from typing import Iterator
from typing import Optional

import requests
from requests.adapters import BaseAdapter

from acme import client as acme_client
from acme import messages

from localcert import constants
from localcert import envelope
from localcert import errors

logger = logging.getLogger(__name__)


class RequestCaptured(Exception):
    """Raised by `CapturingAdapter` in place of sending the target request.

    Not a `requests.exceptions.RequestException`, so the ACME engine lets
    it propagate untouched.

    """
    def __init__(self, request: requests.PreparedRequest) -> None:
        self.request = request
        super().__init__(request.url)


class Outcome:
    """Result of an engine call made during a capture session."""


class Captured(Outcome):
    """The target request was captured and not sent."""
    def __init__(self, request: requests.PreparedRequest) -> None:
        self.request = request

    def __repr__(self) -> str:
        return 'Captured({0} {1})'.format(self.request.method, self.request.url)


class TransportFailure(Outcome):
    """The engine call failed for any reason other than the capture."""
    def __init__(self, error: Exception) -> None:
        self.error = error

    def __repr__(self) -> str:
        return 'TransportFailure({0!r})'.format(self.error)


class Returned(Outcome):
    """The engine call completed, i.e. the target was never requested."""
    def __init__(self, result: Any) -> None:
        self.result = result

    def __repr__(self) -> str:
        return 'Returned({0!r})'.format(self.result)


class Transport:
    """Owned handle on the adapters mounted on a `requests.Session`.

    :ivar requests.Session session: Session used by the ACME engine.

    """
    def __init__(self, session: requests.Session) -> None:
        self.session = session

    def mount(self, adapter: BaseAdapter) -> None:
        """Use `adapter` for all HTTP and HTTPS requests."""
        self.session.mount('http://', adapter)
        self.session.mount('https://', adapter)

    @contextlib.contextmanager
    def decorated(self, wrap: Callable[[BaseAdapter], BaseAdapter]) -> Iterator[None]:
        """Replace every mounted adapter by ``wrap(adapter)``.

        The previous adapter mapping is put back on exit, whatever the
        exit path.

        """
        previous = self.session.adapters
        self.session.adapters = collections.OrderedDict(
            (prefix, wrap(adapter)) for prefix, adapter in previous.items())
        try:
            yield
        finally:
            self.session.adapters = previous


class CapturingAdapter(BaseAdapter):
    """Adapter decorator capturing the request sent to `target_url`.

    URLs are compared as exact strings, after `requests` prepared them.
    Other requests are passed to `inner` unmodified.

    """
    def __init__(self, target_url: str, inner: BaseAdapter,
                 on_capture: Callable[[requests.PreparedRequest], None]) -> None:
        super().__init__()
        self.target_url = target_url
        self.inner = inner
        self.on_capture = on_capture

    def send(self, request: requests.PreparedRequest,  # type: ignore[override]
             **kwargs: Any) -> requests.Response:
        if request.url != self.target_url:
            logger.debug('Skipping capture: %r != %r', request.url, self.target_url)
            return self.inner.send(request, **kwargs)
        logger.debug('Capturing %s request to %s', request.method, request.url)
        self.on_capture(request)
        raise RequestCaptured(request)

    def close(self) -> None:
        # The inner adapter still belongs to the session.
        pass


class CaptureSession:
    """Single-use capture of the request sent to `target_url`.

    Only one session may be active on a given transport at a time.

    """
    def __init__(self, transport: Transport, target_url: str) -> None:
        self.transport = transport
        self.target_url = target_url
        self.captured: Optional[requests.PreparedRequest] = None
        self._stack: Optional[contextlib.ExitStack] = None
        self._used = False

    @property
    def active(self) -> bool:
        """Is the capturing adapter installed?"""
        return self._stack is not None

    def begin(self) -> None:
        """Install the capturing adapter in front of the current ones."""
        if self._used:
            raise errors.CaptureError('capture session already used')
        self._used = True
        stack = contextlib.ExitStack()
        stack.enter_context(self.transport.decorated(
            lambda inner: CapturingAdapter(self.target_url, inner, self._record)))
        self._stack = stack

    def end(self) -> None:
        """Restore the previous adapters."""
        if self._stack is not None:
            stack, self._stack = self._stack, None
            stack.close()

    def __enter__(self) -> 'CaptureSession':
        self.begin()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.end()

    def _record(self, request: requests.PreparedRequest) -> None:
        self.captured = request

    def invoke(self, func: Callable[[], Any]) -> Outcome:
        """Call `func` and classify how it ended."""
        try:
            result = func()
        except RequestCaptured as error:
            if self.captured is not None and error.request is self.captured:
                return Captured(error.request)
            return TransportFailure(error)
        except Exception as error:  # pylint: disable=broad-except
            return TransportFailure(error)
        return Returned(result)


def capture_and_verify(transport: Transport, target_url: str,
                       func: Callable[[], Any]) -> bytes:
    """Capture the signed request that `func` sends to `target_url`.

    :param .Transport transport: Transport used by the engine.
    :param str target_url: URL the request is expected to target.
    :param callable func: Engine call expected to send that request.

    :returns: Signed request body.
    :rtype: bytes

    :raises .ExpectedCaptureFailed: if `func` did not fail with the capture.
    :raises .ContentTypeMismatch: on an unexpected request Content-Type.
    :raises .EnvelopeError: if the body is not a valid signed request.

    """
    with CaptureSession(transport, target_url) as session:
        outcome = session.invoke(func)

    if not isinstance(outcome, Captured):
        raise errors.ExpectedCaptureFailed(target_url, outcome)

    content_type = outcome.request.headers.get('Content-Type')
    if content_type != constants.JOSE_CONTENT_TYPE:
        raise errors.ContentTypeMismatch(content_type)

    body = outcome.request.body
    if isinstance(body, str):
        body = body.encode('utf-8')
    if body is None:
        body = b''
    envelope.parse(body)
    return body


def capture_account_request(acme: acme_client.ClientV2,
                            transport: Optional[Transport] = None) -> bytes:
    """Capture an account lookup signed by the account key.

    The request is the ``onlyReturnExisting`` query posted to the
    directory's ``newAccount`` URL, signed with the ``jwk`` of the key.

    :param acme.client.ClientV2 acme: ACME engine.
    :param .Transport transport: Transport over the engine's session,
        created on the fly if not given.

    """
    if transport is None:
        transport = Transport(acme.net.session)
    target_url = acme.directory['newAccount']
    account = acme.net.account
    lookup = messages.RegistrationResource(body=messages.Registration())
    try:
        return capture_and_verify(transport, target_url,
                                  lambda: acme.query_registration(lookup))
    finally:
        # The engine drops the account while looking it up.
        acme.net.account = account


def capture_authorization_request(acme: acme_client.ClientV2, authz_url: str,
                                  transport: Optional[Transport] = None) -> bytes:
    """Capture the POST-as-GET fetch of the authorization at `authz_url`."""
    if transport is None:
        transport = Transport(acme.net.session)
    authzr = messages.AuthorizationResource(uri=authz_url, body=messages.Authorization())
    return capture_and_verify(transport, authz_url,
                              lambda: acme.poll(authzr))

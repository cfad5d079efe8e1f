"""localcert server (relay) protocol."""
import base64
import binascii
import logging
from typing import Any
from typing import Tuple
from typing import Type
from typing import TypeVar

import josepy as jose
import requests

from localcert import constants
from localcert import errors

logger = logging.getLogger(__name__)

T = TypeVar('T', bound=jose.JSONObjectWithFields)


def encode_bytes(value: bytes) -> str:
    """Encode raw bytes as standard, padded base64."""
    return base64.b64encode(value).decode('ascii')


def decode_bytes(value: str) -> bytes:
    """Decode standard base64."""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, TypeError, ValueError) as error:
        raise jose.DeserializationError(error)


def decode_string(value: Any) -> str:
    """Require a JSON string."""
    if not isinstance(value, str):
        raise jose.DeserializationError('expected a string, got {0!r}'.format(value))
    return value


class DomainRequest(jose.JSONObjectWithFields):
    """Request for a new localcert domain.

    :ivar bytes account_request: Signed account lookup (see
        `.capture.capture_account_request`).

    """
    account_request: bytes = jose.field(
        'signedAccountRequest', encoder=encode_bytes, decoder=decode_bytes)


class DomainResult(jose.JSONObjectWithFields):
    """Domain assigned by the localcert server."""
    domain: str = jose.field('localcertDomain', decoder=decode_string)


class ProvisionRequest(jose.JSONObjectWithFields):
    """Request to provision the DNS-01 challenge of an authorization.

    :ivar josepy.JWK public_key: Account public key.
    :ivar bytes authorization_request: Signed authorization fetch (see
        `.capture.capture_authorization_request`).

    """
    public_key: jose.JWK = jose.field('accountPublicKey', decoder=jose.JWK.from_json)
    authorization_request: bytes = jose.field(
        'signedAuthorizationRequest', encoder=encode_bytes, decoder=decode_bytes)


class ProvisionResult(jose.JSONObjectWithFields):
    """Provisioned authorization and challenge."""
    authorization_url: str = jose.field('authorizationURL', decoder=decode_string)
    provisioned_challenge_url: str = jose.field(
        'provisionedChallengeURL', decoder=decode_string)


class Problem(jose.JSONObjectWithFields):
    """Error document of a non-2xx localcert server response."""
    typ: str = jose.field('type', omitempty=True)
    detail: str = jose.field('detail', omitempty=True)
    instance: str = jose.field('instance', omitempty=True)
    # Declared by the server but never populated.
    subproblems: Tuple[Any, ...] = jose.field('subproblems', omitempty=True, default=())

    @subproblems.decoder  # type: ignore[no-redef,attr-defined,union-attr]
    def subproblems(value: Any) -> Tuple[Any, ...]:  # type: ignore[misc]  # pylint: disable=no-self-argument,missing-function-docstring
        return tuple(value or ())

    @property
    def category(self) -> str:
        """Lowercased suffix of `typ` after ``:acme:error:``, or ``''``."""
        if not isinstance(self.typ, str):
            return ''
        parts = self.typ.split(constants.ACME_ERROR_MARKER)
        if len(parts) != 2:
            return ''
        return parts[1].lower()

    @classmethod
    def from_response(cls, response: requests.Response) -> 'Problem':
        """Decode the problem carried by `response`."""
        try:
            return cls.from_json(response.json())
        except (jose.DeserializationError, AttributeError, TypeError, ValueError) as error:
            return cls(detail='<error decoding body: {0}>'.format(error))


class RelayClient:
    """Client of the localcert server.

    :ivar str server_url: Base URL, without trailing slash.
    :ivar requests.Session session: Session shared with the ACME engine.

    """
    def __init__(self, server_url: str, session: requests.Session,
                 user_agent: str = constants.DEFAULT_USER_AGENT,
                 timeout: int = constants.DEFAULT_NETWORK_TIMEOUT,
                 verify_ssl: bool = True) -> None:
        self.server_url = server_url
        self.session = session
        self.user_agent = user_agent
        self.timeout = timeout
        self.verify_ssl = verify_ssl

    def post(self, path: str, request: jose.JSONObjectWithFields, result_cls: Type[T]) -> T:
        """POST `request` as JSON and decode the response as `result_cls`.

        :raises .RelayTransportError: if the server could not be reached.
        :raises .RelayError: on an HTTP error status.
        :raises .RelayDecodeError: if the response body can't be decoded.

        """
        url = self.server_url + path
        logger.debug('Sending POST request to %s', url)
        try:
            response = self.session.post(
                url, data=request.json_dumps(),
                headers={'Content-Type': constants.JSON_CONTENT_TYPE,
                         'User-Agent': self.user_agent},
                timeout=self.timeout, verify=self.verify_ssl)
        except requests.exceptions.RequestException as error:
            raise errors.RelayTransportError('{0}: {1}'.format(url, error))
        logger.debug('Received response:\nHTTP %d\n%s', response.status_code, response.text)

        if response.status_code >= 400:
            raise errors.RelayError(response.status_code, Problem.from_response(response))
        try:
            return result_cls.json_loads(response.content)
        except (jose.DeserializationError, TypeError, ValueError) as error:
            raise errors.RelayDecodeError('{0}: json decode: {1}'.format(url, error))

    def domain(self, account_request: bytes) -> str:
        """Exchange a signed account lookup for a localcert domain."""
        result = self.post(constants.DOMAIN_PATH,
                           DomainRequest(account_request=account_request), DomainResult)
        return result.domain

    def provision(self, public_key: jose.JWK, authorization_request: bytes,
                  ) -> ProvisionResult:
        """Have the server provision the DNS-01 challenge of an authorization.

        :param josepy.JWK public_key: Account public key.
        :param bytes authorization_request: Signed authorization fetch.

        """
        return self.post(constants.PROVISION_PATH,
                         ProvisionRequest(public_key=public_key,
                                          authorization_request=authorization_request),
                         ProvisionResult)

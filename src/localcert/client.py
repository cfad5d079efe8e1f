"""localcert client API."""
import datetime
import enum
import logging
import os
from typing import Callable
from typing import List
from typing import Mapping
from typing import Optional
from typing import Tuple

import josepy as jose
import requests
from requests.adapters import BaseAdapter

from acme import client as acme_client
from acme import errors as acme_errors
from acme import messages

from localcert import capture
from localcert import constants
from localcert import crypto_util
from localcert import errors
from localcert import orders
from localcert import relay

logger = logging.getLogger(__name__)

# Failures of the ACME engine and of the transport below it.
ACME_ERRORS = (acme_errors.Error, messages.Error, jose.DeserializationError,
               requests.exceptions.RequestException, ValueError)


class Config:
    """localcert client configuration.

    :ivar josepy.JWK account_key: ACME account private key.
    :ivar str directory_url: ACME directory URL.
    :ivar str server_url: localcert server URL.
    :ivar str user_agent: User-Agent of every request.
    :ivar bool verify_ssl: Whether to verify TLS certificates.
    :ivar int timeout: Timeout of a single HTTP round trip, in seconds.
    :ivar int poll_timeout: Deadline of order polling and finalization, in seconds.
    :ivar adapter: `requests` adapter used for all requests, if not the default.

    """
    def __init__(self, account_key: jose.JWK,
                 directory_url: str = constants.LETS_ENCRYPT_URL,
                 server_url: str = constants.DEFAULT_SERVER_URL,
                 user_agent: Optional[str] = None,
                 verify_ssl: bool = True,
                 timeout: int = constants.DEFAULT_NETWORK_TIMEOUT,
                 poll_timeout: int = constants.DEFAULT_POLL_TIMEOUT,
                 adapter: Optional[BaseAdapter] = None) -> None:
        self.account_key = account_key
        self.directory_url = directory_url
        self.server_url = server_url
        self.user_agent = user_agent or constants.DEFAULT_USER_AGENT
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.poll_timeout = poll_timeout
        self.adapter = adapter

    @classmethod
    def from_environ(cls, account_key: jose.JWK,
                     environ: Optional[Mapping[str, str]] = None, **kwargs) -> 'Config':
        """Configuration with URLs and User-Agent overridden from the environment."""
        if environ is None:
            environ = os.environ
        for name, var in (('server_url', constants.ENV_SERVER_URL),
                          ('directory_url', constants.ENV_DIRECTORY_URL),
                          ('user_agent', constants.ENV_USER_AGENT)):
            if environ.get(var):
                kwargs.setdefault(name, environ[var])
        return cls(account_key, **kwargs)


def acme_from_config(config: Config, regr: Optional[messages.RegistrationResource] = None
                     ) -> acme_client.ClientV2:
    """Wrangle ACME client construction"""
    net = acme_client.ClientNetwork(
        config.account_key, alg=crypto_util.signature_alg(config.account_key),
        account=regr, verify_ssl=config.verify_ssl,
        user_agent=config.user_agent, timeout=config.timeout)
    if config.adapter is not None:
        capture.Transport(net.session).mount(config.adapter)
    directory = acme_client.ClientV2.get_directory(config.directory_url, net)
    return acme_client.ClientV2(directory, net)


class AccountIdentity:
    """ACME account as persisted by the caller.

    :ivar str key_id: Account URL, empty until registered.
    :ivar str accepted_terms: Terms of service URI the user accepted.

    """
    def __init__(self, key_id: str = '', accepted_terms: str = '') -> None:
        self.key_id = key_id
        self.accepted_terms = accepted_terms

    def __repr__(self) -> str:
        return 'AccountIdentity(key_id={0!r}, accepted_terms={1!r})'.format(
            self.key_id, self.accepted_terms)


class State(enum.Enum):
    """Progress of a `Client` towards an issued certificate."""
    NO_ACCOUNT = 'no-account'
    REGISTERING = 'registering'
    REGISTERED = 'registered'
    DOMAIN_ACQUIRED = 'domain-acquired'
    PROVISIONING = 'provisioning'
    CHALLENGE_ACCEPTED = 'challenge-accepted'
    POLLING = 'polling'
    VALID = 'valid'
    INVALID = 'invalid'
    FINALIZING = 'finalizing'
    ISSUED = 'issued'


class Client:
    """localcert client.

    Operations are strictly sequential: a client must not be used by more
    than one operation at a time.

    :ivar .Config config: Client configuration.
    :ivar acme.client.ClientV2 acme: ACME client API handle.
    :ivar .Transport transport: Adapters of the ACME client session, used
        for request capture.
    :ivar .RelayClient relay: localcert server client.
    :ivar .State state: Current state.

    """
    def __init__(self, config: Config, acme: Optional[acme_client.ClientV2] = None) -> None:
        self.config = config
        if acme is None:
            try:
                acme = acme_from_config(config)
            except ACME_ERRORS as error:
                raise errors.ProtocolError('discover', error)
        self.acme = acme
        self.transport = capture.Transport(acme.net.session)
        self.relay = relay.RelayClient(
            config.server_url, acme.net.session, user_agent=config.user_agent,
            timeout=config.timeout, verify_ssl=config.verify_ssl)
        self.state = State.NO_ACCOUNT

    def _transition(self, state: State) -> None:
        logger.debug('State %s -> %s', self.state.value, state.value)
        self.state = state

    def _deadline(self) -> datetime.datetime:
        return datetime.datetime.now() + datetime.timedelta(seconds=self.config.poll_timeout)

    def ensure_registration(self, accepted_terms: str, key_id: str = ''
                            ) -> messages.RegistrationResource:
        """Register a new account or check the existing one.

        :param str accepted_terms: Terms of service URI already accepted.
        :param str key_id: Existing account URL, empty to register.

        :raises .TermsNotAcceptedError: if the provider's terms of service
            differ from `accepted_terms` (new accounts only).
        :raises .StaleAccountError: if the existing account is not valid.
        :raises .ProtocolError: on any other ACME failure.

        """
        self._transition(State.REGISTERING)
        if not key_id:
            terms = self.acme.directory.meta.terms_of_service
            if terms and terms != accepted_terms:
                self._transition(State.NO_ACCOUNT)
                raise errors.TermsNotAcceptedError(terms)
            regr = self._register()
        else:
            regr = self._get_account(key_id)
            # Registration.status is not decoded into a messages.Status.
            if getattr(regr.body.status, 'name', regr.body.status) != messages.STATUS_VALID.name:
                self._transition(State.NO_ACCOUNT)
                raise errors.StaleAccountError(regr.uri, regr.body.status)
        self._transition(State.REGISTERED)
        logger.info('Using ACME account %s', regr.uri)
        return regr

    def _register(self) -> messages.RegistrationResource:
        new_reg = messages.NewRegistration.from_data(terms_of_service_agreed=True)
        # New account requests are signed with the key, not a key ID.
        self.acme.net.account = None
        try:
            return self.acme.new_account(new_reg)
        except acme_errors.ConflictError as error:
            logger.debug('Account already exists for this key at %s', error.location)
            return self._get_account(error.location)
        except ACME_ERRORS as error:
            self._transition(State.NO_ACCOUNT)
            raise errors.ProtocolError('register', error)

    def _get_account(self, key_id: str) -> messages.RegistrationResource:
        regr = messages.RegistrationResource(uri=key_id, body=messages.Registration())
        try:
            return self.acme.query_registration(regr)
        except ACME_ERRORS as error:
            self._transition(State.NO_ACCOUNT)
            raise errors.ProtocolError('account', error)

    def register(self, identity: AccountIdentity,
                 tos_cb: Optional[Callable[[str], None]] = None
                 ) -> messages.RegistrationResource:
        """Ensure registration, asking for terms acceptance at most once.

        :param .AccountIdentity identity: Updated with the accepted terms
            and the account URL.
        :param tos_cb: Called with the terms of service URI when they must
            be accepted; raises to reject them. Terms are accepted
            automatically if not supplied.

        """
        try:
            regr = self.ensure_registration(identity.accepted_terms, identity.key_id)
        except errors.TermsNotAcceptedError as error:
            if tos_cb is not None:
                tos_cb(error.uri)
            identity.accepted_terms = error.uri
            regr = self.ensure_registration(identity.accepted_terms, identity.key_id)
        identity.key_id = regr.uri
        return regr

    def get_domain(self) -> str:
        """Get a new localcert domain for the account key."""
        account_request = capture.capture_account_request(self.acme, self.transport)
        domain = self.relay.domain(account_request)
        self._transition(State.DOMAIN_ACQUIRED)
        logger.info('Got localcert domain %s', domain)
        return domain

    def provision_domain(self, domain: str) -> messages.OrderResource:
        """Order a certificate for `domain` and have it validated.

        On failure the client is left in `State.INVALID`.

        :returns: The order, ready to be finalized.
        :rtype: acme.messages.OrderResource

        """
        self._transition(State.PROVISIONING)
        try:
            return self._provision(domain)
        except errors.Error:
            self._transition(State.INVALID)
            raise

    def _provision(self, domain: str) -> messages.OrderResource:
        try:
            orderr = orders.authorize_order(self.acme, [orders.dns_identifier(domain)])
        except ACME_ERRORS as error:
            raise errors.ProtocolError('new order', error)
        if not orderr.body.authorizations:
            raise errors.ProtocolError('new order: no authorization for {0}'.format(domain))

        authz_url = orderr.body.authorizations[0]
        authorization_request = capture.capture_authorization_request(
            self.acme, authz_url, self.transport)
        result = self.relay.provision(self.acme.net.key.public_key(), authorization_request)
        logger.debug('Provisioned challenge %s for authorization %s',
                     result.provisioned_challenge_url, result.authorization_url)

        try:
            orders.accept_challenge(self.acme, result.provisioned_challenge_url)
        except ACME_ERRORS as error:
            raise errors.ProtocolError('challenge accept', error)
        self._transition(State.CHALLENGE_ACCEPTED)

        self._transition(State.POLLING)
        try:
            orderr = orders.wait_for_order(self.acme, orderr, self._deadline())
        except (errors.ProtocolError,) + ACME_ERRORS as error:
            self._log_challenge_error(result.provisioned_challenge_url)
            if isinstance(error, errors.ProtocolError):
                raise
            raise errors.ProtocolError('order wait', error)
        self._transition(State.VALID)
        return orderr

    def _log_challenge_error(self, challenge_url: str) -> None:
        try:
            challb = orders.get_challenge(self.acme, challenge_url)
        except Exception as error:  # pylint: disable=broad-except
            logger.debug('Unable to fetch challenge %s: %s', challenge_url, error)
            return
        if challb.error is None:
            logger.debug('Challenge %s is %s', challenge_url, challb.status)
            return
        logger.warning('Challenge error: %s', challb.error)

    def get_certificate(self, orderr: messages.OrderResource,
                        certificate_key: crypto_util.PrivateKey) -> List[bytes]:
        """Finalize the order and download the certificate.

        On failure the client is left in `State.INVALID`.

        :param acme.messages.OrderResource orderr: Order returned by
            `provision_domain`.
        :param certificate_key: Private key of the certificate.

        :returns: DER-encoded certificate chain, leaf first.
        :rtype: list

        """
        self._transition(State.FINALIZING)
        try:
            return self._finalize(orderr, certificate_key)
        except errors.Error:
            self._transition(State.INVALID)
            raise

    def _finalize(self, orderr: messages.OrderResource,
                  certificate_key: crypto_util.PrivateKey) -> List[bytes]:
        domain = orderr.body.identifiers[0].value
        csr_pem = crypto_util.make_csr(certificate_key, domain)
        try:
            orderr = self.acme.finalize_order(orderr.update(csr_pem=csr_pem), self._deadline())
        except acme_errors.TimeoutError:
            raise errors.OrderTimeoutError(orderr.uri, messages.STATUS_PROCESSING)
        except acme_errors.IssuanceError as error:
            raise errors.OrderInvalidError(orderr.uri, error.error)
        except ACME_ERRORS as error:
            raise errors.ProtocolError('finalize', error)
        chain = crypto_util.chain_from_fullchain(orderr.fullchain_pem)
        self._transition(State.ISSUED)
        logger.info('Certificate issued for %s', domain)
        return chain

    def obtain_certificate(self, identity: AccountIdentity,
                           certificate_key: crypto_util.PrivateKey,
                           domain: Optional[str] = None,
                           tos_cb: Optional[Callable[[str], None]] = None
                           ) -> Tuple[str, List[bytes]]:
        """Register if needed, then provision and issue a certificate.

        :param .AccountIdentity identity: Account, updated on registration.
        :param certificate_key: Private key of the certificate.
        :param str domain: Domain of the certificate being renewed, if any.
        :param tos_cb: See `register`.

        :returns: Domain and DER-encoded certificate chain, leaf first.

        """
        self.register(identity, tos_cb)
        if not domain:
            domain = self.get_domain()
        logger.info('Provisioning domain %s', domain)
        orderr = self.provision_domain(domain)
        return domain, self.get_certificate(orderr, certificate_key)

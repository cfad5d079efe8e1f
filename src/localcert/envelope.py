"""Signed ACME request envelopes.

An envelope is the JWS body of a request produced by the ACME engine. The
localcert server replays it to the ACME provider, so it must be exactly the
bytes the engine signed.

"""
import logging
from typing import Optional
from typing import Union

import josepy as jose

from acme import jws

from localcert import errors

logger = logging.getLogger(__name__)


class SignedEnvelope(jose.ImmutableMap):
    """Parsed signed request.

    :ivar bytes raw: Body exactly as produced by the engine.
    :ivar str url: ``url`` from the protected header.
    :ivar str kid: Key ID (account URL), ``None`` for ``jwk`` requests.
    :ivar acme.jws.JWS jws: Parsed JWS.

    """
    __slots__ = ('raw', 'url', 'kid', 'jws')

    @property
    def signature_count(self) -> int:
        """Number of signatures, always 1 for a parsed envelope."""
        return len(self.jws.signatures)

    def unverified_payload(self) -> bytes:
        """Payload without any signature verification.

        The content must not be trusted until :meth:`verify` succeeds.

        """
        return self.jws.payload

    def verify(self, key: jose.JWK) -> None:
        """Verify the signature.

        :param josepy.JWK key: Public (or private) key of the signer.

        :raises .SignatureInvalid: if the signature does not verify.

        """
        try:
            valid = self.jws.verify(key)
        except (jose.Error, TypeError, ValueError) as error:
            raise errors.SignatureInvalid(str(error))
        if not valid:
            raise errors.SignatureInvalid('signature verification failed')


def parse(raw: Union[bytes, str]) -> SignedEnvelope:
    """Parse and validate a signed request body.

    :param raw: JWS in JSON serialization (flattened or general).

    :raises .EnvelopeError: if the body is not a JWS.
    :raises .ExactlyOneSignatureRequired: if it has zero or several signatures.
    :raises .MissingURL: if the protected header has no string ``url``.

    """
    if isinstance(raw, str):
        raw = raw.encode('utf-8')
    try:
        parsed = jws.JWS.json_loads(raw)
    except (jose.Error, AssertionError, AttributeError, KeyError, TypeError,
            ValueError) as error:
        raise errors.EnvelopeError('parse jws: {0}'.format(error))

    if len(parsed.signatures) != 1:
        raise errors.ExactlyOneSignatureRequired(len(parsed.signatures))
    signature = parsed.signatures[0]

    url = _protected_url(signature)
    if not isinstance(url, str):
        raise errors.MissingURL(url)

    return SignedEnvelope(raw=raw, url=url, kid=signature.combined.kid, jws=parsed)


def _protected_url(signature: jws.Signature) -> Optional[str]:
    if not signature.protected:
        return None
    try:
        protected = jws.Header.json_loads(signature.protected)
    except (jose.Error, ValueError) as error:
        raise errors.EnvelopeError('protected header: {0}'.format(error))
    return protected.url

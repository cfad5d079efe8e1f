"""localcert crypto utility functions."""
import datetime
import logging
import re
from typing import List
from typing import Optional
from typing import Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID
import josepy as jose

from localcert import constants
from localcert import errors

logger = logging.getLogger(__name__)

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]

# Finds one CERTIFICATE stricttextualmsg according to rfc7468#section-3.
CERT_PEM_REGEX = re.compile(
    b"""-----BEGIN CERTIFICATE-----\r?
.+?\r?
-----END CERTIFICATE-----\r?
""",
    re.DOTALL
)


def jwk_for_key(private_key: PrivateKey) -> jose.JWK:
    """Wrap a `cryptography` private key in the matching JWK."""
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return jose.JWKEC(key=private_key)
    if isinstance(private_key, rsa.RSAPrivateKey):
        return jose.JWKRSA(key=jose.ComparableRSAKey(private_key))
    raise errors.Error('Unsupported account key type: {0}'.format(type(private_key)))


def signature_alg(key: jose.JWK) -> jose.JWASignature:
    """Choose the JWS algorithm for an account key."""
    if key.typ == 'EC':
        key_size = key.key.key_size
        if key_size == 256:
            return jose.ES256
        elif key_size == 384:
            return jose.ES384
        elif key_size == 521:
            return jose.ES512
        raise errors.Error('No matching signing algorithm can be found for the key')
    return jose.RS256


def make_csr(private_key: PrivateKey, domain: str) -> bytes:
    """Generate a CSR for `domain`.

    `domain` is both the subject common name and the only subjectAltName.

    :returns: PEM-encoded Certificate Signing Request.
    :rtype: bytes

    """
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)]))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
        .sign(private_key, hashes.SHA256())
    )
    return csr.public_bytes(Encoding.PEM)


def chain_from_fullchain(fullchain_pem: Union[bytes, str]) -> List[bytes]:
    """Split a PEM full chain into DER certificates, leaf first.

    :raises .Error: if the chain contains no certificate.

    """
    if isinstance(fullchain_pem, str):
        fullchain_pem = fullchain_pem.encode()
    chain = [x509.load_pem_x509_certificate(cert_pem).public_bytes(Encoding.DER)
             for cert_pem in CERT_PEM_REGEX.findall(fullchain_pem)]
    if not chain:
        raise errors.Error('failed to parse fullchain: no certificate found')
    return chain


def certificate_domain(cert_der: bytes) -> str:
    """Subject common name of a DER certificate."""
    cert = x509.load_der_x509_certificate(cert_der)
    names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not names:
        raise errors.Error('certificate has no common name')
    return str(names[0].value)


def needs_renewal(cert_der: bytes, now: Optional[datetime.datetime] = None,
                  renew_before: datetime.timedelta = constants.RENEW_BEFORE_EXPIRY) -> bool:
    """Does the certificate expire within `renew_before`?"""
    cert = x509.load_der_x509_certificate(cert_der)
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    expires_in = cert.not_valid_after_utc - now
    if expires_in <= datetime.timedelta(0):
        logger.info('Certificate for %s is expired', certificate_domain(cert_der))
        return True
    return expires_in < renew_before

"""Tests for localcert.envelope."""
import json
import sys
import unittest

import josepy as jose
import pytest

from localcert import errors
from localcert._internal.tests import test_util


class ParseTest(unittest.TestCase):
    """Tests for localcert.envelope.parse."""

    def setUp(self):
        self.raw = test_util.signed_request(
            b'{"status": "valid"}', url='https://acme.test/acct/1',
            kid='https://acme.test/acct/1')

    def _call(self, raw):
        from localcert.envelope import parse
        return parse(raw)

    def test_flattened(self):
        signed = self._call(self.raw)
        assert signed.raw == self.raw
        assert signed.url == 'https://acme.test/acct/1'
        assert signed.kid == 'https://acme.test/acct/1'
        assert signed.signature_count == 1
        assert signed.unverified_payload() == b'{"status": "valid"}'

    def test_str(self):
        assert self._call(self.raw.decode()).raw == self.raw

    def test_general_single_signature(self):
        signed = self._call(test_util.multi_signed_request(1))
        assert signed.url == 'https://acme.test/resource'

    def test_jwk_request_has_no_kid(self):
        assert self._call(test_util.signed_request()).kid is None

    def test_two_signatures(self):
        with pytest.raises(errors.ExactlyOneSignatureRequired) as exc_info:
            self._call(test_util.multi_signed_request(2))
        assert exc_info.value.count == 2
        assert 'expected 1 signature got 2' in str(exc_info.value)

    def test_no_signature(self):
        raw = json.dumps({'payload': jose.encode_b64jose(b'{}'), 'signatures': []})
        with pytest.raises(errors.ExactlyOneSignatureRequired):
            self._call(raw)

    def test_missing_url(self):
        with pytest.raises(errors.MissingURL):
            self._call(test_util.signed_request(url=None))

    def test_not_json(self):
        with pytest.raises(errors.EnvelopeError):
            self._call(b'not a jws')

    def test_not_a_jws(self):
        with pytest.raises(errors.EnvelopeError):
            self._call(b'{"foo": "bar"}')


class SignedEnvelopeTest(unittest.TestCase):
    """Tests for localcert.envelope.SignedEnvelope."""

    def setUp(self):
        from localcert.envelope import parse
        self.signed = parse(test_util.signed_request())

    def test_verify(self):
        self.signed.verify(test_util.account_jwk().public_key())

    def test_verify_wrong_key(self):
        with pytest.raises(errors.SignatureInvalid):
            self.signed.verify(test_util.account_jwk('other').public_key())

    def test_verify_tampered(self):
        from localcert.envelope import parse
        jobj = json.loads(self.signed.raw)
        jobj['payload'] = jose.encode_b64jose(b'{"tampered": true}')
        with pytest.raises(errors.SignatureInvalid):
            parse(json.dumps(jobj)).verify(test_util.account_jwk().public_key())


if __name__ == '__main__':
    sys.exit(pytest.main(sys.argv[1:] + [__file__]))  # pragma: no cover

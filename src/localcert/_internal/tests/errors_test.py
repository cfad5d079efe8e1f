"""Tests for localcert.errors."""
import sys
import unittest
from unittest import mock

import pytest

from localcert import relay


class ProtocolErrorTest(unittest.TestCase):
    """Tests for localcert.errors.ProtocolError."""

    def test_str(self):
        from localcert.errors import ProtocolError
        assert 'finalize: boom' == str(ProtocolError('finalize', ValueError('boom')))
        assert 'finalize' == str(ProtocolError('finalize'))


class ExactlyOneSignatureRequiredTest(unittest.TestCase):
    """Tests for localcert.errors.ExactlyOneSignatureRequired."""

    def test_str(self):
        from localcert.errors import ExactlyOneSignatureRequired
        error = ExactlyOneSignatureRequired(2)
        assert error.count == 2
        assert 'expected 1 signature got 2' == str(error)


class ExpectedCaptureFailedTest(unittest.TestCase):
    """Tests for localcert.errors.ExpectedCaptureFailed."""

    def test_str(self):
        from localcert.errors import ExpectedCaptureFailed
        error = ExpectedCaptureFailed('https://acme.test/x', mock.sentinel.outcome)
        assert 'https://acme.test/x' in str(error)
        assert 'sentinel.outcome' in str(error)


class ContentTypeMismatchTest(unittest.TestCase):
    """Tests for localcert.errors.ContentTypeMismatch."""

    def test_str(self):
        from localcert.errors import ContentTypeMismatch
        assert "'text/plain'" in str(ContentTypeMismatch('text/plain'))
        assert "'application/jose+json'" in str(ContentTypeMismatch(None))


class RelayErrorTest(unittest.TestCase):
    """Tests for localcert.errors.RelayError."""

    def setUp(self):
        from localcert.errors import RelayError
        self.error = RelayError(400, relay.Problem(
            typ='urn:ietf:params:acme:error:malformed', detail='bad csr',
            instance='https://localcert.test/problem/1'))

    def test_fields(self):
        assert self.error.status_code == 400
        assert self.error.category == 'malformed'
        assert self.error.detail == 'bad csr'
        assert self.error.instance == 'https://localcert.test/problem/1'
        assert self.error.subproblems == []

    def test_str(self):
        assert "[400] 'bad csr'" == str(self.error)


class TermsNotAcceptedErrorTest(unittest.TestCase):
    """Tests for localcert.errors.TermsNotAcceptedError."""

    def test_str(self):
        from localcert.errors import TermsNotAcceptedError
        error = TermsNotAcceptedError('https://example/tos')
        assert error.uri == 'https://example/tos'
        assert 'terms not accepted: https://example/tos' == str(error)


if __name__ == "__main__":
    sys.exit(pytest.main(sys.argv[1:] + [__file__]))  # pragma: no cover

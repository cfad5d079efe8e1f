"""Tests for localcert.orders."""
import datetime
import sys
import unittest
from unittest import mock

import pytest

from acme import messages

from localcert import client
from localcert import errors
from localcert._internal.tests import acme_server
from localcert._internal.tests import test_util

DOMAIN = 'abc123.localcert.dev'


class OrdersTest(unittest.TestCase):
    """Tests for order operations against an ACME server."""

    def setUp(self):
        self.server = acme_server.FakeACMEServer()
        config = client.Config(
            test_util.account_jwk(), directory_url=acme_server.DIRECTORY_URL,
            adapter=self.server)
        self.acme = client.acme_from_config(config)
        self.acme.new_account(messages.NewRegistration.from_data(
            terms_of_service_agreed=True))

    def _authorize(self):
        from localcert.orders import authorize_order
        from localcert.orders import dns_identifier
        return authorize_order(self.acme, [dns_identifier(DOMAIN)])

    def _accept(self, orderr, provision=True):
        from localcert.orders import accept_challenge
        authz = self.server.authzs[orderr.body.authorizations[0]]
        challenge_url = authz['challenges'][0]['url']
        if provision:
            self.server.provisioned.append(challenge_url)
        return accept_challenge(self.acme, challenge_url)

    def test_dns_identifier(self):
        from localcert.orders import dns_identifier
        identifier = dns_identifier(DOMAIN)
        assert identifier.typ == messages.IDENTIFIER_FQDN
        assert identifier.value == DOMAIN

    def test_authorize_order(self):
        orderr = self._authorize()
        assert orderr.uri in self.server.orders
        assert orderr.body.status == messages.STATUS_PENDING
        assert len(orderr.body.authorizations) == 1
        assert orderr.body.identifiers[0].value == DOMAIN

    def test_accept_challenge(self):
        challb = self._accept(self._authorize())
        assert challb.status == messages.STATUS_PROCESSING
        assert challb.chall.typ == 'dns-01'

    def test_wait_ready(self):
        from localcert.orders import wait_for_order
        self.server.polls_until_ready = 3
        orderr = self._authorize()
        self._accept(orderr)
        orderr = wait_for_order(self.acme, orderr)
        assert orderr.body.status == messages.STATUS_READY
        assert len(self.server.requests_to(orderr.uri)) == 4

    def test_wait_invalid(self):
        from localcert.orders import get_challenge
        from localcert.orders import wait_for_order
        self.server.fail_validation = True
        orderr = self._authorize()
        challb = self._accept(orderr)
        with pytest.raises(errors.OrderInvalidError) as exc_info:
            wait_for_order(self.acme, orderr)
        assert exc_info.value.uri == orderr.uri
        assert exc_info.value.error.code == 'unauthorized'
        challb = get_challenge(self.acme, challb.uri)
        assert challb.status == messages.STATUS_INVALID
        assert challb.error.detail == 'No TXT record found'

    def test_wait_deadline(self):
        from localcert.orders import wait_for_order
        orderr = self._authorize()
        past = datetime.datetime.now() - datetime.timedelta(seconds=1)
        with mock.patch('localcert.orders.time.sleep') as mock_sleep:
            with pytest.raises(errors.OrderTimeoutError) as exc_info:
                wait_for_order(self.acme, orderr, past)
        assert exc_info.value.status == messages.STATUS_PENDING
        mock_sleep.assert_not_called()
        assert len(self.server.requests_to(orderr.uri)) == 1


class WaitForOrderRetryAfterTest(unittest.TestCase):
    """Tests for Retry-After handling in localcert.orders.wait_for_order."""

    def setUp(self):
        self.acme = mock.MagicMock()
        self.orderr = messages.OrderResource(
            uri='https://acme.test/order/1',
            body=messages.Order(status=messages.STATUS_PENDING))

    def _response(self, status, retry_after=None):
        headers = {'Retry-After': retry_after} if retry_after else {}
        return test_util.make_response(jobj={'status': status}, headers=headers)

    def test_retry_after(self):
        from localcert.orders import wait_for_order
        self.acme.net.post.side_effect = [
            self._response('processing', '5'), self._response('valid')]
        deadline = datetime.datetime.now() + datetime.timedelta(seconds=60)
        with mock.patch('localcert.orders.time.sleep') as mock_sleep:
            orderr = wait_for_order(self.acme, self.orderr, deadline)
        assert orderr.body.status == messages.STATUS_VALID
        assert mock_sleep.call_count == 1
        assert 4 < mock_sleep.call_args[0][0] < 6

    def test_retry_after_past_deadline(self):
        from localcert.orders import wait_for_order
        self.acme.net.post.return_value = self._response('pending', '120')
        deadline = datetime.datetime.now() + datetime.timedelta(seconds=60)
        with pytest.raises(errors.OrderTimeoutError):
            wait_for_order(self.acme, self.orderr, deadline)
        assert self.acme.net.post.call_count == 1

    def test_post_as_get(self):
        from localcert.orders import wait_for_order
        self.acme.net.post.return_value = self._response('ready')
        wait_for_order(self.acme, self.orderr)
        self.acme.net.post.assert_called_once_with(
            self.orderr.uri, None, new_nonce_url=mock.ANY)


if __name__ == '__main__':
    sys.exit(pytest.main(sys.argv[1:] + [__file__]))  # pragma: no cover

"""ACME order and challenge operations.

`acme.client.ClientV2` orders certificates from a CSR. localcert needs the
order (and its authorization URL) before any CSR exists, so orders are
created from bare identifiers here, over the engine's own signed network
layer.

"""
import datetime
import logging
import time
from typing import Any
from typing import Iterable
from typing import Optional

import requests

from acme import challenges
from acme import client as acme_client
from acme import messages

from localcert import constants
from localcert import errors

logger = logging.getLogger(__name__)


def _post(acme: acme_client.ClientV2, url: str, obj: Any) -> requests.Response:
    return acme.net.post(url, obj, new_nonce_url=getattr(acme.directory, 'newNonce'))


def _post_as_get(acme: acme_client.ClientV2, url: str) -> requests.Response:
    return _post(acme, url, None)


def dns_identifier(domain: str) -> messages.Identifier:
    """DNS identifier for `domain`."""
    return messages.Identifier(typ=messages.IDENTIFIER_FQDN, value=domain)


def authorize_order(acme: acme_client.ClientV2,
                    identifiers: Iterable[messages.Identifier]) -> messages.OrderResource:
    """Create a new order for `identifiers`.

    Authorizations are not fetched: the authorization URLs are in
    ``orderr.body.authorizations``.

    :returns: The newly created order.
    :rtype: acme.messages.OrderResource

    """
    order = messages.NewOrder(identifiers=tuple(identifiers))
    response = _post(acme, acme.directory['newOrder'], order)
    body = messages.Order.from_json(response.json())
    orderr = messages.OrderResource(
        body=body, uri=response.headers.get('Location'), authorizations=[])
    logger.debug('Created order %s for %s', orderr.uri,
                 ', '.join(i.value for i in body.identifiers))
    return orderr


def accept_challenge(acme: acme_client.ClientV2, url: str) -> messages.ChallengeBody:
    """Tell the server the DNS-01 challenge at `url` is ready."""
    response = _post(acme, url, challenges.DNS01Response())
    return messages.ChallengeBody.from_json(response.json())


def get_challenge(acme: acme_client.ClientV2, url: str) -> messages.ChallengeBody:
    """Fetch the challenge at `url`."""
    return messages.ChallengeBody.from_json(_post_as_get(acme, url).json())


def wait_for_order(acme: acme_client.ClientV2, orderr: messages.OrderResource,
                   deadline: Optional[datetime.datetime] = None,
                   default_interval: int = constants.DEFAULT_POLL_INTERVAL
                   ) -> messages.OrderResource:
    """Poll an order until it is ready or valid.

    The interval between polls is taken from the ``Retry-After`` header
    when present. Polling never continues past `deadline`.

    :param acme.messages.OrderResource orderr: Order to poll.
    :param datetime.datetime deadline: When to give up; defaults to
        `.DEFAULT_POLL_TIMEOUT` seconds from now.

    :returns: The order, updated with the terminal body.

    :raises .OrderInvalidError: if the order became invalid.
    :raises .OrderTimeoutError: if the deadline passed first.

    """
    if deadline is None:
        deadline = datetime.datetime.now() + datetime.timedelta(
            seconds=constants.DEFAULT_POLL_TIMEOUT)
    status = orderr.body.status
    while True:
        response = _post_as_get(acme, orderr.uri)
        body = messages.Order.from_json(response.json())
        status = body.status
        logger.debug('Order %s is %s', orderr.uri, status)
        if status in (messages.STATUS_READY, messages.STATUS_VALID):
            return orderr.update(body=body)
        if status == messages.STATUS_INVALID:
            raise errors.OrderInvalidError(orderr.uri, body.error)

        now = datetime.datetime.now()
        next_poll = acme_client.ClientV2.retry_after(response, default_interval)
        if now >= deadline or next_poll >= deadline:
            raise errors.OrderTimeoutError(orderr.uri, status)
        time.sleep(max((next_poll - now).total_seconds(), 0))

"""localcert constants."""
import datetime

LETS_ENCRYPT_URL = 'https://acme-v02.api.letsencrypt.org/directory'
"""Default ACME directory."""

LETS_ENCRYPT_STAGING_URL = 'https://acme-staging-v02.api.letsencrypt.org/directory'

DEFAULT_SERVER_URL = 'https://api.localcert.dev'
"""Default localcert server (relay) URL."""

DEFAULT_USER_AGENT = 'localcert/1.0'

DEFAULT_NETWORK_TIMEOUT = 45
"""Timeout, in seconds, of a single HTTP round trip."""

DEFAULT_POLL_TIMEOUT = 90
"""Overall deadline, in seconds, for order polling and finalization."""

DEFAULT_POLL_INTERVAL = 1
"""Polling interval, in seconds, when the server sends no Retry-After."""

JOSE_CONTENT_TYPE = 'application/jose+json'
"""Content type of every signed ACME request."""

JSON_CONTENT_TYPE = 'application/json'

ACME_ERROR_MARKER = ':acme:error:'
"""Separator between the namespace and the category of a problem type."""

RENEW_BEFORE_EXPIRY = datetime.timedelta(days=30)
"""Certificates expiring within this window are renewed."""

DOMAIN_PATH = '/domain'
PROVISION_PATH = '/provision'

ENV_SERVER_URL = 'LOCALCERT_SERVER_URL'
ENV_DIRECTORY_URL = 'LOCALCERT_ACME_URL'
ENV_USER_AGENT = 'LOCALCERT_USER_AGENT'

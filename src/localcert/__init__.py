"""Certificates for dynamically assigned localcert subdomains.

The localcert server performs DNS-01 validation on behalf of the client.
It only ever receives requests that were signed by the ACME account key
held by the client, so it can neither forge new requests nor learn the
key itself.

"""

__version__ = '1.0.0.dev0'

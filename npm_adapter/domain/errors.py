"""
Exceptions raised by the npm adapter core.

The HTTP layer maps these onto status codes; services let them propagate.
"""


class NpmAdapterError(Exception):
    """Base class for all adapter failures."""


class NotFound(NpmAdapterError):
    """Package, asset, version or dist-tag is absent."""


class MalformedPayload(NpmAdapterError):
    """Publish payload or stored document could not be parsed."""


class RemoteTransportError(NpmAdapterError):
    """Upstream registry unreachable or answered with an unexpected status."""


class StorageError(NpmAdapterError):
    """Underlying blob storage failed."""
